"""
gemini-chat CLI — `gemini-chat` command.

Commands:
  gemini-chat configure            Store API key / model
  gemini-chat chat [session-id]    Interactive REPL chat
  gemini-chat send <message>       One-shot message
  gemini-chat sessions <cmd>       Session management
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

try:
    import click
    from rich.console import Console
except ImportError:
    raise SystemExit("CLI requires extras: pip install gemini-chat[cli]")

from gemini_chat import __version__
from gemini_chat.client import AsyncGeminiChat
from gemini_chat.config import Settings, load_settings, save_config
from gemini_chat.errors import ConfigError
from gemini_chat.models.session import Session
from gemini_chat.engine import SessionEngine

console = Console()


def _settings(ctx: Optional[click.Context] = None) -> Settings:
    ctx = ctx or click.get_current_context()
    data_dir = (ctx.find_root().obj or {}).get("data_dir")
    try:
        return load_settings(data_dir=data_dir)
    except ConfigError as e:
        raise click.ClickException(str(e))


def _get_client(require_key: bool = True) -> AsyncGeminiChat:
    settings = _settings()
    if require_key and not settings.api_key:
        console.print("[red]API key not set. Run `gemini-chat configure` or set GEMINI_API_KEY.[/red]")
        raise SystemExit(1)
    return AsyncGeminiChat(settings)


def _run(coro):
    return asyncio.run(coro)


def resolve_session(engine: SessionEngine, ref: str) -> Session:
    """Find a session by id or unique id prefix."""
    matches = [s for s in engine.store.list_sessions_sorted_by_recency() if s.id == ref or s.id.startswith(ref)]
    exact = [s for s in matches if s.id == ref]
    if exact:
        return exact[0]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise click.ClickException(f"No session matches {ref!r}")
    raise click.ClickException(f"{ref!r} matches {len(matches)} sessions; use a longer prefix")


@click.group()
@click.version_option(__version__)
@click.option("--data-dir", type=click.Path(path_type=Path), default=None, help="Directory for chat data")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, data_dir: Optional[Path], verbose: bool):
    """gemini-chat — multi-session chat with Gemini."""
    ctx.obj = {"data_dir": data_dir}
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command("configure")
@click.option("--api-key", default=None, help="Gemini API key")
@click.option("--model", default=None, help="Model name")
def configure(api_key: Optional[str], model: Optional[str]):
    """Store the API key and preferred model."""
    settings = _settings()
    if api_key is None and model is None:
        api_key = click.prompt("Gemini API key", hide_input=True)
    save_config(settings, api_key=api_key, model=model)
    console.print(f"[green]Saved to {settings.config_file}[/green]")


# Register subcommands from separate modules
from gemini_chat.cli.chat import chat_cmd, send_cmd
from gemini_chat.cli.sessions import sessions

main.add_command(chat_cmd)
main.add_command(send_cmd)
main.add_command(sessions)


if __name__ == "__main__":
    main()
