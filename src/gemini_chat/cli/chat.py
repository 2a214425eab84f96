"""CLI: gemini-chat chat, gemini-chat send"""

import asyncio
import base64
import json
import mimetypes
import signal
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from gemini_chat.errors import GeminiChatError
from gemini_chat.models.message import AttachmentPart, MessageStatus, Role
from gemini_chat.models.snapshot import EngineSnapshot

console = Console()

REPL_HELP = (
    "/new  /sessions  /switch <id>  /edit <n> <text>  /rename <title>  "
    "/attach <path>  /delete  /quit"
)


def _get_client(require_key: bool = True):
    from gemini_chat.cli.main import _get_client
    return _get_client(require_key)


def _run(coro):
    from gemini_chat.cli.main import _run
    return _run(coro)


def _resolve_session(engine, ref):
    from gemini_chat.cli.main import resolve_session
    return resolve_session(engine, ref)


def read_attachment(path: Path) -> AttachmentPart:
    mime_type, _ = mimetypes.guess_type(path.name)
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return AttachmentPart(mime_type=mime_type or "application/octet-stream", name=path.name, data=data)


class ReplyPrinter:
    """Snapshot listener that echoes the streaming reply as it grows."""

    def __init__(self) -> None:
        self.message_id: Optional[str] = None
        self.printed = 0
        self.title_shown: Optional[str] = None

    def __call__(self, snap: EngineSnapshot) -> None:
        if not snap.current_messages:
            return
        last = snap.current_messages[-1]
        if last.role != Role.MODEL or last.status != MessageStatus.STREAMING:
            return
        if last.id != self.message_id:
            self.message_id, self.printed = last.id, 0
            console.print("[green]Gemini:[/green] ", end="")
        text = last.text
        console.print(text[self.printed:], end="", markup=False, highlight=False)
        self.printed = len(text)

    def finish(self, text: str, status: MessageStatus) -> None:
        if self.printed == 0:
            console.print("[green]Gemini:[/green] ", end="")
        rest = text[self.printed:]
        style = {MessageStatus.ERRORED: "red", MessageStatus.CANCELLED: "yellow"}.get(status)
        console.print(rest, style=style, markup=False, highlight=False)
        self.message_id, self.printed = None, 0


async def _turn(engine, printer: ReplyPrinter, coro) -> None:
    """Run one turn; Ctrl+C cancels the reply instead of exiting."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, engine.cancel_generation)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        final = await coro
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
    if final is not None:
        printer.finish(final.text, final.status)


def _print_sessions(engine) -> None:
    for s in engine.store.list_sessions_sorted_by_recency():
        marker = "*" if s.id == engine.active_session_id else " "
        console.print(f"{marker} [bold]{s.id[:8]}[/bold]  {s.title}  [dim]({len(s.messages)} messages)[/dim]")


async def _handle_command(engine, line: str, staged: list[AttachmentPart], printer: ReplyPrinter) -> bool:
    """Run a slash command. Returns False when the REPL should exit."""
    cmd, _, arg = line.partition(" ")
    arg = arg.strip()
    if cmd in ("/quit", "/exit"):
        return False
    if cmd == "/new":
        s = await engine.new_session()
        console.print(f"[dim]Session: {s.id}[/dim]")
    elif cmd == "/sessions":
        _print_sessions(engine)
    elif cmd == "/switch" and arg:
        s = await engine.select_session(_resolve_session(engine, arg).id)
        console.print(f"[dim]Switched to {s.title} ({s.id[:8]})[/dim]")
    elif cmd == "/rename" and arg:
        await engine.rename_session(engine.active_session_id, arg)
    elif cmd == "/delete":
        await engine.delete_session(engine.active_session_id)
        if engine.active_session_id is None:
            await engine.new_session()
        console.print("[dim]Session deleted.[/dim]")
    elif cmd == "/attach" and arg:
        staged.append(read_attachment(Path(arg).expanduser()))
        console.print(f"[dim]Attached {staged[-1].name} ({staged[-1].mime_type})[/dim]")
    elif cmd == "/edit" and arg:
        number, _, text = arg.partition(" ")
        session = engine.store.get(engine.active_session_id)
        user_turns = [m for m in session.messages if m.role == Role.USER]
        if not number.isdigit() or not 1 <= int(number) <= len(user_turns):
            console.print(f"[red]Pick a user message between 1 and {len(user_turns)}[/red]")
            return True
        await _turn(engine, printer, engine.edit(user_turns[int(number) - 1].id, text))
    else:
        console.print(f"[dim]{REPL_HELP}[/dim]")
    return True


@click.command("chat")
@click.argument("session_id", required=False)
def chat_cmd(session_id: Optional[str]):
    """Interactive chat with Gemini."""

    async def _chat():
        client = _get_client()
        engine = await client.start()
        if session_id:
            await engine.select_session(_resolve_session(engine, session_id).id)
        printer = ReplyPrinter()
        remove = engine.subscribe(printer)
        staged: list[AttachmentPart] = []
        console.print(f"[dim]Session: {engine.active_session_id}[/dim]")
        console.print(f"[cyan]Type your message (Ctrl+C stops a reply, /quit exits)[/cyan]\n[dim]{REPL_HELP}[/dim]\n")
        try:
            while True:
                msg = await asyncio.to_thread(click.prompt, "You", prompt_suffix=": ")
                try:
                    if msg.startswith("/"):
                        if not await _handle_command(engine, msg, staged, printer):
                            break
                        continue
                    attachments, staged = staged, []
                    await _turn(engine, printer, engine.submit(msg, attachments))
                except (GeminiChatError, ValueError, click.ClickException) as e:
                    console.print(f"[red]{e}[/red]")
        except (KeyboardInterrupt, EOFError, click.Abort):
            pass
        finally:
            remove()
            await engine.wait_for_background()
            await client.close()

    _run(_chat())


@click.command("send")
@click.argument("message")
@click.option("-s", "--session", "session_id", default=None)
@click.option("-a", "--attach", "attach", multiple=True, type=click.Path(exists=True, path_type=Path))
@click.option("--json-output", "--json", is_flag=True)
def send_cmd(message: str, session_id: Optional[str], attach: tuple[Path, ...], json_output: bool):
    """Send a one-shot message."""

    async def _send():
        client = _get_client()
        engine = await client.start()
        try:
            if session_id:
                await engine.select_session(_resolve_session(engine, session_id).id)
            else:
                active = engine.store.get(engine.active_session_id) if engine.active_session_id else None
                if not active or active.messages:
                    await engine.new_session()
                if not json_output:
                    console.print(f"[dim]Session: {engine.active_session_id}[/dim]")
            final = await engine.submit(message, [read_attachment(p) for p in attach])
            await engine.wait_for_background()
            if json_output:
                click.echo(json.dumps({
                    "session_id": engine.active_session_id,
                    "message": final.model_dump(mode="json"),
                }))
            else:
                style = "red" if final.status == MessageStatus.ERRORED else None
                console.print("[green]Gemini:[/green] ", end="")
                console.print(final.text, style=style, markup=False, highlight=False)
        except GeminiChatError as e:
            raise click.ClickException(str(e))
        finally:
            await client.close()

    _run(_send())
