"""CLI: gemini-chat sessions list|show|rename|delete|clear"""

import json

import click
from rich.console import Console
from rich.table import Table

from gemini_chat.models.message import MessageStatus, Role

console = Console()

STATUS_STYLES = {
    MessageStatus.ERRORED: "red",
    MessageStatus.CANCELLED: "yellow",
}


def _get_client(require_key: bool = True):
    from gemini_chat.cli.main import _get_client
    return _get_client(require_key)


def _run(coro):
    from gemini_chat.cli.main import _run
    return _run(coro)


def _resolve_session(engine, ref):
    from gemini_chat.cli.main import resolve_session
    return resolve_session(engine, ref)


@click.group()
def sessions():
    """Session management."""


@sessions.command("list")
@click.option("--limit", default=20, type=int)
@click.option("--json-output", "--json", is_flag=True)
def sessions_list(limit, json_output):
    """List sessions, most recent first."""

    async def _list():
        client = _get_client(require_key=False)
        engine = await client.start()
        try:
            items = engine.store.list_sessions_sorted_by_recency()[:limit]
            if json_output:
                click.echo(json.dumps(
                    [s.model_dump(mode="json", exclude={"messages"}) | {"message_count": len(s.messages)}
                     for s in items],
                    indent=2,
                ))
                return
            table = Table(title=f"Sessions ({len(engine.store)} total)")
            table.add_column("ID", style="bold")
            table.add_column("Title")
            table.add_column("Messages", justify="right")
            table.add_column("Updated")
            for s in items:
                marker = "* " if s.id == engine.active_session_id else ""
                table.add_row(marker + s.id, s.title, str(len(s.messages)),
                              s.last_updated_at.strftime("%Y-%m-%d %H:%M"))
            console.print(table)
        finally:
            await client.close()

    _run(_list())


@sessions.command("show")
@click.argument("session_id")
def sessions_show(session_id):
    """Print a session's messages."""

    async def _show():
        client = _get_client(require_key=False)
        engine = await client.start()
        try:
            session = _resolve_session(engine, session_id)
            console.print(f"[bold]{session.title}[/bold] [dim]({session.id})[/dim]\n")
            for msg in session.messages:
                who = "[cyan]You[/cyan]" if msg.role == Role.USER else "[green]Gemini[/green]"
                files = ", ".join(a.name or a.mime_type for a in msg.attachments)
                console.print(f"{who}:" + (f" [dim]\\[{files}][/dim]" if files else ""))
                console.print(msg.text, style=STATUS_STYLES.get(msg.status), markup=False, highlight=False)
                console.print()
        finally:
            await client.close()

    _run(_show())


@sessions.command("rename")
@click.argument("session_id")
@click.argument("title")
def sessions_rename(session_id, title):
    """Rename a session."""

    async def _rename():
        client = _get_client(require_key=False)
        engine = await client.start()
        try:
            session = await engine.rename_session(_resolve_session(engine, session_id).id, title)
        except ValueError as e:
            raise click.ClickException(str(e))
        finally:
            await client.close()
        console.print(f"[green]Renamed to {session.title}[/green]")

    _run(_rename())


@sessions.command("delete")
@click.argument("session_id")
def sessions_delete(session_id):
    """Delete a session."""

    async def _delete():
        client = _get_client(require_key=False)
        engine = await client.start()
        try:
            session = _resolve_session(engine, session_id)
            with console.status("Deleting..."):
                await engine.delete_session(session.id)
        finally:
            await client.close()
        console.print(f"[green]Session {session.id} deleted.[/green]")

    _run(_delete())


@sessions.command("clear")
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation")
def sessions_clear(yes):
    """Delete all sessions."""
    if not yes:
        click.confirm("Delete all chat history?", abort=True)

    async def _clear():
        client = _get_client(require_key=False)
        engine = await client.start()
        try:
            await engine.delete_all()
        finally:
            await client.close()
        console.print("[green]All sessions deleted.[/green]")

    _run(_clear())
