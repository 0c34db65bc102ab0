"""
collabsync CLI - history and binding commands.

Read-only views of a session's audit log and repository binding.
"""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from collabsync.cli.context import get_service
from collabsync.cli.errors import ExitCode, handle_error, print_error
from collabsync.core.audit import AuditRecord, AuditStatus

console = Console()

_STATUS_STYLES = {
    AuditStatus.PENDING: "yellow",
    AuditStatus.PROCESSING: "blue",
    AuditStatus.COMPLETED: "green",
    AuditStatus.FAILED: "red",
}


def _format_time(record: AuditRecord) -> str:
    return record.created_at.strftime("%Y-%m-%d %H:%M:%S")


def history(
    session: Annotated[str, typer.Argument(help="Session id")],
    limit: Annotated[
        int | None, typer.Option("--limit", "-n", help="Number of records", min=1)
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """
    Show a session's sync history, newest first.

    Examples:
        collabsync history abc123
        collabsync history abc123 --limit 5 --json
    """
    try:
        records = get_service().list_history(session, limit)
    except Exception as e:
        raise typer.Exit(handle_error(e, "history"))

    if json_output:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        console.print(f"[dim]No sync history for session {session}[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Created", style="dim", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Tries", justify="right")
    table.add_column("Files", justify="right")
    table.add_column("Message")
    table.add_column("Result")

    for record in records:
        result = record.commit_sha[:8] if record.commit_sha else (record.error or "")
        table.add_row(
            _format_time(record),
            record.operation_kind,
            Text(record.status.value, style=_STATUS_STYLES[record.status]),
            f"{record.retry_count}/{record.max_retries}",
            str(record.file_count),
            record.commit_message or "",
            result,
        )
    console.print(table)


def binding(
    session: Annotated[str, typer.Argument(help="Session id")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """
    Show the repository bound to a session.

    Examples:
        collabsync binding abc123
    """
    try:
        found = get_service().get_binding(session)
    except Exception as e:
        raise typer.Exit(handle_error(e, "binding"))

    if found is None:
        if json_output:
            typer.echo("null")
        else:
            print_error(
                f"Session {session} has no repository",
                solution=f"collabsync enqueue create-repo {session} --user <user>",
            )
        raise typer.Exit(ExitCode.USER_ERROR)

    if json_output:
        typer.echo(json.dumps(found.model_dump(mode="json"), indent=2))
        return

    table = Table(show_header=False, box=None)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("Repository", found.full_name)
    table.add_row("URL", found.repo_url)
    table.add_row("Remote id", found.remote_repo_id)
    table.add_row("Private", "yes" if found.is_private else "no")
    table.add_row(
        "Last synced",
        found.last_synced_at.strftime("%Y-%m-%d %H:%M:%S") if found.last_synced_at else "never",
    )
    console.print(table)
