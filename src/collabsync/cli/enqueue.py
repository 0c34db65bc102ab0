"""
collabsync CLI - enqueue commands.

Queue repository creation and commits for a session. Nothing is sent to
GitHub here; a worker picks the operation up later.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from collabsync.cli.context import get_service
from collabsync.cli.errors import handle_error
from collabsync.core.exceptions import ValidationError
from collabsync.core.queue import QueueItem

logger = logging.getLogger(__name__)

console = Console()
app = typer.Typer(
    name="enqueue",
    help="Queue sync operations for a session",
    no_args_is_help=True,
)

UserOption = Annotated[str, typer.Option("--user", "-u", help="User whose token runs the operation")]
PriorityOption = Annotated[int, typer.Option("--priority", "-p", help="Higher runs sooner")]
MaxRetriesOption = Annotated[
    int | None,
    typer.Option("--max-retries", help="Attempts allowed (default from config)", min=1),
]


def _report(item: QueueItem) -> None:
    console.print(
        f"[green]✓[/green] Queued [bold]{item.operation_kind.value}[/bold] "
        f"for session [cyan]{item.session_id}[/cyan]"
    )
    console.print(f"  [dim]id:[/dim] {item.id}")
    console.print(f"  [dim]priority:[/dim] {item.priority}  [dim]max retries:[/dim] {item.max_retries}")


def parse_file_spec(spec: str) -> tuple[str, Path]:
    """
    Split ``PATH[=LOCAL]`` into a repository path and a local file.

    Example:
        >>> parse_file_spec("src/app.py=build/app.py")
        ('src/app.py', PosixPath('build/app.py'))
        >>> parse_file_spec("README.md")
        ('README.md', PosixPath('README.md'))
    """
    repo_path, sep, local = spec.partition("=")
    return repo_path, Path(local if sep else repo_path)


def _read_text(local: Path) -> str:
    try:
        return local.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ValidationError(f"File not found: {local}", path=str(local)) from None
    except UnicodeDecodeError:
        raise ValidationError(f"Not a UTF-8 text file: {local}", path=str(local)) from None


def collect_snapshot(directory: Path) -> list[dict[str, str]]:
    """
    Read every UTF-8 text file under ``directory`` as a snapshot entry.

    Hidden files and directories are skipped, as are files that are not
    valid UTF-8.
    """
    if not directory.is_dir():
        raise ValidationError(f"Not a directory: {directory}", path=str(directory))

    files = []
    for path in sorted(directory.rglob("*")):
        relative = path.relative_to(directory)
        if not path.is_file() or any(part.startswith(".") for part in relative.parts):
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            logger.warning("Skipping non-text file %s", relative)
            continue
        files.append({"path": relative.as_posix(), "content": content})
    return files


@app.command("create-repo")
def create_repo(
    session: Annotated[str, typer.Argument(help="Session id")],
    user: UserOption,
    description: Annotated[
        str | None, typer.Option("--description", "-d", help="Repository description")
    ] = None,
    priority: PriorityOption = 0,
    max_retries: MaxRetriesOption = None,
) -> None:
    """
    Queue creation of the session's repository.

    Examples:
        collabsync enqueue create-repo abc123 --user alice
    """
    try:
        payload = {"description": description} if description else {}
        item = get_service().enqueue(
            session, user, "create_repo", payload, priority=priority, max_retries=max_retries
        )
    except Exception as e:
        raise typer.Exit(handle_error(e, "enqueue create-repo"))
    _report(item)


@app.command("commit")
def commit(
    session: Annotated[str, typer.Argument(help="Session id")],
    user: UserOption,
    message: Annotated[str, typer.Option("--message", "-m", help="Commit message")],
    files: Annotated[
        list[str] | None,
        typer.Option("--file", "-f", help="Update PATH[=LOCAL] (repeatable)"),
    ] = None,
    creates: Annotated[
        list[str] | None,
        typer.Option("--create", "-c", help="Create PATH[=LOCAL] (repeatable)"),
    ] = None,
    deletes: Annotated[
        list[str] | None,
        typer.Option("--delete", help="Delete PATH (repeatable)"),
    ] = None,
    branch: Annotated[str | None, typer.Option("--branch", "-b", help="Target branch")] = None,
    priority: PriorityOption = 0,
    max_retries: MaxRetriesOption = None,
) -> None:
    """
    Queue a commit of explicit file changes.

    Content is read from LOCAL, or from PATH relative to the current
    directory when no LOCAL is given.

    Examples:
        collabsync enqueue commit abc123 -u alice -m "Add app" --create src/app.py
        collabsync enqueue commit abc123 -u alice -m "Tidy" --file README.md --delete old.txt
    """
    try:
        changes = []
        for action, specs in (("update", files), ("create", creates)):
            for spec in specs or []:
                repo_path, local = parse_file_spec(spec)
                changes.append({"path": repo_path, "content": _read_text(local), "action": action})
        for repo_path in deletes or []:
            changes.append({"path": repo_path, "action": "delete"})

        payload = {"files": changes, "commit_message": message}
        if branch:
            payload["branch"] = branch
        item = get_service().enqueue(
            session, user, "commit", payload, priority=priority, max_retries=max_retries
        )
    except Exception as e:
        raise typer.Exit(handle_error(e, "enqueue commit"))
    _report(item)
    console.print(f"  [dim]files:[/dim] {item.payload.file_count}")


@app.command("sync")
def sync(
    session: Annotated[str, typer.Argument(help="Session id")],
    user: UserOption,
    directory: Annotated[
        Path, typer.Option("--dir", help="Directory holding the session's files")
    ] = Path("."),
    message: Annotated[
        str | None, typer.Option("--message", "-m", help="Commit message")
    ] = None,
    branch: Annotated[str | None, typer.Option("--branch", "-b", help="Target branch")] = None,
    priority: PriorityOption = 0,
    max_retries: MaxRetriesOption = None,
) -> None:
    """
    Queue a full snapshot of a directory as one commit.

    Examples:
        collabsync enqueue sync abc123 -u alice --dir ./workspace
    """
    try:
        payload: dict[str, object] = {"files": collect_snapshot(directory)}
        if message:
            payload["commit_message"] = message
        if branch:
            payload["branch"] = branch
        item = get_service().enqueue(
            session, user, "sync", payload, priority=priority, max_retries=max_retries
        )
    except Exception as e:
        raise typer.Exit(handle_error(e, "enqueue sync"))
    _report(item)
    console.print(f"  [dim]files:[/dim] {item.payload.file_count}")
