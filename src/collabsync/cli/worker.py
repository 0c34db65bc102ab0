"""
collabsync CLI - worker command.

Runs sync workers against the configured queue database.
"""

from __future__ import annotations

import signal
import threading
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from collabsync.cli.context import get_config, get_service
from collabsync.cli.errors import ExitCode, handle_error
from collabsync.core.sync import ProcessOutcome, ProcessResult, run_workers

console = Console()

_OUTCOME_STYLES = {
    ProcessOutcome.COMPLETED: "green",
    ProcessOutcome.RETRYING: "yellow",
    ProcessOutcome.FAILED: "red",
    ProcessOutcome.LOST: "dim",
}


def _results_table(results: list[ProcessResult]) -> Table:
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 1))
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Session", style="cyan")
    table.add_column("Kind")
    table.add_column("Outcome")
    table.add_column("Detail")

    for result in results:
        detail = result.commit_url or result.error or ""
        if result.outcome == ProcessOutcome.RETRYING and result.retry_in is not None:
            detail = f"retry in {result.retry_in:.1f}s: {detail}"
        table.add_row(
            result.item_id[:12],
            result.session_id,
            result.operation_kind.value,
            Text(result.outcome.value, style=_OUTCOME_STYLES[result.outcome]),
            detail,
        )
    return table


def worker(
    once: Annotated[
        bool, typer.Option("--once", help="Process at most one item and exit")
    ] = False,
    drain: Annotated[
        bool, typer.Option("--drain", help="Process every eligible item and exit")
    ] = False,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-n", help="Worker threads (default from config)", min=1),
    ] = None,
    poll_interval: Annotated[
        float | None,
        typer.Option("--poll-interval", help="Seconds between polls of an empty queue", min=0.01),
    ] = None,
) -> None:
    """
    Process queued sync operations.

    Without --once or --drain, polls the queue until interrupted.

    Examples:
        collabsync worker
        collabsync worker --concurrency 4
        collabsync worker --drain
    """
    try:
        config = get_config()
        if poll_interval is not None:
            config.worker.poll_interval = poll_interval
        if concurrency is not None:
            config.worker.concurrency = concurrency
        service = get_service(config)

        if once or drain:
            work = service.create_worker(worker_id="cli")
            work.recover_stale_claims()
            results = work.drain(max_items=1 if once else None)
            if not results:
                console.print("[dim]No eligible items in the queue[/dim]")
                return
            console.print(_results_table(results))
            if any(r.outcome == ProcessOutcome.FAILED for r in results):
                raise typer.Exit(ExitCode.GENERAL_ERROR)
            return

        stop_event = threading.Event()
        signal.signal(signal.SIGTERM, lambda *_: stop_event.set())
        console.print(
            f"[bold]Worker running[/bold] on {config.queue.db_path} "
            f"({config.worker.concurrency} thread(s)); Ctrl+C to stop"
        )
        try:
            attempts = run_workers(
                lambda index: service.create_worker(worker_id=f"worker-{index}"),
                config.worker.concurrency,
                stop_event,
            )
        except KeyboardInterrupt:
            stop_event.set()
            console.print("\n[yellow]Stopped[/yellow]")
            raise typer.Exit(ExitCode.SIGINT)
        console.print(f"[dim]Processed {attempts} attempt(s)[/dim]")
    except typer.Exit:
        raise
    except Exception as e:
        raise typer.Exit(handle_error(e, "worker"))
