"""
collabsync CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import typer
from rich.console import Console

from collabsync import __version__
from collabsync.cli import doctor, enqueue, history, worker
from collabsync.cli.errors import setup_logging
from collabsync.core.config.env import load_layered_env

app = typer.Typer(
    name="collabsync",
    help="Sync collaborative editing sessions to GitHub repositories",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
) -> None:
    """
    collabsync - Git sync for collaborative editing sessions.

    Operations are queued first and executed by a worker, which retries
    transient GitHub failures and records every outcome in the session's
    history.

    Quick Start:
        1. export COLLABSYNC_TOKEN_ALICE=ghp_...
        2. collabsync enqueue create-repo abc123 --user alice
        3. collabsync enqueue sync abc123 --user alice --dir ./workspace
        4. collabsync worker --drain
        5. collabsync history abc123
    """
    load_layered_env()
    setup_logging(debug)
    ctx.obj = {"debug": debug}


app.add_typer(enqueue.app, name="enqueue")
app.command(name="worker")(worker.worker)
app.command(name="history")(history.history)
app.command(name="binding")(history.binding)
app.command(name="doctor")(doctor.doctor)


@app.command()
def version() -> None:
    """Show collabsync version and exit."""
    console.print(f"collabsync version {__version__}")
    raise typer.Exit(0)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
