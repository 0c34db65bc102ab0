"""
Standardized error handling and exit codes for the collabsync CLI.

Every command reports failures the same way: a red ``Error:`` line, the
error's context, a hint where one helps, and a consistent exit code.
"""

from __future__ import annotations

import logging
import sys
import traceback
from enum import IntEnum

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from collabsync.core.exceptions import AuthError, NotFoundError, SyncError, ValidationError

console = Console()

# Set by setup_logging(); controls traceback output
_debug_mode = False


class ExitCode(IntEnum):
    """Standard exit codes for collabsync CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Generic or remote failure."""

    USER_ERROR = 2
    """Invalid input or missing credentials (actionable by user)."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for CLI commands.

    Args:
        debug: If True, enable DEBUG level logging and full tracebacks
    """
    global _debug_mode
    _debug_mode = debug

    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    # Request lines from httpx are noise below debug
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "No access token for user alice",
        ...     solution="export COLLABSYNC_TOKEN_ALICE=ghp_...",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def exit_code_for(error: BaseException) -> ExitCode:
    """Map an error onto the exit code a command should return."""
    if isinstance(error, (ValidationError, AuthError, NotFoundError)):
        return ExitCode.USER_ERROR
    return ExitCode.GENERAL_ERROR


def handle_error(error: Exception, command_name: str) -> ExitCode:
    """
    Display an error with appropriate user-friendly detail.

    Args:
        error: The exception that was raised
        command_name: Name of the command that failed

    Returns:
        Exit code the command should terminate with
    """
    if isinstance(error, SyncError):
        print_error(str(error))
        if error.context:
            error_text = Text()
            for key, value in error.context.items():
                error_text.append(f"  {key}: ", style="cyan")
                error_text.append(f"{value}\n", style="white")
            console.print(error_text, end="")
        if isinstance(error, AuthError):
            console.print(
                "[cyan]→ Try:[/cyan] collabsync doctor --user <user>  "
                "# check the token and its scopes"
            )
    else:
        error_text = Text()
        error_text.append("Unexpected error in ", style="bold red")
        error_text.append(command_name, style="bold yellow")
        error_text.append(": ", style="bold red")
        error_text.append(str(error))
        console.print(
            Panel(
                error_text,
                title="[bold red]Unexpected Error[/bold red]",
                border_style="red",
                expand=False,
            )
        )

    if _debug_mode:
        console.print("\n[dim]Full traceback:[/dim]")
        console.print(traceback.format_exc())
    elif not isinstance(error, SyncError):
        console.print("[dim]Run with --debug for full traceback[/dim]")

    return exit_code_for(error)
