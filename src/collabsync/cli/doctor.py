"""
collabsync CLI - doctor command.

Checks that a user's access token works and carries repository scope.
"""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from collabsync.cli.context import get_config
from collabsync.cli.errors import ExitCode, handle_error
from collabsync.core.github import GitHubClient
from collabsync.core.tokens import EnvTokenProvider


console = Console()


def doctor(
    user: Annotated[str, typer.Option("--user", "-u", help="User whose token to check")],
) -> None:
    """
    Diagnose a user's access token.

    Shows the account behind the token and its OAuth scopes.

    Examples:
        collabsync doctor --user alice
    """
    try:
        config = get_config()
        token = EnvTokenProvider(config.token_env_prefix).get_token(user)
        with GitHubClient.from_config(token, config.github) as client:
            account = client.get_authenticated_user()
    except Exception as e:
        raise typer.Exit(handle_error(e, "doctor"))

    console.print(f"[green]✓[/green] Token valid for [bold]{account.login}[/bold]")
    if account.scopes is None:
        console.print("  [dim]scopes:[/dim] not reported (fine-grained token)")
    else:
        console.print(f"  [dim]scopes:[/dim] {', '.join(account.scopes) or '(none)'}")

    required = config.repository.required_scopes
    if account.has_any_scope(required):
        console.print("[green]✓[/green] Can create repositories")
        return

    console.print(
        f"[red]✗[/red] Missing repository scope (needs one of: {', '.join(required)})"
    )
    raise typer.Exit(ExitCode.USER_ERROR)
