"""
ems-sync CLI - session commands.

The session identity is stored in the local cache next to the snapshot, so
``login`` resolves users from the last refreshed snapshot.
"""

from __future__ import annotations

import typer
from rich.console import Console

from ems_sync.cli import common
from ems_sync.cli.errors import ExitCode, print_error, print_not_signed_in_error

console = Console()


def login(
    user_id: str = typer.Argument(..., help="User_ID to sign in as"),
) -> None:
    """
    Sign in as a user from the cached snapshot.

    Examples:
        ems-sync login 7
    """
    engine = common.build_engine()
    identity = engine.login(user_id)
    if identity is None:
        print_error(
            f"Unknown user: {user_id}",
            reason="The user is not in the cached snapshot",
            solution="ems-sync refresh  # then try again",
        )
        raise typer.Exit(ExitCode.USER_ERROR)

    role = getattr(identity.user_type, "value", identity.user_type) or "?"
    console.print(f"[green]✓[/green] Signed in as {identity.user_name or identity.user_id} ({role})")


def logout() -> None:
    """Sign out of the current session."""
    engine = common.build_engine()
    engine.logout()
    console.print("[green]✓[/green] Signed out")


def whoami() -> None:
    """Show the signed-in user."""
    engine = common.build_engine()
    identity = engine.identity
    if identity is None:
        print_not_signed_in_error()
        raise typer.Exit(ExitCode.USER_ERROR)

    role = getattr(identity.user_type, "value", identity.user_type) or "?"
    console.print(f"User {identity.user_id}: {identity.user_name or '-'} ({role})")
