"""
Standardized error handling and exit codes for the ems-sync CLI.

Consistent error messages with actionable guidance, and one place that maps
sync failures to exit codes.
"""

from enum import IntEnum

from rich.console import Console

from ems_sync.core.errors import SyncErrorKind

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for ems-sync CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Generic error, including failed syncs."""

    USER_ERROR = 2
    """User configuration or input error (actionable by user)."""

    BUSY = 3
    """Another write was still in flight."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def exit_code_for(kind: SyncErrorKind | None) -> ExitCode:
    if kind is SyncErrorKind.BUSY:
        return ExitCode.BUSY
    return ExitCode.GENERAL_ERROR


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
        ...     "Not signed in",
        ...     reason="Employee views depend on the signed-in user",
        ...     solution="ems-sync login <user-id>",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_offline_error() -> None:
    """Print error when a command needs the remote endpoint."""
    print_error(
        "No endpoint configured",
        reason="This command talks to the remote spreadsheet endpoint",
        solution="export EMS_SYNC_ENDPOINT=<web-hook url>  # or set remote.endpoint_url in .ems-sync.json",
    )


def print_not_signed_in_error() -> None:
    """Print error when a command needs a session."""
    print_error(
        "Not signed in",
        reason="Views and post selections depend on the signed-in user",
        solution="ems-sync login <user-id>",
    )


def print_sync_failure(summary: str, kind: SyncErrorKind | None) -> None:
    """Print a failed write or refresh."""
    if kind is SyncErrorKind.BUSY:
        print_error(summary, reason="Another change is still being saved", solution="retry in a moment")
    elif kind is SyncErrorKind.TRANSPORT_TIMEOUT:
        print_error(summary, solution="EMS_SYNC_FETCH_TIMEOUT / EMS_SYNC_WRITE_TIMEOUT raise the limits")
    else:
        print_error(summary)
