"""
ems-sync CLI - refresh, status and watch commands.
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from ems_sync.cli import common
from ems_sync.cli.errors import ExitCode, exit_code_for, print_offline_error, print_sync_failure
from ems_sync.core.snapshot.models import Snapshot
from ems_sync.core.sync.engine import SyncEngine
from ems_sync.core.sync.models import RefreshResult, SyncIndicator

console = Console()

INDICATOR_STYLES = {
    SyncIndicator.ONLINE: "[green]online[/green]",
    SyncIndicator.SYNCING: "[blue]syncing[/blue]",
    SyncIndicator.ERROR: "[red]error[/red]",
    SyncIndicator.OFFLINE: "[yellow]offline[/yellow]",
}


def _counts_table(snapshot: Snapshot, title: str = "Snapshot") -> Table:
    table = Table(title=title)
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right")
    for name, count in snapshot.counts().items():
        table.add_row(name, str(count))
    table.add_row("userPostSelections", str(len(snapshot.user_post_selections)))
    return table


def _exit_for_refresh(result: RefreshResult) -> None:
    if result.offline:
        print_offline_error()
        raise typer.Exit(ExitCode.USER_ERROR)
    if not result.success:
        print_sync_failure(result.summary(), result.error_kind)
        raise typer.Exit(exit_code_for(result.error_kind))


def refresh(
    show_tables: bool = typer.Option(
        False,
        "--tables",
        "-t",
        help="Show row counts per table",
    ),
) -> None:
    """
    Pull the latest snapshot from the endpoint into the local cache.

    Examples:
        ems-sync refresh            # Refresh and print a summary
        ems-sync refresh --tables   # Also show row counts
    """

    async def _refresh() -> tuple[RefreshResult, Snapshot]:
        async with common.build_engine() as engine:
            result = await engine.refresh_now(show_indicator=True)
            return result, engine.snapshot

    result, snapshot = common.run_async(_refresh())
    _exit_for_refresh(result)

    console.print(f"[green]✓[/green] {result.summary()}")
    if show_tables:
        console.print(_counts_table(snapshot))


def status() -> None:
    """
    Show the cached snapshot, session and sync status.

    Examples:
        ems-sync status
    """
    engine: SyncEngine = common.build_engine()
    state = engine.state

    console.print(f"Status: {INDICATOR_STYLES[state.indicator]}")
    if engine.remote is not None:
        console.print(f"Endpoint: {engine.remote.endpoint}")
    if state.identity is None:
        console.print("Signed in: [dim]no[/dim]")
    else:
        role = getattr(state.identity.user_type, "value", state.identity.user_type) or "?"
        console.print(f"Signed in: user {state.identity.user_id} ({state.identity.user_name or '-'}, {role})")
    if state.last_error:
        console.print(f"[red]Last error:[/red] {state.last_error}")

    console.print(_counts_table(state.snapshot, title="Cached snapshot"))

    dangling = engine.dangling_references()
    if dangling:
        console.print(f"[yellow]⚠[/yellow]  {len(dangling)} dangling references")


def watch(
    interval: float | None = typer.Option(
        None,
        "--interval",
        "-i",
        min=1,
        help="Seconds between refreshes (default: configured interval)",
    ),
    duration: float | None = typer.Option(
        None,
        "--duration",
        help="Stop after this many seconds (default: run until Ctrl+C)",
    ),
) -> None:
    """
    Keep the local cache in step with the endpoint.

    Refreshes once, then again every interval until interrupted.

    Examples:
        ems-sync watch                  # Use the configured interval
        ems-sync watch -i 60            # Refresh every minute
        ems-sync watch --duration 600   # Stop after ten minutes
    """

    def on_snapshot(snapshot: Snapshot) -> None:
        total = sum(snapshot.counts().values())
        console.print(f"[dim]Snapshot updated: {total} records[/dim]")

    async def _watch() -> RefreshResult:
        async with common.build_engine() as engine:
            if engine.remote is None:
                return RefreshResult(success=False, offline=True)
            first = await engine.start(on_snapshot=on_snapshot, interval_seconds=interval)
            console.print(f"[blue]Watching[/blue] every {engine.scheduler.interval_seconds:g}s: {first.summary()}")
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
            return first

    try:
        result = common.run_async(_watch())
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")
        raise typer.Exit(ExitCode.SIGINT)

    if result.offline:
        print_offline_error()
        raise typer.Exit(ExitCode.USER_ERROR)
