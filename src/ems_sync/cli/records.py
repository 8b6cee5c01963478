"""
ems-sync CLI - record views and edits.

Views are projected for the signed-in user: administrators see everything,
other users see the employees of the offices they hold and their selected
posts.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from ems_sync.cli import common
from ems_sync.cli.errors import (
    ExitCode,
    exit_code_for,
    print_error,
    print_not_signed_in_error,
    print_sync_failure,
)
from ems_sync.core.sync.engine import SyncEngine
from ems_sync.core.sync.models import WriteResult
from ems_sync.core.views.projector import is_employee_locked

console = Console()


def _require_session(engine: SyncEngine) -> None:
    if engine.identity is None:
        print_not_signed_in_error()
        raise typer.Exit(ExitCode.USER_ERROR)


def _report_write(result: WriteResult) -> None:
    if not result.success:
        print_sync_failure(result.summary(), result.error_kind)
        raise typer.Exit(exit_code_for(result.error_kind))
    console.print(f"[green]✓[/green] {result.summary()}")


def employees(
    inactive: bool = typer.Option(
        False,
        "--inactive",
        help="Include deactivated employees",
    ),
) -> None:
    """
    List the employees visible to the signed-in user.

    Examples:
        ems-sync employees
        ems-sync employees --inactive
    """
    engine = common.build_engine()
    _require_session(engine)

    rows = [e for e in engine.employees() if inactive or e.is_active]
    table = Table(title=f"Employees ({len(rows)})")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("Office", justify="right")
    table.add_column("Post", justify="right")
    table.add_column("Active")
    table.add_column("Locked")
    for employee in rows:
        name = " ".join(p for p in (employee.employee_name, employee.employee_surname) if p)
        locked = is_employee_locked(engine.snapshot, employee, engine.identity)
        table.add_row(
            str(employee.employee_id),
            name or "-",
            str(employee.office_id or "-"),
            str(employee.post_id or "-"),
            "yes" if employee.is_active else f"no ({employee.da_reason or '-'})",
            "yes" if locked else "",
        )
    console.print(table)


def posts() -> None:
    """List the posts visible to the signed-in user."""
    engine = common.build_engine()
    _require_session(engine)

    rows = engine.posts()
    table = Table(title=f"Posts ({len(rows)})")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Name")
    for post in rows:
        table.add_row(str(post.post_id), post.post_name or "-")
    console.print(table)


def toggle_post(
    post_id: int = typer.Argument(..., help="Post_ID to add or remove"),
) -> None:
    """
    Add a post to, or remove it from, your post selection.

    Examples:
        ems-sync toggle-post 3
    """
    engine = common.build_engine()
    _require_session(engine)

    async def _toggle() -> WriteResult:
        async with engine:
            return await engine.toggle_post_selection(post_id)

    _report_write(common.run_async(_toggle()))


def finalize(
    office_id: int = typer.Argument(..., help="Office_ID to finalize"),
    undo: bool = typer.Option(
        False,
        "--undo",
        help="Reopen a finalized office",
    ),
) -> None:
    """
    Finalize an office, locking its employees for non-admin users.

    Examples:
        ems-sync finalize 4
        ems-sync finalize 4 --undo
    """
    engine = common.build_engine()

    async def _finalize() -> WriteResult:
        async with engine:
            return await engine.set_office_finalized(office_id, not undo)

    result = common.run_async(_finalize())
    if not result.success and result.error_kind is None:
        print_error(result.message, solution="ems-sync refresh  # to load the latest offices")
        raise typer.Exit(ExitCode.USER_ERROR)
    _report_write(result)


def finalize_department(
    department_id: int = typer.Argument(..., help="Department_ID whose offices to finalize"),
) -> None:
    """
    Finalize every open office of a department, stopping at the first failure.

    Examples:
        ems-sync finalize-department 2
    """
    engine = common.build_engine()

    async def _finalize() -> list[WriteResult]:
        async with engine:
            return await engine.finalize_department(department_id)

    results = common.run_async(_finalize())
    if not results:
        console.print(f"[blue]No open offices in department {department_id}[/blue]")
        return
    for result in results:
        _report_write(result)
