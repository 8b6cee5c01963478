"""
ems-sync CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import typer
from rich.console import Console

from ems_sync import __version__
from ems_sync.cli import records, session, sync
from ems_sync.cli.common import setup_logging
from ems_sync.core.config.env import load_layered_env

# Help panel names for command grouping
PANEL_SYNC = "Sync"
PANEL_SESSION = "Session"
PANEL_RECORDS = "Records"

app = typer.Typer(
    name="ems-sync",
    help="Keep a local copy of the employee register in step with its endpoint",
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
    ems-sync - employee register sync client.

    Quick Start:
        export EMS_SYNC_ENDPOINT=<web-hook url>
        ems-sync refresh             # Pull the latest snapshot
        ems-sync login 7             # Sign in as user 7
        ems-sync employees           # Your employees
    """
    setup_logging(debug)
    # Precedence: OS env > project .env > user .env
    load_layered_env()
    ctx.obj = {"debug": debug}


app.command(name="refresh", rich_help_panel=PANEL_SYNC)(sync.refresh)
app.command(name="status", rich_help_panel=PANEL_SYNC)(sync.status)
app.command(name="watch", rich_help_panel=PANEL_SYNC)(sync.watch)

app.command(name="login", rich_help_panel=PANEL_SESSION)(session.login)
app.command(name="logout", rich_help_panel=PANEL_SESSION)(session.logout)
app.command(name="whoami", rich_help_panel=PANEL_SESSION)(session.whoami)

app.command(name="employees", rich_help_panel=PANEL_RECORDS)(records.employees)
app.command(name="posts", rich_help_panel=PANEL_RECORDS)(records.posts)
app.command(name="toggle-post", rich_help_panel=PANEL_RECORDS)(records.toggle_post)
app.command(name="finalize", rich_help_panel=PANEL_RECORDS)(records.finalize)
app.command(name="finalize-department", rich_help_panel=PANEL_RECORDS)(records.finalize_department)


@app.command()
def version() -> None:
    """Show ems-sync version and exit."""
    console.print(f"ems-sync version {__version__}")
    raise typer.Exit(0)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
