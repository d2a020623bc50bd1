"""
repolink CLI - Main application entry point.

This module sets up the Typer CLI application with all commands.
"""

import typer
from rich.console import Console

from repolink import __version__
from repolink.cli import projects, sync
from repolink.cli.context import setup_logging
from repolink.core.config.env import load_layered_env

PANEL_SYNC = "Sync"
PANEL_PROJECTS = "Projects"

app = typer.Typer(
    name="repolink",
    help="Keep linked GitHub repositories in sync with the backend",
    no_args_is_help=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"repolink {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """
    repolink - project sync for linked GitHub repositories.

    Quick Start:
        1. export REPOLINK_TOKEN=...                 # Authenticate
        2. repolink link abc123 --repo my-app        # Link a project
        3. repolink push                             # Send it to the backend

    Configuration:
        ~/.config/repolink/config.json, ./.repolink.json, REPOLINK_* env vars
    """
    # Precedence: OS env > project .env > user .env
    load_layered_env()
    setup_logging(debug)
    ctx.obj = {"debug": debug}


app.command(name="push", rich_help_panel=PANEL_SYNC)(sync.push)
app.command(name="pull", rich_help_panel=PANEL_SYNC)(sync.pull)
app.command(name="status", rich_help_panel=PANEL_SYNC)(sync.status)

app.command(name="projects", rich_help_panel=PANEL_PROJECTS)(projects.projects)
app.command(name="link", rich_help_panel=PANEL_PROJECTS)(projects.link)
app.command(name="unlink", rich_help_panel=PANEL_PROJECTS)(projects.unlink)


def cli_main() -> None:
    app()


__all__ = ["app", "cli_main"]
