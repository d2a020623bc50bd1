"""
Standardized error handling and exit codes for the repolink CLI.

This module provides consistent error messaging with actionable guidance
and standardized exit codes across all CLI commands.
"""

from enum import IntEnum
from typing import NoReturn

import typer
from rich.console import Console

from repolink.core.sync.exceptions import (
    AuthenticationError,
    NetworkError,
    RepoLinkError,
    ServerError,
    StorageError,
)

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for repolink CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Sync, network, server or storage failure."""

    USER_ERROR = 2
    """Invalid user input (actionable by user)."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


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
        ...     "Not authenticated",
        ...     solution="export REPOLINK_TOKEN=...",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{reason}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def exit_with_sync_error(error: RepoLinkError, *, token_env_var: str = "REPOLINK_TOKEN") -> NoReturn:
    """Print a sync error with guidance and exit with GENERAL_ERROR."""
    if isinstance(error, AuthenticationError):
        print_error(
            "Not authenticated",
            reason=str(error),
            solution=f"export {token_env_var}=<token>",
        )
    elif isinstance(error, NetworkError):
        print_error(
            "Could not reach the sync backend",
            reason=str(error),
            solution="check backend.base_url in .repolink.json or REPOLINK_BACKEND_URL",
        )
    elif isinstance(error, ServerError):
        status = f" (HTTP {error.status_code})" if error.status_code else ""
        print_error(f"Backend rejected the sync{status}", reason=str(error))
    elif isinstance(error, StorageError):
        print_error(
            "Local state could not be read or written",
            reason=str(error),
            solution="check storage.state_file or REPOLINK_STATE_FILE",
        )
    else:
        print_error(str(error))
    raise typer.Exit(ExitCode.GENERAL_ERROR)


def exit_with_user_error(problem: str, *, solution: str | None = None) -> NoReturn:
    """Print an input error and exit with USER_ERROR."""
    print_error(problem, solution=solution)
    raise typer.Exit(ExitCode.USER_ERROR)
