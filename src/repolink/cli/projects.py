"""
repolink CLI - project listing and settings commands.

``link`` and ``unlink`` are the settings-save path: they edit the legacy
settings map and record the edit so a concurrent pull cannot overwrite it.
"""

import typer
from rich.console import Console
from rich.table import Table

from repolink.cli.context import build_coordinator, load_cli_config, run_async
from repolink.cli.errors import exit_with_sync_error, exit_with_user_error
from repolink.core.sync import CanonicalProject, SyncCoordinator
from repolink.core.sync.exceptions import RepoLinkError, ValidationError
from repolink.core.sync.store import StorageKeys
from repolink.core.sync.validation import (
    is_valid_branch_name,
    is_valid_owner,
    is_valid_repo_name,
    validate_project_id,
)

console = Console()

_STATUS_STYLES = {"synced": "green", "pending": "yellow", "conflict": "red"}


def projects() -> None:
    """
    List stored projects.

    Examples:
        repolink projects
    """
    config = load_cli_config()
    coordinator = build_coordinator(config)
    try:
        items: list[CanonicalProject] = run_async(coordinator.repository.get_local_projects())
    except RepoLinkError as e:
        exit_with_sync_error(e, token_env_var=config.auth.token_env_var)

    if not items:
        console.print("[dim]No projects stored yet.[/dim]")
        return

    table = Table(title="Projects")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Repository")
    table.add_column("Branch")
    table.add_column("Visibility")
    table.add_column("Status")
    table.add_column("Version", justify="right")
    for project in items:
        repo = "/".join(p for p in (project.repo_owner, project.repo_name) if p) or "-"
        if project.is_private is None:
            visibility = "[dim]-[/dim]"
        else:
            visibility = "private" if project.is_private else "public"
        style = _STATUS_STYLES.get(project.sync_status.value, "white")
        table.add_row(
            project.id,
            project.display_name,
            repo,
            project.branch,
            visibility,
            f"[{style}]{project.sync_status.value}[/{style}]",
            str(project.version),
        )
    console.print(table)


async def _link(
    coordinator: SyncCoordinator,
    project_id: str,
    repo: str,
    branch: str,
    title: str | None,
    private: bool | None,
    owner: str | None,
) -> list[str]:
    await coordinator.tracker.ensure_install_date()
    if owner is not None:
        await coordinator.store.set({StorageKeys.REPO_OWNER: owner})
    return await coordinator.save_project_settings(
        project_id,
        repo_name=repo,
        branch=branch,
        project_title=title,
        is_private=private,
    )


def link(
    project_id: str = typer.Argument(..., help="Project id (letters, digits, '_' and '-')"),
    repo: str = typer.Option(..., "--repo", "-r", help="GitHub repository name"),
    branch: str = typer.Option("main", "--branch", "-b", help="Target branch"),
    title: str | None = typer.Option(None, "--title", "-t", help="Project title"),
    private: bool | None = typer.Option(
        None,
        "--private/--public",
        help="Repository visibility (unchanged when omitted)",
    ),
    owner: str | None = typer.Option(
        None,
        "--owner",
        help="GitHub owner used for new projects",
    ),
) -> None:
    """
    Link a project to a GitHub repository.

    The change is protected from being overwritten by a sync for the
    configured race window.

    Examples:
        repolink link abc123 --repo my-app
        repolink link abc123 --repo my-app --branch develop --private
    """
    try:
        validate_project_id(project_id)
    except ValidationError as e:
        exit_with_user_error(str(e))
    if not is_valid_repo_name(repo):
        exit_with_user_error(
            f"Invalid repository name {repo!r}",
            solution="use up to 100 letters, digits, '.', '_' or '-'",
        )
    if not is_valid_branch_name(branch):
        exit_with_user_error(f"Invalid branch name {branch!r}")
    if owner is not None and not is_valid_owner(owner):
        exit_with_user_error(
            f"Invalid owner {owner!r}",
            solution="use letters, digits and single hyphens (max 39 characters)",
        )

    config = load_cli_config()
    coordinator = build_coordinator(config)
    try:
        changed = run_async(
            _link(coordinator, project_id, repo, branch, title, private, owner)
        )
    except RepoLinkError as e:
        exit_with_sync_error(e, token_env_var=config.auth.token_env_var)

    if changed:
        console.print(f"[green]✓[/green] Linked {project_id} → {repo}@{branch}")
    else:
        console.print(f"[blue]{project_id} already linked to {repo}@{branch}[/blue]")


def unlink(
    project_id: str = typer.Argument(..., help="Project id to remove"),
) -> None:
    """
    Remove a project's settings.

    The project is deleted on the backend by the next push.

    Examples:
        repolink unlink abc123
    """
    config = load_cli_config()
    coordinator = build_coordinator(config)
    try:
        removed = run_async(coordinator.remove_project(project_id))
    except RepoLinkError as e:
        exit_with_sync_error(e, token_env_var=config.auth.token_env_var)

    if not removed:
        exit_with_user_error(f"No settings stored for project {project_id!r}")
    console.print(f"[green]✓[/green] Unlinked {project_id}")
    console.print("[dim]Run [bold]repolink push[/bold] to delete it on the backend.[/dim]")
