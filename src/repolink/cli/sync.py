"""
repolink CLI - push, pull and status commands.

Runs the sync engine against the configured backend and local state file.
"""

from rich.console import Console
from rich.table import Table

from repolink.cli.context import build_coordinator, load_cli_config, run_async
from repolink.cli.errors import exit_with_sync_error
from repolink.core.sync import SyncCoordinator, SyncResponse
from repolink.core.sync.exceptions import RepoLinkError

console = Console()


def _print_conflicts(response: SyncResponse) -> None:
    if not response.conflicts:
        return
    table = Table(title="Conflicts")
    table.add_column("Project", style="cyan")
    table.add_column("Kind")
    table.add_column("Message")
    for conflict in response.conflicts:
        table.add_row(
            conflict.project.remote_id if conflict.project else "?",
            conflict.conflict_kind or "-",
            conflict.message or conflict.error or "",
        )
    console.print(table)


async def _push(coordinator: SyncCoordinator) -> SyncResponse | None:
    async with coordinator.backend:
        await coordinator.tracker.ensure_install_date()
        return await coordinator.perform_outward_sync()


async def _pull(coordinator: SyncCoordinator) -> SyncResponse | None:
    async with coordinator.backend:
        await coordinator.tracker.ensure_install_date()
        return await coordinator.perform_inward_sync()


def push() -> None:
    """
    Push local projects to the backend (outward sync).

    Legacy settings are folded into the project list first. Projects removed
    locally are deleted on the backend, unless this install is still fresh.

    Examples:
        repolink push
        REPOLINK_TOKEN=... repolink push
    """
    config = load_cli_config()
    coordinator = build_coordinator(config)
    try:
        response = run_async(_push(coordinator))
    except RepoLinkError as e:
        exit_with_sync_error(e, token_env_var=config.auth.token_env_var)

    if response is None:
        console.print("[yellow]Skipped:[/yellow] not authenticated or stored projects were upgraded")
        console.print("[dim]Run [bold]repolink push[/bold] again to send them.[/dim]")
        return

    console.print(
        f"[green]✓[/green] Pushed projects "
        f"({len(response.updated_projects)} updated on server, "
        f"{len(response.conflicts)} conflict(s))"
    )
    _print_conflicts(response)


def pull() -> None:
    """
    Pull projects from the backend (inward sync).

    Only runs when this install tracks at most one project, so a pull can
    never overwrite a populated local set.

    Examples:
        repolink pull
    """
    config = load_cli_config()
    coordinator = build_coordinator(config)
    try:
        response = run_async(_pull(coordinator))
    except RepoLinkError as e:
        exit_with_sync_error(e, token_env_var=config.auth.token_env_var)

    if response is None:
        console.print(
            "[yellow]Skipped:[/yellow] pull only runs for installs tracking at most "
            f"{config.sync.inward_max_tracked_projects} project(s), when authenticated"
        )
        return

    console.print(f"[green]✓[/green] Pulled {len(response.updated_projects)} project(s)")
    _print_conflicts(response)


async def _collect_status(coordinator: SyncCoordinator) -> dict[str, str]:
    repository = coordinator.repository
    legacy = await repository.load_legacy_raw()
    loaded = await repository.load_canonical()
    last_sync = await repository.get_last_sync_timestamp()
    signals = await coordinator.detector.collect_signals()
    recent = await coordinator.guard.get_recent_changes()
    auth = await coordinator.auth.get_auth_state()

    rows = {
        "Authenticated": f"yes ({auth.auth_method})" if auth.is_authenticated else "no",
        "Projects": str(len(loaded.projects)),
        "Legacy settings": str(len(legacy)),
        "Last sync": last_sync or "never",
        "Install": "fresh" if coordinator.detector.classify(signals) else "established",
        "Pull allowed": "yes" if await coordinator.should_perform_inward_sync() else "no",
    }
    if signals.install_age is not None:
        rows["Install age"] = f"{signals.install_age.days} day(s)"
    if loaded.unreadable:
        rows["Unreadable records"] = str(len(loaded.unreadable))
    if recent:
        rows["Protected edits"] = ", ".join(
            f"{pid} ({change.age_ms // 1000}s)" for pid, change in recent.items()
        )
    return rows


def status() -> None:
    """
    Show local sync state.

    Examples:
        repolink status
    """
    config = load_cli_config()
    coordinator = build_coordinator(config)
    try:
        rows = run_async(_collect_status(coordinator))
    except RepoLinkError as e:
        exit_with_sync_error(e, token_env_var=config.auth.token_env_var)

    table = Table(title="Sync Status", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for field, value in rows.items():
        table.add_row(field, value)
    console.print(table)
