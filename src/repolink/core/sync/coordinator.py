"""
Sync coordinator: runs outward and inward passes against the backend.

A pass moves through a fixed sequence of phases::

    IDLE → GATING → MIGRATING → REQUESTING → MERGING → PERSISTING → DONE

and ends in FAILED if any step raises. The last phase reached per direction
is kept in ``last_phase`` for status reporting.

Concurrency: a second call for a direction that is already running joins the
running pass and gets the same result. Every read-modify-write of the
project documents happens under one shared lock, which is never held across
the network request; the inward merge therefore re-reads local state after
the response arrives.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import timedelta
from typing import TYPE_CHECKING

from repolink.core.sync.auth import AuthProvider
from repolink.core.sync.backend import SyncBackendClient
from repolink.core.sync.exceptions import AuthenticationError, ServerError
from repolink.core.sync.fresh_install import (
    FreshInstallDetector,
    FreshInstallThresholds,
    InstallTracker,
)
from repolink.core.sync.legacy import LegacyFormatBridge, MigrationOutcome
from repolink.core.sync.models import (
    CanonicalProject,
    Clock,
    ConflictResolution,
    SyncDirection,
    SyncPhase,
    SyncRequest,
    SyncResponse,
    utc_now,
)
from repolink.core.sync.race_guard import DEFAULT_RACE_WINDOW_MS, RaceWindowGuard
from repolink.core.sync.repository import ProjectRepository
from repolink.core.sync.resolver import ConflictResolver, OutwardPlan
from repolink.core.sync.store import KeyValueStore
from repolink.core.sync.validation import filter_syncable

if TYPE_CHECKING:
    from repolink.core.config.models import SyncConfig

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """
    Entry point for project sync.

    Example:
        >>> coordinator = SyncCoordinator(store, backend, auth)
        >>> response = await coordinator.perform_outward_sync()
        >>> if response is None:
        ...     print("Skipped")
    """

    def __init__(
        self,
        store: KeyValueStore,
        backend: SyncBackendClient,
        auth: AuthProvider,
        *,
        race_window_ms: int = DEFAULT_RACE_WINDOW_MS,
        thresholds: FreshInstallThresholds | None = None,
        inward_max_tracked_projects: int = 1,
        inward_gate_fail_open: bool = True,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.backend = backend
        self.auth = auth
        self.inward_max_tracked_projects = inward_max_tracked_projects
        self.inward_gate_fail_open = inward_gate_fail_open
        self._clock = clock

        self.repository = ProjectRepository(store)
        self.guard = RaceWindowGuard(store, window_ms=race_window_ms, clock=clock)
        self.tracker = InstallTracker(store, clock=clock)
        self.detector = FreshInstallDetector(self.repository, thresholds=thresholds, clock=clock)
        self.resolver = ConflictResolver(self.detector, clock=clock)
        self.bridge = LegacyFormatBridge(self.repository, self.guard, self.tracker, clock=clock)

        self.last_phase: dict[SyncDirection, SyncPhase] = {
            SyncDirection.OUTWARD: SyncPhase.IDLE,
            SyncDirection.INWARD: SyncPhase.IDLE,
        }
        self._in_flight: dict[SyncDirection, asyncio.Task[SyncResponse | None]] = {}
        self._documents_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        store: KeyValueStore,
        backend: SyncBackendClient,
        auth: AuthProvider,
        *,
        clock: Clock = utc_now,
    ) -> SyncCoordinator:
        """Build a coordinator with thresholds taken from ``SyncConfig``."""
        return cls(
            store,
            backend,
            auth,
            race_window_ms=config.race_window_ms,
            thresholds=FreshInstallThresholds(
                max_tracked_projects=config.fresh_install_max_tracked_projects,
                max_install_age=timedelta(days=config.fresh_install_max_age_days),
                max_lifetime_projects=config.fresh_install_max_lifetime_projects,
            ),
            inward_max_tracked_projects=config.inward_max_tracked_projects,
            inward_gate_fail_open=config.inward_gate_fail_open,
            clock=clock,
        )

    # -------- plumbing --------

    def _enter(self, direction: SyncDirection, phase: SyncPhase) -> None:
        self.last_phase[direction] = phase
        logger.debug("%s sync: %s", direction.value, phase.value)

    async def _single_flight(
        self,
        direction: SyncDirection,
        run: Callable[[], Awaitable[SyncResponse | None]],
    ) -> SyncResponse | None:
        running = self._in_flight.get(direction)
        if running is not None and not running.done():
            logger.debug("%s sync already running; joining it", direction.value)
            return await asyncio.shield(running)

        task = asyncio.ensure_future(run())
        self._in_flight[direction] = task
        try:
            return await task
        finally:
            if self._in_flight.get(direction) is task:
                del self._in_flight[direction]

    @staticmethod
    def _require_success(response: SyncResponse) -> SyncResponse:
        """Refuse to persist anything from a body with ``success: false``."""
        if not response.success:
            raise ServerError(
                f"Sync failed: {response.error or 'Unknown error'}",
                server_message=response.error,
            )
        return response

    async def _migrate(self, direction: SyncDirection) -> MigrationOutcome | None:
        """Fold legacy settings in; failures are logged and the pass continues."""
        self._enter(direction, SyncPhase.MIGRATING)
        try:
            async with self._documents_lock:
                return await self.bridge.migrate_legacy_to_canonical()
        except Exception:
            logger.exception("Legacy migration failed; continuing %s sync", direction.value)
            return None

    # -------- raw exchange --------

    async def sync_with_backend(
        self,
        conflict_resolution: ConflictResolution = ConflictResolution.AUTO_RESOLVE,
        projects: Iterable[CanonicalProject] | None = None,
    ) -> SyncResponse:
        """
        Exchange projects with the backend. Persists nothing.

        Args:
            conflict_resolution: Resolution mode sent to the backend
            projects: Projects to send; defaults to the stored canonical set.
                Invalid ids and the sentinel are always filtered out.

        Raises:
            AuthenticationError: If no token is available
            NetworkError: On connection failure or timeout
            ServerError: On a non-2xx response or unreadable body
        """
        token = await self.auth.get_auth_token()
        if not token:
            raise AuthenticationError()

        if projects is None:
            projects = await self.repository.get_local_projects()
        outgoing = filter_syncable(projects)
        last_sync = await self.repository.get_last_sync_timestamp()

        request = SyncRequest(
            local_projects=[p.to_backend() for p in outgoing],
            last_sync_timestamp=last_sync,
            conflict_resolution=conflict_resolution,
        )
        logger.info(
            "Sending %d project(s) to backend (%s)",
            len(request.local_projects),
            conflict_resolution.value,
        )
        response = await self.backend.sync_projects(request, token)

        if not response.success:
            logger.warning("Backend reported an unsuccessful sync: %s", response.error or "no detail")
        if response.conflicts:
            logger.warning(
                "Backend reported %d conflict(s): %s",
                len(response.conflicts),
                ", ".join(
                    (c.project.remote_id if c.project else "?") for c in response.conflicts
                ),
            )
        return response

    # -------- outward --------

    async def perform_outward_sync(self) -> SyncResponse | None:
        """
        Push local projects to the backend.

        Returns:
            The backend response, or None if the pass was skipped (not
            authenticated) or short-circuited by a schema backfill

        Raises:
            ServerError: On a non-2xx response or a body with ``success: false``;
                nothing is persisted in either case
        """
        return await self._single_flight(SyncDirection.OUTWARD, self._run_outward)

    async def _run_outward(self) -> SyncResponse | None:
        direction = SyncDirection.OUTWARD
        try:
            self._enter(direction, SyncPhase.GATING)
            state = await self.auth.get_auth_state()
            if not state.is_authenticated:
                logger.info("Skipping outward sync: user not authenticated")
                self._enter(direction, SyncPhase.IDLE)
                return None

            outcome = await self._migrate(direction)
            if outcome is not None and outcome.backfilled:
                logger.info("Outward sync ended after schema backfill")
                self._enter(direction, SyncPhase.DONE)
                return None

            self._enter(direction, SyncPhase.REQUESTING)
            async with self._documents_lock:
                legacy_ids = list(await self.repository.load_legacy_raw())
                canonical = await self.repository.get_local_projects()
            plan = await self.resolver.classify_outward_deletions(legacy_ids, canonical)
            response = self._require_success(
                await self.sync_with_backend(ConflictResolution.AUTO_RESOLVE, plan.outgoing)
            )

            self._enter(direction, SyncPhase.MERGING)
            # Outward results are never written over local projects.
            self._enter(direction, SyncPhase.PERSISTING)
            async with self._documents_lock:
                await self._prune_deleted(plan)
                await self.repository.set_last_sync_timestamp(self._clock())

            self._enter(direction, SyncPhase.DONE)
            logger.info(
                "Outward sync complete: %d sent, %d deleted, %d conflict(s)",
                len(plan.outgoing),
                len(plan.deleted_ids),
                len(response.conflicts),
            )
            return response
        except Exception:
            self._enter(direction, SyncPhase.FAILED)
            logger.exception("Outward sync failed")
            raise

    async def _prune_deleted(self, plan: OutwardPlan) -> None:
        """Drop confirmed deletions, re-checked against the current legacy map."""
        if not plan.deleted_ids:
            return
        legacy_ids = set(await self.repository.load_legacy_raw())
        doomed = {rid for rid in plan.deleted_ids if rid not in legacy_ids}
        if not doomed:
            return
        loaded = await self.repository.load_canonical()
        remaining = [p for p in loaded.projects if p.remote_id not in doomed]
        if len(remaining) != len(loaded.projects):
            await self.repository.save_canonical(remaining, loaded.unreadable)
            logger.info("Removed %d deleted project(s) locally", len(loaded.projects) - len(remaining))

    # -------- inward --------

    async def should_perform_inward_sync(self) -> bool:
        """
        Whether pulling server projects is allowed.

        Only installs tracking at most ``inward_max_tracked_projects``
        projects pull from the server. If the count cannot be read, the
        configured fallback decides.
        """
        try:
            tracked = await self.repository.tracked_project_ids()
        except Exception as e:
            logger.warning(
                "Could not count tracked projects (%s); inward sync %s",
                e,
                "allowed" if self.inward_gate_fail_open else "blocked",
            )
            return self.inward_gate_fail_open
        allowed = len(tracked) <= self.inward_max_tracked_projects
        if not allowed:
            logger.info("Inward sync not allowed: %d projects tracked locally", len(tracked))
        return allowed

    async def perform_inward_sync(self) -> SyncResponse | None:
        """
        Pull server projects into local storage.

        Returns:
            The backend response, or None if the pass was gated off or
            short-circuited by a schema backfill

        Raises:
            ServerError: On a non-2xx response or a body with ``success: false``
        """
        return await self._single_flight(SyncDirection.INWARD, self._run_inward)

    async def _run_inward(self) -> SyncResponse | None:
        direction = SyncDirection.INWARD
        try:
            self._enter(direction, SyncPhase.GATING)
            if not await self.should_perform_inward_sync():
                self._enter(direction, SyncPhase.IDLE)
                return None
            state = await self.auth.get_auth_state()
            if not state.is_authenticated:
                logger.info("Skipping inward sync: user not authenticated")
                self._enter(direction, SyncPhase.IDLE)
                return None

            outcome = await self._migrate(direction)
            if outcome is not None and outcome.backfilled:
                logger.info("Inward sync ended after schema backfill")
                self._enter(direction, SyncPhase.DONE)
                return None

            self._enter(direction, SyncPhase.REQUESTING)
            response = self._require_success(
                await self.sync_with_backend(ConflictResolution.KEEP_REMOTE)
            )

            async with self._documents_lock:
                self._enter(direction, SyncPhase.MERGING)
                loaded = await self.repository.load_canonical()
                merged = self.resolver.merge_server_into_local(
                    loaded.projects, response.updated_projects
                )

                self._enter(direction, SyncPhase.PERSISTING)
                await self.repository.save_canonical(merged, loaded.unreadable)
                try:
                    await self.bridge.push_canonical_to_legacy()
                except Exception:
                    logger.exception("Writing projects back to legacy settings failed")
                await self.repository.set_last_sync_timestamp(self._clock())

            self._enter(direction, SyncPhase.DONE)
            logger.info(
                "Inward sync complete: %d received, %d stored locally",
                len(response.updated_projects),
                len(merged),
            )
            return response
        except Exception:
            self._enter(direction, SyncPhase.FAILED)
            logger.exception("Inward sync failed")
            raise

    # -------- settings-save path --------

    async def save_project_settings(
        self,
        project_id: str,
        *,
        repo_name: str,
        branch: str,
        project_title: str | None = None,
        is_private: bool | None = None,
    ) -> list[str]:
        """
        Record a user edit of one project's settings.

        Writes the legacy entry (keeping any extra keys it had) and records
        the edited fields with the race guard so an in-flight inward pass
        does not overwrite them.

        Returns:
            Names of the fields that changed
        """
        async with self._documents_lock:
            settings = dict(await self.repository.load_legacy_raw())
            previous = settings.get(project_id)
            entry = dict(previous) if isinstance(previous, dict) else {}
            updates: dict[str, object] = {"repoName": repo_name, "branch": branch}
            if project_title is not None:
                updates["projectTitle"] = project_title
            if is_private is not None:
                updates["isPrivate"] = is_private
            changed = [k for k, v in updates.items() if entry.get(k) != v]
            entry.update(updates)
            settings[project_id] = entry
            # Recorded before the lock is released, so a waiting inward pass
            # sees the protection when it writes back.
            if changed:
                await self.guard.record_change(project_id, changed)
            await self.repository.save_legacy(settings)

        logger.info("Saved settings for %s (%s)", project_id, ", ".join(changed) or "unchanged")
        return changed

    async def remove_project(self, project_id: str) -> bool:
        """
        Remove a project from the legacy map.

        The canonical entry stays until the next outward pass classifies it
        as deleted.

        Returns:
            True if the project was present
        """
        async with self._documents_lock:
            settings = dict(await self.repository.load_legacy_raw())
            if project_id not in settings:
                return False
            del settings[project_id]
            await self.repository.save_legacy(settings)
        logger.info("Removed settings for %s", project_id)
        return True


__all__ = ["SyncCoordinator"]
