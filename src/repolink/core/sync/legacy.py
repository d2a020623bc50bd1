"""
Bridge between the legacy ``projectSettings`` map and canonical projects.

Some UI surfaces still read and write the legacy map, so both directions are
needed: legacy → canonical before every sync pass (legacy is authoritative for
repoName, branch, title and visibility), and canonical → legacy after an
inward pass so those surfaces see server data.

Neither method takes the coordinator's document lock; callers hold it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from repolink.core.sync.fresh_install import InstallTracker
from repolink.core.sync.models import (
    CanonicalProject,
    Clock,
    LegacyProjectEntry,
    SyncStatus,
    utc_now,
)
from repolink.core.sync.race_guard import RaceWindowGuard
from repolink.core.sync.repository import ProjectRepository
from repolink.core.sync.validation import is_sentinel

logger = logging.getLogger(__name__)


@dataclass
class MigrationOutcome:
    """What ``migrate_legacy_to_canonical`` did."""

    backfilled: bool = False
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.backfilled or bool(self.created) or bool(self.updated)


def _apply_legacy(
    project: CanonicalProject, entry: LegacyProjectEntry, now: Any
) -> CanonicalProject | None:
    """Overlay a legacy entry on a canonical project; None if nothing changed."""
    changes: dict[str, Any] = {}
    if project.repo_name != entry.repo_name:
        changes["repo_name"] = entry.repo_name
    if project.branch != entry.branch:
        changes["branch"] = entry.branch
    if entry.project_title and project.display_name != entry.project_title:
        changes["display_name"] = entry.project_title
    if entry.is_private is not None and project.is_private != entry.is_private:
        changes["is_private"] = entry.is_private
    if not changes:
        return None
    changes.update(
        last_modified=now,
        sync_status=SyncStatus.PENDING,
        version=project.version + 1,
    )
    return project.model_copy(update=changes)


def _put_unless_default(entry: dict[str, Any], key: str, value: Any, default: Any) -> None:
    """Set ``key``, but never add a key the entry lacks just to hold its default."""
    if key in entry or value != default:
        entry[key] = value


class LegacyFormatBridge:
    """
    Two-way translation between the legacy settings map and canonical projects.

    Example:
        >>> bridge = LegacyFormatBridge(repository, guard, tracker)
        >>> outcome = await bridge.migrate_legacy_to_canonical()
        >>> outcome.created
        ['abc123']
    """

    def __init__(
        self,
        repository: ProjectRepository,
        guard: RaceWindowGuard,
        tracker: InstallTracker,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.guard = guard
        self.tracker = tracker
        self._clock = clock

    async def migrate_legacy_to_canonical(self) -> MigrationOutcome:
        """
        Fold the legacy map into the canonical list.

        If any stored canonical record needed a schema upgrade, the upgraded
        list is saved and the method returns immediately with
        ``backfilled=True``; legacy entries are folded in on the next pass.

        Raises:
            StorageError: If the store cannot be read or written
        """
        loaded = await self.repository.load_canonical()
        if loaded.upgraded:
            await self.repository.save_canonical(loaded.projects, loaded.unreadable)
            logger.info("Backfilled stored projects to the current schema")
            return MigrationOutcome(backfilled=True)

        # One entry per remote id; a later duplicate replaces an earlier one.
        merged: dict[str, CanonicalProject] = {}
        for project in loaded.projects:
            merged[project.remote_id] = project
        deduplicated = len(merged) != len(loaded.projects)

        legacy = await self.repository.load_legacy()
        outcome = MigrationOutcome()
        now = self._clock()
        owner: str | None = None

        for remote_id, entry in legacy.items():
            if is_sentinel(remote_id):
                continue
            existing = merged.get(remote_id)
            if existing is not None:
                updated = _apply_legacy(existing, entry, now)
                if updated is not None:
                    merged[remote_id] = updated
                    outcome.updated.append(remote_id)
                continue

            if owner is None:
                owner = await self.repository.get_repo_owner()
            merged[remote_id] = CanonicalProject(
                id=remote_id,
                remote_id=remote_id,
                display_name=entry.project_title or remote_id,
                repo_owner=owner,
                repo_name=entry.repo_name,
                branch=entry.branch,
                is_private=entry.is_private,
                last_modified=now,
                sync_status=SyncStatus.PENDING,
                version=1,
            )
            outcome.created.append(remote_id)

        if outcome.created or outcome.updated or deduplicated:
            await self.repository.save_canonical(merged.values(), loaded.unreadable)
        if outcome.created:
            await self.tracker.record_projects_created(len(outcome.created))

        if outcome.changed:
            logger.info(
                "Migrated legacy settings: %d created, %d updated",
                len(outcome.created),
                len(outcome.updated),
            )
        return outcome

    async def push_canonical_to_legacy(self) -> list[str]:
        """
        Write canonical projects back into the legacy map.

        Projects with a user edit inside the race window are skipped whole.
        Keys already present in a legacy entry (cached GitHub metadata and the
        like) are preserved.

        Returns:
            Remote ids whose legacy entry was written
        """
        projects = await self.repository.get_local_projects()
        settings = dict(await self.repository.load_legacy_raw())
        recent = await self.guard.get_recent_changes()

        written: list[str] = []
        dirty = False
        for project in projects:
            if is_sentinel(project.remote_id):
                continue
            if project.remote_id in recent or project.id in recent:
                logger.info(
                    "Skipping legacy write-back for %s: edited %dms ago",
                    project.remote_id,
                    (recent.get(project.remote_id) or recent[project.id]).age_ms,
                )
                continue

            previous = settings.get(project.remote_id)
            entry: dict[str, Any] = dict(previous) if isinstance(previous, dict) else {}
            if not isinstance(previous, dict):
                entry.update(repoName=project.repo_name, branch=project.branch)
            else:
                _put_unless_default(entry, "repoName", project.repo_name, "")
                _put_unless_default(entry, "branch", project.branch, "main")
            # An absent or empty title reads back as the project id.
            implied_title = entry.get("projectTitle") or project.id
            if project.display_name and project.display_name != implied_title:
                entry["projectTitle"] = project.display_name
            if project.is_private is not None:
                entry["isPrivate"] = project.is_private

            try:
                LegacyProjectEntry.model_validate(entry)
            except PydanticValidationError as e:
                logger.warning("Not writing invalid legacy entry for %s: %s", project.remote_id, e)
                continue

            if entry != previous:
                settings[project.remote_id] = entry
                dirty = True
            written.append(project.remote_id)

        if dirty:
            await self.repository.save_legacy(settings)
            logger.debug("Wrote %d project(s) back to legacy settings", len(written))
        return written


__all__ = ["LegacyFormatBridge", "MigrationOutcome"]
