"""
Merge and deletion rules for the two sync directions.

Inward, server projects are merged additively into the local set: nothing
local is ever removed. Outward, a canonical project missing from the legacy
map is a deletion candidate, and whether it is actually dropped from the
payload depends on the fresh-install classification.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from repolink.core.sync.fresh_install import FreshInstallDetector
from repolink.core.sync.models import (
    BackendProject,
    CanonicalProject,
    Clock,
    SyncStatus,
    utc_now,
)
from repolink.core.sync.validation import is_sentinel, is_valid_project_id

logger = logging.getLogger(__name__)


@dataclass
class OutwardPlan:
    """Result of classifying an outward pass."""

    outgoing: list[CanonicalProject] = field(default_factory=list)
    deleted_ids: list[str] = field(default_factory=list)
    candidates: list[str] = field(default_factory=list)
    fresh_install: bool = False


class ConflictResolver:
    """Applies the merge and deletion rules."""

    def __init__(self, detector: FreshInstallDetector, *, clock: Clock = utc_now) -> None:
        self.detector = detector
        self._clock = clock

    def _merge_one(self, local: CanonicalProject, server: BackendProject) -> CanonicalProject:
        values: dict[str, Any] = {
            "display_name": server.project_name or local.display_name,
            "repo_owner": server.github_repo_owner or local.repo_owner,
            "repo_name": server.github_repo_name or local.repo_name,
            "branch": server.github_branch or local.branch,
            "is_private": local.is_private if server.is_private is None else server.is_private,
            "language": server.language if server.language is not None else local.language,
            "description": (
                server.project_description
                if server.project_description is not None
                else local.description
            ),
            "last_commit": server.last_commit() or local.last_commit,
        }
        changed = any(values[k] != getattr(local, k) for k in values)
        update: dict[str, Any] = {**values, "sync_status": SyncStatus.SYNCED}
        if changed:
            update["version"] = local.version + 1
            update["last_modified"] = server.last_modified or self._clock()
        return local.model_copy(update=update)

    def _from_server(self, server: BackendProject) -> CanonicalProject:
        return CanonicalProject(
            id=server.remote_id,
            remote_id=server.remote_id,
            display_name=server.project_name or server.remote_id,
            repo_owner=server.github_repo_owner or "",
            repo_name=server.github_repo_name or "",
            branch=server.github_branch or "main",
            is_private=server.is_private,
            last_modified=server.last_modified or self._clock(),
            sync_status=SyncStatus.SYNCED,
            version=1,
            language=server.language,
            description=server.project_description,
            last_commit=server.last_commit(),
        )

    def merge_server_into_local(
        self,
        local: Iterable[CanonicalProject],
        server: Iterable[BackendProject],
    ) -> list[CanonicalProject]:
        """
        Additively merge server projects into the local set.

        Local order is preserved and new projects are appended. A local
        project keeps its ``id``; its repo name, branch and title survive only
        where the server sent an empty value.
        """
        merged: dict[str, CanonicalProject] = {}
        for project in local:
            merged[project.remote_id] = project

        added = 0
        for remote in server:
            if is_sentinel(remote.remote_id) or not is_valid_project_id(remote.remote_id):
                logger.warning("Ignoring server project with invalid id %r", remote.remote_id)
                continue
            existing = merged.get(remote.remote_id)
            if existing is None:
                merged[remote.remote_id] = self._from_server(remote)
                added += 1
            else:
                merged[remote.remote_id] = self._merge_one(existing, remote)

        logger.debug("Merged server projects: %d new, %d total", added, len(merged))
        return list(merged.values())

    async def classify_outward_deletions(
        self,
        legacy_ids: Iterable[str],
        canonical: Iterable[CanonicalProject],
    ) -> OutwardPlan:
        """
        Decide which canonical projects are deleted by an outward pass.

        A project whose remote id is missing from the legacy map is a
        candidate. On a fresh install candidates are still sent, since the
        legacy map has simply not been populated yet.
        """
        legacy = set(legacy_ids)
        canonical = list(canonical)
        plan = OutwardPlan()
        kept: list[CanonicalProject] = []
        for project in canonical:
            if is_sentinel(project.remote_id):
                continue
            if project.remote_id in legacy:
                kept.append(project)
            else:
                plan.candidates.append(project.remote_id)

        if not plan.candidates:
            plan.outgoing = kept
            return plan

        plan.fresh_install = await self.detector.is_fresh_install()
        if plan.fresh_install:
            logger.info(
                "Fresh install: keeping %d project(s) missing from settings",
                len(plan.candidates),
            )
            plan.outgoing = [p for p in canonical if not is_sentinel(p.remote_id)]
        else:
            logger.info("Deleting project(s) removed locally: %s", ", ".join(plan.candidates))
            plan.outgoing = kept
            plan.deleted_ids = list(plan.candidates)
        return plan


__all__ = ["ConflictResolver", "OutwardPlan"]
