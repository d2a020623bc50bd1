"""
Typed access to the two project documents in the key-value store.

The canonical project list (``projects``) and the legacy settings map
(``projectSettings``) are both whole documents: every update is a
read-modify-write of the full value. Callers that mutate them must hold the
coordinator's document lock.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from repolink.core.sync.exceptions import StorageError
from repolink.core.sync.models import CanonicalProject, LegacyProjectEntry
from repolink.core.sync.schema import UpgradeResult, upgrade_records
from repolink.core.sync.store import KeyValueStore, StorageKeys
from repolink.core.sync.validation import is_sentinel

logger = logging.getLogger(__name__)


class ProjectRepository:
    """
    Reads and writes project documents through a ``KeyValueStore``.

    Store failures surface as ``StorageError``; anything the store raises
    that is not already a ``StorageError`` is wrapped.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def _get(self, keys: list[str]) -> dict[str, Any]:
        try:
            return await self.store.get(keys)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {', '.join(keys)}: {e}") from e

    async def _set(self, values: dict[str, Any]) -> None:
        try:
            await self.store.set(values)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write {', '.join(values)}: {e}") from e

    # -------- canonical projects --------

    async def load_canonical(self) -> UpgradeResult:
        """Read the canonical list, upgrading records to the current schema."""
        result = await self._get([StorageKeys.PROJECTS])
        raw = result.get(StorageKeys.PROJECTS) or []
        if not isinstance(raw, list):
            logger.error("Stored project list is not a list; treating as empty")
            raw = []
        return upgrade_records(raw)

    async def get_local_projects(self) -> list[CanonicalProject]:
        return (await self.load_canonical()).projects

    async def save_canonical(
        self,
        projects: Iterable[CanonicalProject],
        unreadable: Iterable[Any] = (),
    ) -> None:
        """Replace the canonical list. Unreadable raw records are appended as-is."""
        projects = list(projects)
        records: list[Any] = [p.to_storage() for p in projects]
        records.extend(unreadable)
        await self._set({StorageKeys.PROJECTS: records})
        logger.info(
            "Saved %d project(s) to local storage: %s",
            len(projects),
            ", ".join(p.id for p in projects) or "none",
        )

    # -------- legacy settings map --------

    async def load_legacy_raw(self) -> dict[str, Any]:
        result = await self._get([StorageKeys.LEGACY_SETTINGS])
        raw = result.get(StorageKeys.LEGACY_SETTINGS) or {}
        if not isinstance(raw, dict):
            logger.error("Stored project settings are not a map; treating as empty")
            return {}
        return raw

    async def load_legacy(self) -> dict[str, LegacyProjectEntry]:
        """Parsed legacy entries; malformed entries are skipped with an error log."""
        entries: dict[str, LegacyProjectEntry] = {}
        for key, value in (await self.load_legacy_raw()).items():
            try:
                entries[key] = LegacyProjectEntry.model_validate(value)
            except PydanticValidationError as e:
                logger.error("Ignoring malformed settings for project %s: %s", key, e)
        return entries

    async def save_legacy(self, settings: dict[str, Any]) -> None:
        await self._set({StorageKeys.LEGACY_SETTINGS: settings})

    # -------- scalar settings --------

    async def get_repo_owner(self) -> str:
        result = await self._get([StorageKeys.REPO_OWNER])
        return str(result.get(StorageKeys.REPO_OWNER) or "")

    async def get_last_sync_timestamp(self) -> str | None:
        result = await self._get([StorageKeys.LAST_SYNC_TIMESTAMP])
        return result.get(StorageKeys.LAST_SYNC_TIMESTAMP) or None

    async def set_last_sync_timestamp(self, timestamp: datetime) -> str:
        value = timestamp.isoformat().replace("+00:00", "Z")
        await self._set({StorageKeys.LAST_SYNC_TIMESTAMP: value})
        logger.debug("Updated last sync timestamp to %s", value)
        return value

    # -------- derived --------

    async def tracked_project_ids(self) -> set[str]:
        """Distinct project ids across legacy ∪ canonical, excluding the sentinel."""
        legacy = await self.load_legacy_raw()
        canonical = await self.get_local_projects()
        ids = set(legacy) | {p.remote_id for p in canonical}
        return {i for i in ids if not is_sentinel(i)}


__all__ = ["ProjectRepository"]
