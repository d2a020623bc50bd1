"""
Protection for fresh user edits against concurrent sync write-backs.

When the user saves repoName/branch/title for a project, the settings-save
path calls ``RaceWindowGuard.record_change``. For the next ``window_ms``
milliseconds the reverse push (canonical → legacy) leaves that project
alone, so a sync pass that started before the edit cannot clobber it.

Records live in the key-value store so every component (and every process
sharing the store) sees the same protection. Ages are computed when the
records are read, not when they were written, which lets a long-running sync
pass see protection expire mid-flight.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from repolink.core.sync.models import Clock, RecentChange, RecentChangeRecord, utc_now
from repolink.core.sync.store import KeyValueStore, StorageKeys

logger = logging.getLogger(__name__)

DEFAULT_RACE_WINDOW_MS = 30_000

# Field names accepted in the older single-slot format, which stored the
# edited values rather than the list of edited field names.
_SINGLE_SLOT_FIELDS = ("repoName", "branch", "projectTitle")


class RaceWindowGuard:
    """
    Tracks recent local edits, one active record per project.

    Example:
        >>> guard = RaceWindowGuard(store)
        >>> await guard.record_change("abc123", ["repoName"])
        >>> recent = await guard.get_recent_changes()
        >>> recent["abc123"].fields
        ['repoName']
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        window_ms: int = DEFAULT_RACE_WINDOW_MS,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.window_ms = window_ms
        self._clock = clock
        self._lock = asyncio.Lock()

    @staticmethod
    def _parse(raw: Any) -> RecentChangeRecord | None:
        if not isinstance(raw, dict):
            return None
        data = dict(raw)
        if "changedFields" not in data:
            data["changedFields"] = [f for f in _SINGLE_SLOT_FIELDS if f in data]
        try:
            return RecentChangeRecord.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("Ignoring unreadable change record: %s", e)
            return None

    async def _load(self) -> dict[str, RecentChangeRecord]:
        result = await self.store.get(
            [StorageKeys.RECENT_CHANGES, StorageKeys.LAST_SETTINGS_UPDATE]
        )
        raw_records = result.get(StorageKeys.RECENT_CHANGES) or []
        if not isinstance(raw_records, list):
            raw_records = []
        candidates = [*raw_records, result.get(StorageKeys.LAST_SETTINGS_UPDATE)]

        records: dict[str, RecentChangeRecord] = {}
        for raw in candidates:
            record = self._parse(raw)
            if record is None:
                continue
            current = records.get(record.project_id)
            if current is None or record.timestamp >= current.timestamp:
                records[record.project_id] = record
        return records

    async def record_change(
        self,
        project_id: str,
        fields: list[str],
        timestamp: datetime | None = None,
    ) -> RecentChangeRecord:
        """
        Record that the user just edited ``fields`` of ``project_id``.

        Replaces any earlier record for the same project and prunes records
        that have already aged out of the window.
        """
        record = RecentChangeRecord(
            project_id=project_id,
            changed_fields=list(fields),
            timestamp=timestamp or self._clock(),
        )
        async with self._lock:
            records = await self._load()
            records[project_id] = record
            now = self._clock()
            kept = [r for r in records.values() if r.age_ms(now) < self.window_ms]
            if record not in kept:
                kept.append(record)
            await self.store.set(
                {
                    StorageKeys.RECENT_CHANGES: [r.to_storage() for r in kept],
                    StorageKeys.LAST_SETTINGS_UPDATE: record.to_storage(),
                }
            )
        logger.debug("Recorded change to %s for project %s", ", ".join(fields), project_id)
        return record

    async def get_recent_changes(self, window_ms: int | None = None) -> dict[str, RecentChange]:
        """
        Return ``{project_id: RecentChange}`` for edits younger than the window.

        Args:
            window_ms: Override of the configured window, in milliseconds
        """
        window = self.window_ms if window_ms is None else window_ms
        now = self._clock()
        recent: dict[str, RecentChange] = {}
        for project_id, record in (await self._load()).items():
            age = record.age_ms(now)
            if age < window:
                recent[project_id] = RecentChange(fields=record.changed_fields, age_ms=age)
        return recent


__all__ = ["DEFAULT_RACE_WINDOW_MS", "RaceWindowGuard"]
