"""
Fresh-install detection.

An outward sync drops projects the user removed locally, which tells the
backend to delete them. A brand-new install has not yet seen the user's
projects, so an empty local list there means "not imported yet", not
"deleted". ``FreshInstallDetector`` decides which of the two situations the
install is in; ``InstallTracker`` maintains the signals it reads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from repolink.core.sync.models import Clock, utc_now
from repolink.core.sync.repository import ProjectRepository
from repolink.core.sync.store import KeyValueStore, StorageKeys

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a stored timestamp.

    Accepts epoch milliseconds (int/float) or an ISO-8601 string. Returns
    None for anything else, so callers can treat the signal as missing.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=utc_now().tzinfo)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=utc_now().tzinfo)
        return parsed
    return None


@dataclass(frozen=True)
class FreshInstallThresholds:
    max_tracked_projects: int = 1
    max_install_age: timedelta = timedelta(days=7)
    max_lifetime_projects: int = 2


@dataclass(frozen=True)
class FreshInstallSignals:
    """Raw inputs of a classification, kept for logging and ``status``."""

    has_synced: bool | None
    tracked_projects: int | None
    install_age: timedelta | None
    lifetime_projects: int | None


class FreshInstallDetector:
    """
    Classifies the install as fresh or established.

    ``is_fresh_install()`` is true only if all of:
      (a) no ``lastSyncTimestamp`` has ever been recorded;
      (b) at most ``max_tracked_projects`` distinct projects across
          legacy ∪ canonical;
      (c) install age below ``max_install_age`` OR lifetime project
          creations at most ``max_lifetime_projects``.

    Every missing or unreadable signal makes its sub-condition false, so
    uncertainty always classifies the install as established.
    """

    def __init__(
        self,
        repository: ProjectRepository,
        *,
        thresholds: FreshInstallThresholds | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.thresholds = thresholds or FreshInstallThresholds()
        self._clock = clock

    async def collect_signals(self) -> FreshInstallSignals:
        """Read every signal; each one that cannot be read is None."""
        store = self.repository.store

        try:
            last_sync = await self.repository.get_last_sync_timestamp()
            has_synced: bool | None = last_sync is not None
        except Exception as e:
            logger.warning("Could not read last sync timestamp: %s", e)
            has_synced = None

        try:
            tracked: int | None = len(await self.repository.tracked_project_ids())
        except Exception as e:
            logger.warning("Could not count tracked projects: %s", e)
            tracked = None

        install_age: timedelta | None = None
        lifetime: int | None = None
        try:
            values = await store.get(
                [StorageKeys.INSTALL_DATE, StorageKeys.LIFETIME_PROJECT_COUNT]
            )
        except Exception as e:
            logger.warning("Could not read install metadata: %s", e)
            values = {}

        install_date = parse_timestamp(values.get(StorageKeys.INSTALL_DATE))
        if install_date is not None:
            install_age = self._clock() - install_date

        count = values.get(StorageKeys.LIFETIME_PROJECT_COUNT)
        if isinstance(count, int) and not isinstance(count, bool) and count >= 0:
            lifetime = count

        return FreshInstallSignals(
            has_synced=has_synced,
            tracked_projects=tracked,
            install_age=install_age,
            lifetime_projects=lifetime,
        )

    def classify(self, signals: FreshInstallSignals) -> bool:
        """Apply the thresholds to already-collected signals."""
        t = self.thresholds
        never_synced = signals.has_synced is False
        few_projects = (
            signals.tracked_projects is not None
            and signals.tracked_projects <= t.max_tracked_projects
        )
        young = signals.install_age is not None and signals.install_age < t.max_install_age
        low_usage = (
            signals.lifetime_projects is not None
            and signals.lifetime_projects <= t.max_lifetime_projects
        )
        return never_synced and few_projects and (young or low_usage)

    async def is_fresh_install(self) -> bool:
        signals = await self.collect_signals()
        fresh = self.classify(signals)
        logger.debug("Fresh install check: %s -> %s", signals, "fresh" if fresh else "established")
        return fresh


class InstallTracker:
    """Maintains the install date and the lifetime project-creation counter."""

    def __init__(self, store: KeyValueStore, *, clock: Clock = utc_now) -> None:
        self.store = store
        self._clock = clock

    async def ensure_install_date(self) -> datetime:
        """Return the recorded install date, recording now if there is none."""
        values = await self.store.get([StorageKeys.INSTALL_DATE])
        existing = parse_timestamp(values.get(StorageKeys.INSTALL_DATE))
        if existing is not None:
            return existing
        now = self._clock()
        await self.store.set({StorageKeys.INSTALL_DATE: int(now.timestamp() * 1000)})
        logger.info("Recorded install date %s", now.isoformat())
        return now

    async def record_projects_created(self, count: int = 1) -> int:
        """Add ``count`` to the lifetime counter and return the new total."""
        values = await self.store.get([StorageKeys.LIFETIME_PROJECT_COUNT])
        current = values.get(StorageKeys.LIFETIME_PROJECT_COUNT)
        if not isinstance(current, int) or isinstance(current, bool):
            current = 0
        total = current + count
        await self.store.set({StorageKeys.LIFETIME_PROJECT_COUNT: total})
        return total


__all__ = [
    "FreshInstallDetector",
    "FreshInstallSignals",
    "FreshInstallThresholds",
    "InstallTracker",
    "parse_timestamp",
]
