"""
Key-value storage for sync state.

The sync engine only needs whole-document ``get``/``set``; there are no
field-level updates or transactions, so callers serialize their own
read-modify-write sequences.

Two implementations are provided:
- ``InMemoryKeyValueStore`` for embedding and tests
- ``JsonFileKeyValueStore`` persisting every key in one JSON file
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Protocol, runtime_checkable

from repolink.core.sync.exceptions import StorageError

logger = logging.getLogger(__name__)


class StorageKeys:
    """Keys read and written by the sync engine."""

    PROJECTS = "projects"
    LEGACY_SETTINGS = "projectSettings"
    REPO_OWNER = "repoOwner"
    LAST_SYNC_TIMESTAMP = "lastSyncTimestamp"
    INSTALL_DATE = "installDate"
    LIFETIME_PROJECT_COUNT = "lifetimeProjectCount"
    RECENT_CHANGES = "recentProjectChanges"
    LAST_SETTINGS_UPDATE = "lastSettingsUpdate"
    AUTH_TOKEN = "authToken"
    AUTH_TOKEN_EXPIRY = "authTokenExpiry"


@runtime_checkable
class KeyValueStore(Protocol):
    """Whole-document async key-value store."""

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the stored values for ``keys``; missing keys are absent."""
        ...

    async def set(self, values: dict[str, Any]) -> None:
        """Store every key in ``values``, replacing previous values."""
        ...


class InMemoryKeyValueStore:
    """
    Dict-backed store.

    Values are deep-copied on the way in and out so callers can never mutate
    stored documents in place, matching the behavior of a real store.
    """

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {k: copy.deepcopy(self._data[k]) for k in keys if k in self._data}

    async def set(self, values: dict[str, Any]) -> None:
        self._data.update(copy.deepcopy(values))

    def snapshot(self) -> dict[str, Any]:
        """Copy of everything stored."""
        return copy.deepcopy(self._data)


class JsonFileKeyValueStore:
    """
    Store persisting all keys in a single JSON file.

    Writes are atomic (temp file + replace). The file is created on the first
    ``set``; reading a missing file yields an empty store.

    Example:
        >>> store = JsonFileKeyValueStore(Path("~/.local/share/repolink/state.json"))
        >>> await store.set({"repoOwner": "octocat"})
        >>> await store.get(["repoOwner"])
        {'repoOwner': 'octocat'}
    """

    def __init__(self, path: Path) -> None:
        self.path = path.expanduser()
        self._lock = asyncio.Lock()

    def _read_all(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read state file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"State file {self.path} does not contain a JSON object")
        return data

    def _write_all(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent,
                prefix=".state_",
                suffix=".json.tmp",
            )
        except OSError as e:
            raise StorageError(f"Failed to write state file {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise StorageError(f"Failed to write state file {self.path}: {e}") from e

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
        return {k: data[k] for k in keys if k in data}

    async def set(self, values: dict[str, Any]) -> None:
        # File I/O runs in a worker thread; the lock keeps read-update-write whole.
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            data.update(values)
            await asyncio.to_thread(self._write_all, data)
        logger.debug("Wrote %d key(s) to %s", len(values), self.path)


__all__ = [
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "StorageKeys",
]
