"""
Small TTL cache owned by the service that uses it.

Entries expire a fixed time after they were stored. The clock is injectable
so expiry can be tested without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Generic, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """
    Mapping of string keys to values that expire after ``ttl``.

    Example:
        >>> cache: TTLCache[str] = TTLCache(ttl=timedelta(minutes=5))
        >>> cache.set("token", "abc")
        >>> cache.get("token")
        'abc'
    """

    def __init__(
        self,
        ttl: timedelta,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: dict[str, tuple[V, datetime]] = {}

    def get(self, key: str) -> V | None:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: V) -> None:
        self._entries[key] = (value, self._clock())

    def invalidate(self, key: str | None = None) -> None:
        """Drop one key, or everything when ``key`` is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["TTLCache"]
