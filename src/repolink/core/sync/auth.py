"""
Auth token providers for the sync engine.

The coordinator receives an ``AuthProvider`` through its constructor and only
ever asks it two things: the current bearer token and whether the user is
authenticated. Tokens are never logged.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from pydantic import BaseModel

from repolink.core.cache import TTLCache
from repolink.core.sync.fresh_install import parse_timestamp
from repolink.core.sync.models import Clock, utc_now
from repolink.core.sync.store import KeyValueStore, StorageKeys

logger = logging.getLogger(__name__)

# Tokens this close to expiry are treated as already expired.
EXPIRY_LEEWAY = timedelta(minutes=5)

DEFAULT_TOKEN_CACHE_TTL = timedelta(seconds=60)


class AuthState(BaseModel):
    """Snapshot of the caller's authentication."""

    is_authenticated: bool = False
    auth_method: str | None = None


@runtime_checkable
class AuthProvider(Protocol):
    """Source of bearer tokens for backend calls."""

    async def get_auth_token(self) -> str | None: ...

    async def get_auth_state(self) -> AuthState: ...


class StaticTokenAuthProvider:
    """Provider for a token known up front (environment variable, CLI flag)."""

    def __init__(self, token: str | None, *, auth_method: str = "token") -> None:
        self._token = token or None
        self.auth_method = auth_method

    async def get_auth_token(self) -> str | None:
        return self._token

    async def get_auth_state(self) -> AuthState:
        if self._token is None:
            return AuthState(is_authenticated=False)
        return AuthState(is_authenticated=True, auth_method=self.auth_method)


class StoredTokenAuthProvider:
    """
    Provider reading ``authToken``/``authTokenExpiry`` from the key-value store.

    A token expiring within ``EXPIRY_LEEWAY`` is rejected. The token and its
    expiry are cached for ``cache_ttl`` to avoid a store read per call; the
    expiry check is repeated on every cache hit.
    """

    _CACHE_KEY = "token"

    def __init__(
        self,
        store: KeyValueStore,
        *,
        cache_ttl: timedelta = DEFAULT_TOKEN_CACHE_TTL,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self._clock = clock
        self._cache: TTLCache[tuple[str, datetime | None]] = TTLCache(ttl=cache_ttl, clock=clock)

    def _usable(self, expiry: datetime | None) -> bool:
        if expiry is None:
            return True
        return expiry - self._clock() > EXPIRY_LEEWAY

    async def get_auth_token(self) -> str | None:
        cached = self._cache.get(self._CACHE_KEY)
        if cached is None:
            values = await self.store.get([StorageKeys.AUTH_TOKEN, StorageKeys.AUTH_TOKEN_EXPIRY])
            token = values.get(StorageKeys.AUTH_TOKEN)
            if not isinstance(token, str) or not token:
                return None
            cached = (token, parse_timestamp(values.get(StorageKeys.AUTH_TOKEN_EXPIRY)))
            self._cache.set(self._CACHE_KEY, cached)

        token, expiry = cached
        if not self._usable(expiry):
            logger.info("Stored auth token is expired or about to expire")
            self._cache.invalidate(self._CACHE_KEY)
            return None
        return token

    async def get_auth_state(self) -> AuthState:
        token = await self.get_auth_token()
        if token is None:
            return AuthState(is_authenticated=False)
        return AuthState(is_authenticated=True, auth_method="stored")

    def invalidate(self) -> None:
        """Forget the cached token, e.g. after sign-in or sign-out."""
        self._cache.invalidate()


__all__ = [
    "AuthProvider",
    "AuthState",
    "EXPIRY_LEEWAY",
    "StaticTokenAuthProvider",
    "StoredTokenAuthProvider",
]
