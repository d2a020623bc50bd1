"""
Pytest configuration and shared fixtures.

Provides a controllable clock, in-memory stores, a recording fake backend
served through httpx.MockTransport, and helpers to build projects and
coordinators.
"""

import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest

from repolink.core.sync.auth import StaticTokenAuthProvider
from repolink.core.sync.backend import SyncBackendClient
from repolink.core.sync.coordinator import SyncCoordinator
from repolink.core.sync.exceptions import StorageError
from repolink.core.sync.models import CanonicalProject, SyncStatus
from repolink.core.sync.store import InMemoryKeyValueStore

BASE_URL = "https://backend.test/functions/v1"
START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# ==============================================================================
# Time
# ==============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Provide a FakeClock starting at a fixed instant."""
    return FakeClock()


def epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


@pytest.fixture
def to_epoch_ms():
    """Convert a datetime to stored epoch milliseconds."""
    return epoch_ms


# ==============================================================================
# Storage
# ==============================================================================


class FlakyStore(InMemoryKeyValueStore):
    """In-memory store whose reads or writes can be switched to fail."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__(initial)
        self.fail_reads = False
        self.fail_writes = False

    async def get(self, keys):
        if self.fail_reads:
            raise StorageError("simulated read failure")
        return await super().get(keys)

    async def set(self, values):
        if self.fail_writes:
            raise StorageError("simulated write failure")
        await super().set(values)


@pytest.fixture
def store():
    """Provide an empty in-memory key-value store."""
    return FlakyStore()


# ==============================================================================
# Projects
# ==============================================================================


def build_project(project_id: str, **overrides: Any) -> CanonicalProject:
    values: dict[str, Any] = {
        "id": project_id,
        "remote_id": project_id,
        "display_name": project_id,
        "repo_owner": "octocat",
        "repo_name": f"{project_id}-repo",
        "branch": "main",
        "last_modified": START,
        "sync_status": SyncStatus.PENDING,
        "version": 1,
    }
    values.update(overrides)
    return CanonicalProject(**values)


@pytest.fixture
def make_project():
    """Factory for CanonicalProject instances with sensible defaults."""
    return build_project


@pytest.fixture
def server_project():
    """Factory for backend (snake_case) project payloads."""

    def _make(remote_id: str, **overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "remote_id": remote_id,
            "project_name": f"Server {remote_id}",
            "github_repo_owner": "octocat",
            "github_repo_name": f"{remote_id}-server",
            "github_branch": "main",
            "is_private": False,
            "last_modified": "2026-01-14T08:00:00Z",
            "sync_status": "synced",
        }
        payload.update(overrides)
        return payload

    return _make


# ==============================================================================
# Backend
# ==============================================================================


class FakeBackend:
    """
    Recording request handler for httpx.MockTransport.

    Responds with ``status_code`` and ``body``; ``body`` may be a callable
    taking the parsed request payload.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.body: Any = {"success": True, "updatedProjects": [], "conflicts": []}
        self.before_response: Callable[[], Any] | None = None

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.before_response is not None:
            result = self.before_response()
            if hasattr(result, "__await__"):
                await result
        body = self.body(json.loads(request.content)) if callable(self.body) else self.body
        return httpx.Response(self.status_code, json=body)


@pytest.fixture
def fake_backend():
    """Provide a FakeBackend with a default successful empty response."""
    return FakeBackend()


@pytest.fixture
def backend_client(fake_backend):
    """Provide a SyncBackendClient wired to the fake backend."""
    return SyncBackendClient(BASE_URL, transport=httpx.MockTransport(fake_backend))


@pytest.fixture
def auth():
    """Provide an authenticated static token provider."""
    return StaticTokenAuthProvider("test-token")


@pytest.fixture
def make_coordinator(store, backend_client, auth, clock):
    """Factory for a SyncCoordinator over the shared fixtures."""

    def _make(**kwargs: Any) -> SyncCoordinator:
        kwargs.setdefault("clock", clock)
        return SyncCoordinator(
            kwargs.pop("store", store),
            kwargs.pop("backend", backend_client),
            kwargs.pop("auth", auth),
            **kwargs,
        )

    return _make


@pytest.fixture
def coordinator(make_coordinator):
    """Provide a SyncCoordinator with default thresholds."""
    return make_coordinator()


# ==============================================================================
# Config
# ==============================================================================


@pytest.fixture
def user_config_dir(tmp_path, monkeypatch):
    """
    Point XDG_CONFIG_HOME and XDG_DATA_HOME at temp directories.

    Returns the repolink user config directory (not created).
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in (
        "REPOLINK_BACKEND_URL",
        "REPOLINK_TIMEOUT",
        "REPOLINK_MAX_RETRIES",
        "REPOLINK_RACE_WINDOW_MS",
        "REPOLINK_STATE_FILE",
        "REPOLINK_TOKEN",
    ):
        monkeypatch.delenv(var, raising=False)
    return tmp_path / "config" / "repolink"
