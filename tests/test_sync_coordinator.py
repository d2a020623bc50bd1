"""
Tests for SyncCoordinator.

End-to-end passes run against the in-memory store and a FakeBackend served
through httpx.MockTransport.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from repolink.core.config.models import SyncConfig
from repolink.core.sync.auth import StaticTokenAuthProvider
from repolink.core.sync.backend import SyncBackendClient
from repolink.core.sync.coordinator import SyncCoordinator
from repolink.core.sync.exceptions import AuthenticationError, NetworkError, ServerError
from repolink.core.sync.models import ConflictResolution, SyncDirection, SyncPhase
from repolink.core.sync.store import InMemoryKeyValueStore, StorageKeys


class SlowStore(InMemoryKeyValueStore):
    """In-memory store that suspends on every read and stalls change-record writes."""

    async def get(self, keys):
        await asyncio.sleep(0)
        return await super().get(keys)

    async def set(self, values):
        if StorageKeys.RECENT_CHANGES in values:
            await asyncio.sleep(0.05)
        await super().set(values)


def _stored_ids(store):
    return [p["remoteId"] for p in store.snapshot().get(StorageKeys.PROJECTS, [])]


async def _seed(store, clock, to_epoch_ms, *, projects=(), legacy=None, age_days=1, **extra):
    values = {
        StorageKeys.INSTALL_DATE: to_epoch_ms(clock() - timedelta(days=age_days)),
        StorageKeys.PROJECTS: [p.to_storage() for p in projects],
        StorageKeys.LEGACY_SETTINGS: legacy or {},
    }
    values.update(extra)
    await store.set(values)


def _legacy_for(*projects):
    return {p.remote_id: {"repoName": p.repo_name, "branch": p.branch} for p in projects}


# ==============================================================================
# Outward
# ==============================================================================


class TestOutwardSync:
    """Test pushing local projects to the backend."""

    @pytest.mark.asyncio
    async def test_fresh_install_first_push(
        self, coordinator, store, fake_backend, clock, to_epoch_ms
    ):
        """A project saved only in legacy settings is migrated and sent."""
        await _seed(
            store, clock, to_epoch_ms, legacy={"p1": {"repoName": "one", "branch": "main"}}
        )

        response = await coordinator.perform_outward_sync()

        assert response is not None and response.success
        [payload] = fake_backend.payloads
        assert payload["conflictResolution"] == "auto-resolve"
        assert "lastSyncTimestamp" not in payload
        assert [p["remote_id"] for p in payload["localProjects"]] == ["p1"]
        assert payload["localProjects"][0]["github_repo_name"] == "one"

        data = store.snapshot()
        assert data[StorageKeys.LAST_SYNC_TIMESTAMP] == "2026-01-15T12:00:00Z"
        assert data[StorageKeys.PROJECTS][0]["syncStatus"] == "pending"
        assert coordinator.last_phase[SyncDirection.OUTWARD] == SyncPhase.DONE

    @pytest.mark.asyncio
    async def test_fresh_install_never_deletes(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project
    ):
        """A canonical project missing from legacy is still sent on a fresh install."""
        await _seed(
            store,
            clock,
            to_epoch_ms,
            projects=[make_project("p1")],
            **{StorageKeys.LIFETIME_PROJECT_COUNT: 1},
        )

        await coordinator.perform_outward_sync()

        [payload] = fake_backend.payloads
        assert [p["remote_id"] for p in payload["localProjects"]] == ["p1"]
        assert _stored_ids(store) == ["p1"]

    @pytest.mark.asyncio
    async def test_established_install_deletes(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project
    ):
        """After a previous sync, a project removed from legacy is dropped everywhere."""
        kept = make_project("kept")
        await _seed(
            store,
            clock,
            to_epoch_ms,
            projects=[kept, make_project("gone")],
            legacy=_legacy_for(kept),
            **{StorageKeys.LAST_SYNC_TIMESTAMP: "2026-01-10T00:00:00Z"},
        )

        await coordinator.perform_outward_sync()

        [payload] = fake_backend.payloads
        assert payload["lastSyncTimestamp"] == "2026-01-10T00:00:00Z"
        assert [p["remote_id"] for p in payload["localProjects"]] == ["kept"]
        assert _stored_ids(store) == ["kept"]

    @pytest.mark.asyncio
    async def test_deletion_skipped_if_project_comes_back(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project
    ):
        """A project re-added while the request is in flight is not pruned."""
        await _seed(
            store,
            clock,
            to_epoch_ms,
            projects=[make_project("p1")],
            **{StorageKeys.LAST_SYNC_TIMESTAMP: "2026-01-10T00:00:00Z"},
        )

        async def relink():
            await coordinator.save_project_settings("p1", repo_name="p1-repo", branch="main")

        fake_backend.before_response = relink

        await coordinator.perform_outward_sync()

        assert fake_backend.payloads[0]["localProjects"] == []
        assert _stored_ids(store) == ["p1"]

    @pytest.mark.asyncio
    async def test_outward_is_idempotent(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project
    ):
        p1 = make_project("p1", display_name="One")
        await _seed(store, clock, to_epoch_ms, projects=[p1], legacy=_legacy_for(p1))

        await coordinator.perform_outward_sync()
        first = store.snapshot()[StorageKeys.PROJECTS]
        clock.advance(minutes=1)
        await coordinator.perform_outward_sync()

        assert store.snapshot()[StorageKeys.PROJECTS] == first
        first_sent, second_sent = (p["localProjects"] for p in fake_backend.payloads)
        assert first_sent == second_sent

    @pytest.mark.asyncio
    async def test_outward_never_overwrites_local(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project, server_project
    ):
        p1 = make_project("p1")
        await _seed(store, clock, to_epoch_ms, projects=[p1], legacy=_legacy_for(p1))
        fake_backend.body = {"success": True, "updatedProjects": [server_project("p1")]}

        await coordinator.perform_outward_sync()

        [stored] = store.snapshot()[StorageKeys.PROJECTS]
        assert stored["repoName"] == "p1-repo"
        assert stored["syncStatus"] == "pending"

    @pytest.mark.asyncio
    async def test_unauthenticated_skips(
        self, make_coordinator, store, fake_backend, clock, to_epoch_ms
    ):
        coordinator = make_coordinator(auth=StaticTokenAuthProvider(None))
        await _seed(store, clock, to_epoch_ms, legacy={"p1": {"repoName": "one"}})

        assert await coordinator.perform_outward_sync() is None
        assert fake_backend.requests == []
        assert coordinator.last_phase[SyncDirection.OUTWARD] == SyncPhase.IDLE
        assert StorageKeys.LAST_SYNC_TIMESTAMP not in store.snapshot()

    @pytest.mark.asyncio
    async def test_backfill_short_circuits(self, coordinator, store, fake_backend):
        await store.set({StorageKeys.PROJECTS: [{"id": "old", "repoName": "r"}]})

        assert await coordinator.perform_outward_sync() is None
        assert fake_backend.requests == []
        assert coordinator.last_phase[SyncDirection.OUTWARD] == SyncPhase.DONE
        assert store.snapshot()[StorageKeys.PROJECTS][0]["schemaVersion"] == 2

    @pytest.mark.asyncio
    async def test_invalid_ids_filtered(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project
    ):
        projects = [make_project("good"), make_project("bad id"), make_project("github.com")]
        await _seed(
            store, clock, to_epoch_ms, projects=projects, legacy=_legacy_for(*projects)
        )

        await coordinator.perform_outward_sync()

        [payload] = fake_backend.payloads
        assert [p["remote_id"] for p in payload["localProjects"]] == ["good"]

    @pytest.mark.asyncio
    async def test_migration_failure_is_not_fatal(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project
    ):
        p1 = make_project("p1")
        await _seed(store, clock, to_epoch_ms, projects=[p1], legacy=_legacy_for(p1))
        coordinator.bridge.migrate_legacy_to_canonical = AsyncMock(
            side_effect=RuntimeError("boom")
        )

        response = await coordinator.perform_outward_sync()

        assert response is not None
        assert len(fake_backend.requests) == 1

    @pytest.mark.asyncio
    async def test_network_error_leaves_state(
        self, make_coordinator, store, clock, to_epoch_ms, make_project
    ):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        coordinator = make_coordinator(
            backend=SyncBackendClient(
                "https://backend.test", transport=httpx.MockTransport(handler)
            )
        )
        p1 = make_project("p1")
        await _seed(store, clock, to_epoch_ms, projects=[p1], legacy=_legacy_for(p1))
        before = store.snapshot()

        with pytest.raises(NetworkError):
            await coordinator.perform_outward_sync()

        assert store.snapshot() == before
        assert coordinator.last_phase[SyncDirection.OUTWARD] == SyncPhase.FAILED

    @pytest.mark.asyncio
    async def test_server_error_propagates(self, coordinator, store, fake_backend, make_project):
        fake_backend.status_code = 503
        fake_backend.body = {"error": "maintenance"}
        await store.set({StorageKeys.PROJECTS: [make_project("p1").to_storage()]})

        with pytest.raises(ServerError, match="maintenance"):
            await coordinator.perform_outward_sync()

    @pytest.mark.asyncio
    async def test_unsuccessful_body_persists_nothing(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project
    ):
        """A 2xx reply with success: false neither prunes nor marks the install synced."""
        kept = make_project("kept")
        await _seed(
            store,
            clock,
            to_epoch_ms,
            projects=[kept, make_project("gone")],
            legacy=_legacy_for(kept),
            **{StorageKeys.LAST_SYNC_TIMESTAMP: "2026-01-10T00:00:00Z"},
        )
        fake_backend.body = {"success": False, "error": "database unavailable"}

        with pytest.raises(ServerError, match="database unavailable"):
            await coordinator.perform_outward_sync()

        assert _stored_ids(store) == ["kept", "gone"]
        assert store.snapshot()[StorageKeys.LAST_SYNC_TIMESTAMP] == "2026-01-10T00:00:00Z"
        assert coordinator.last_phase[SyncDirection.OUTWARD] == SyncPhase.FAILED

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_pass(self, coordinator, store, fake_backend):
        """A second call while a pass is running joins it."""

        async def slow():
            await asyncio.sleep(0.01)

        fake_backend.before_response = slow

        first, second = await asyncio.gather(
            coordinator.perform_outward_sync(), coordinator.perform_outward_sync()
        )

        assert len(fake_backend.requests) == 1
        assert first is second

    @pytest.mark.asyncio
    async def test_sequential_calls_run_again(self, coordinator, fake_backend):
        await coordinator.perform_outward_sync()
        await coordinator.perform_outward_sync()
        assert len(fake_backend.requests) == 2


# ==============================================================================
# Inward
# ==============================================================================


class TestInwardSync:
    """Test pulling server projects into local storage."""

    @pytest.mark.asyncio
    async def test_merge_is_additive(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project, server_project
    ):
        """One local project plus two server projects gives three locally."""
        a = make_project("a")
        await _seed(store, clock, to_epoch_ms, projects=[a], legacy=_legacy_for(a))
        fake_backend.body = {
            "success": True,
            "updatedProjects": [server_project("b"), server_project("c")],
        }

        response = await coordinator.perform_inward_sync()

        assert response is not None
        [payload] = fake_backend.payloads
        assert payload["conflictResolution"] == "keep-remote"
        assert _stored_ids(store) == ["a", "b", "c"]

        legacy = store.snapshot()[StorageKeys.LEGACY_SETTINGS]
        assert legacy["b"] == {
            "repoName": "b-server",
            "branch": "main",
            "projectTitle": "Server b",
            "isPrivate": False,
        }
        assert store.snapshot()[StorageKeys.LAST_SYNC_TIMESTAMP] == "2026-01-15T12:00:00Z"
        assert coordinator.last_phase[SyncDirection.INWARD] == SyncPhase.DONE

    @pytest.mark.asyncio
    async def test_server_values_replace_local(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project, server_project
    ):
        p1 = make_project("p1")
        await _seed(store, clock, to_epoch_ms, projects=[p1], legacy=_legacy_for(p1))
        fake_backend.body = {"success": True, "updatedProjects": [server_project("p1")]}

        await coordinator.perform_inward_sync()

        [stored] = store.snapshot()[StorageKeys.PROJECTS]
        assert stored["repoName"] == "p1-server"
        assert stored["syncStatus"] == "synced"
        assert store.snapshot()[StorageKeys.LEGACY_SETTINGS]["p1"]["repoName"] == "p1-server"

    @pytest.mark.asyncio
    async def test_edit_during_request_survives(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project, server_project
    ):
        """A settings save while the request is in flight is not overwritten."""
        p1 = make_project("p1")
        await _seed(store, clock, to_epoch_ms, projects=[p1], legacy=_legacy_for(p1))
        fake_backend.body = {"success": True, "updatedProjects": [server_project("p1")]}

        async def user_edit():
            await coordinator.save_project_settings("p1", repo_name="user-edit", branch="main")

        fake_backend.before_response = user_edit

        await coordinator.perform_inward_sync()

        legacy = store.snapshot()[StorageKeys.LEGACY_SETTINGS]
        assert legacy["p1"]["repoName"] == "user-edit"

    @pytest.mark.asyncio
    async def test_edit_holding_lock_during_merge_survives(
        self, make_coordinator, fake_backend, clock, to_epoch_ms, make_project, server_project
    ):
        """An edit that still holds the document lock when the reply lands is protected."""
        store = SlowStore()
        coordinator = make_coordinator(store=store)
        p1 = make_project("p1")
        await _seed(store, clock, to_epoch_ms, projects=[p1], legacy=_legacy_for(p1))
        fake_backend.body = {"success": True, "updatedProjects": [server_project("p1")]}
        edits = []

        async def start_edit():
            edits.append(
                asyncio.ensure_future(
                    coordinator.save_project_settings("p1", repo_name="user-edit", branch="main")
                )
            )
            # Let the edit take the lock before the reply is returned.
            await asyncio.sleep(0)

        fake_backend.before_response = start_edit

        await coordinator.perform_inward_sync()
        await asyncio.gather(*edits)

        assert store.snapshot()[StorageKeys.LEGACY_SETTINGS]["p1"]["repoName"] == "user-edit"
        assert _stored_ids(store) == ["p1"]

    @pytest.mark.asyncio
    async def test_gate_blocks_established_installs(
        self, coordinator, store, fake_backend, clock, to_epoch_ms, make_project
    ):
        a, b = make_project("a"), make_project("b")
        await _seed(store, clock, to_epoch_ms, projects=[a, b], legacy=_legacy_for(a, b))

        assert await coordinator.should_perform_inward_sync() is False
        assert await coordinator.perform_inward_sync() is None
        assert fake_backend.requests == []
        assert coordinator.last_phase[SyncDirection.INWARD] == SyncPhase.IDLE

    @pytest.mark.asyncio
    async def test_empty_store_receives_server_project(
        self, coordinator, store, fake_backend, server_project
    ):
        fake_backend.body = {"success": True, "updatedProjects": [server_project("s1")]}

        response = await coordinator.perform_inward_sync()

        assert [p.remote_id for p in response.updated_projects] == ["s1"]
        assert _stored_ids(store) == ["s1"]

    @pytest.mark.asyncio
    async def test_two_legacy_entries_block_pull(self, coordinator, store, fake_backend):
        await store.set(
            {
                StorageKeys.LEGACY_SETTINGS: {
                    "p1": {"repoName": "one"},
                    "p2": {"repoName": "two"},
                }
            }
        )

        assert await coordinator.perform_inward_sync() is None
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_gate_counts_across_both_documents(self, coordinator, store, make_project):
        """A project in only one of the two documents still counts."""
        await store.set(
            {
                StorageKeys.PROJECTS: [make_project("a").to_storage()],
                StorageKeys.LEGACY_SETTINGS: {"b": {"repoName": "b"}},
            }
        )
        assert await coordinator.should_perform_inward_sync() is False

    @pytest.mark.asyncio
    async def test_gate_fails_open_by_default(self, coordinator, store):
        store.fail_reads = True
        assert await coordinator.should_perform_inward_sync() is True

    @pytest.mark.asyncio
    async def test_gate_can_fail_closed(self, make_coordinator, store):
        coordinator = make_coordinator(inward_gate_fail_open=False)
        store.fail_reads = True
        assert await coordinator.should_perform_inward_sync() is False

    @pytest.mark.asyncio
    async def test_unauthenticated_skips(self, make_coordinator, fake_backend):
        coordinator = make_coordinator(auth=StaticTokenAuthProvider(None))
        assert await coordinator.perform_inward_sync() is None
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_legacy_write_failure_is_not_fatal(
        self, coordinator, store, fake_backend, server_project
    ):
        fake_backend.body = {"success": True, "updatedProjects": [server_project("b")]}
        coordinator.bridge.push_canonical_to_legacy = AsyncMock(side_effect=RuntimeError("boom"))

        response = await coordinator.perform_inward_sync()

        assert response is not None
        assert _stored_ids(store) == ["b"]
        assert StorageKeys.LAST_SYNC_TIMESTAMP in store.snapshot()

    @pytest.mark.asyncio
    async def test_unsuccessful_body_persists_nothing(
        self, coordinator, store, fake_backend, server_project
    ):
        fake_backend.body = {
            "success": False,
            "error": "database unavailable",
            "updatedProjects": [server_project("s1")],
        }

        with pytest.raises(ServerError, match="database unavailable"):
            await coordinator.perform_inward_sync()

        assert _stored_ids(store) == []
        assert StorageKeys.LAST_SYNC_TIMESTAMP not in store.snapshot()
        assert StorageKeys.LEGACY_SETTINGS not in store.snapshot()
        assert coordinator.last_phase[SyncDirection.INWARD] == SyncPhase.FAILED


# ==============================================================================
# Raw exchange and settings path
# ==============================================================================


class TestSyncWithBackend:
    """Test the raw request/response exchange."""

    @pytest.mark.asyncio
    async def test_requires_token(self, make_coordinator, fake_backend):
        coordinator = make_coordinator(auth=StaticTokenAuthProvider(None))
        with pytest.raises(AuthenticationError, match="User not authenticated"):
            await coordinator.sync_with_backend()
        assert fake_backend.requests == []

    @pytest.mark.asyncio
    async def test_persists_nothing(self, coordinator, store, fake_backend, server_project):
        fake_backend.body = {"success": True, "updatedProjects": [server_project("b")]}

        response = await coordinator.sync_with_backend(ConflictResolution.KEEP_LOCAL, [])

        assert [p.remote_id for p in response.updated_projects] == ["b"]
        assert fake_backend.payloads[0]["conflictResolution"] == "keep-local"
        assert store.snapshot() == {}

    @pytest.mark.asyncio
    async def test_unsuccessful_body_returned(self, coordinator, fake_backend):
        fake_backend.body = {"success": False, "error": "partial failure"}
        response = await coordinator.sync_with_backend()
        assert response.success is False
        assert response.error == "partial failure"


class TestProjectSettings:
    """Test the settings-save path."""

    @pytest.mark.asyncio
    async def test_save_preserves_extra_keys(self, coordinator, store):
        await store.set(
            {StorageKeys.LEGACY_SETTINGS: {"p1": {"repoName": "old", "commitCount": 3}}}
        )

        changed = await coordinator.save_project_settings(
            "p1", repo_name="new", branch="main", project_title="Title", is_private=True
        )

        assert changed == ["repoName", "branch", "projectTitle", "isPrivate"]
        assert store.snapshot()[StorageKeys.LEGACY_SETTINGS]["p1"] == {
            "repoName": "new",
            "commitCount": 3,
            "branch": "main",
            "projectTitle": "Title",
            "isPrivate": True,
        }
        assert "p1" in await coordinator.guard.get_recent_changes()

    @pytest.mark.asyncio
    async def test_unchanged_save_records_nothing(self, coordinator, store):
        await store.set(
            {StorageKeys.LEGACY_SETTINGS: {"p1": {"repoName": "r", "branch": "main"}}}
        )
        assert await coordinator.save_project_settings("p1", repo_name="r", branch="main") == []
        assert await coordinator.guard.get_recent_changes() == {}

    @pytest.mark.asyncio
    async def test_remove_project(self, coordinator, store):
        await store.set({StorageKeys.LEGACY_SETTINGS: {"p1": {"repoName": "r"}}})
        assert await coordinator.remove_project("p1") is True
        assert await coordinator.remove_project("p1") is False
        assert store.snapshot()[StorageKeys.LEGACY_SETTINGS] == {}


class TestFromConfig:
    """Test building a coordinator from configuration."""

    def test_thresholds_applied(self, store, backend_client, auth):
        config = SyncConfig(
            race_window_ms=5_000,
            fresh_install_max_age_days=3,
            inward_max_tracked_projects=4,
            inward_gate_fail_open=False,
        )

        coordinator = SyncCoordinator.from_config(config, store, backend_client, auth)

        assert coordinator.guard.window_ms == 5_000
        assert coordinator.detector.thresholds.max_install_age == timedelta(days=3)
        assert coordinator.inward_max_tracked_projects == 4
        assert coordinator.inward_gate_fail_open is False
