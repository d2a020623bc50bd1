"""
Bidirectional project sync between local storage and the backend.

Local storage holds two representations of the user's tracked repo links:
the canonical project list and the older per-project settings map. The
coordinator keeps them consistent with each other and with the backend,
without letting a fresh install erase server data or a sync pass overwrite
a field the user just edited.

Example:
    >>> from repolink.core.sync import SyncCoordinator, InMemoryKeyValueStore
    >>> coordinator = SyncCoordinator(store, backend, auth)
    >>> response = await coordinator.perform_inward_sync()
    >>> if response is not None:
    ...     print(f"Received {len(response.updated_projects)} projects")
"""

from repolink.core.sync.auth import (
    AuthProvider,
    AuthState,
    StaticTokenAuthProvider,
    StoredTokenAuthProvider,
)
from repolink.core.sync.backend import SyncBackendClient
from repolink.core.sync.coordinator import SyncCoordinator
from repolink.core.sync.exceptions import (
    AuthenticationError,
    NetworkError,
    RepoLinkError,
    ServerError,
    StorageError,
    ValidationError,
)
from repolink.core.sync.fresh_install import FreshInstallDetector, InstallTracker
from repolink.core.sync.legacy import LegacyFormatBridge, MigrationOutcome
from repolink.core.sync.models import (
    BackendProject,
    CanonicalProject,
    ConflictResolution,
    LegacyProjectEntry,
    SyncDirection,
    SyncPhase,
    SyncResponse,
    SyncStatus,
)
from repolink.core.sync.race_guard import RaceWindowGuard
from repolink.core.sync.resolver import ConflictResolver, OutwardPlan
from repolink.core.sync.store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    StorageKeys,
)
from repolink.core.sync.transport import RetryConfig, RetryTransport

__all__ = [
    "SyncCoordinator",
    "SyncBackendClient",
    "RetryConfig",
    "RetryTransport",
    "AuthProvider",
    "AuthState",
    "StaticTokenAuthProvider",
    "StoredTokenAuthProvider",
    "LegacyFormatBridge",
    "MigrationOutcome",
    "FreshInstallDetector",
    "InstallTracker",
    "ConflictResolver",
    "OutwardPlan",
    "RaceWindowGuard",
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "StorageKeys",
    "BackendProject",
    "CanonicalProject",
    "LegacyProjectEntry",
    "ConflictResolution",
    "SyncDirection",
    "SyncPhase",
    "SyncResponse",
    "SyncStatus",
    "RepoLinkError",
    "AuthenticationError",
    "NetworkError",
    "ServerError",
    "StorageError",
    "ValidationError",
]
