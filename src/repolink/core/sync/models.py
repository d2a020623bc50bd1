"""
Data models for project sync.

Defines Pydantic models for canonical projects, legacy per-project settings,
the backend wire format, and sync request/response payloads.

Stored documents use camelCase keys (via aliases); the backend speaks
snake_case. Conversion between the two lives on the models themselves so the
local-only fields (``id``, ``version``, ``schemaVersion``) can never leak into
a request.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

CURRENT_SCHEMA_VERSION = 2

# Injectable time source so tests can move time forward.
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class SyncStatus(str, Enum):
    """Sync state of a single canonical project."""

    PENDING = "pending"
    SYNCED = "synced"
    CONFLICT = "conflict"


class ConflictResolution(str, Enum):
    """How the backend should resolve conflicting edits."""

    AUTO_RESOLVE = "auto-resolve"
    KEEP_LOCAL = "keep-local"
    KEEP_REMOTE = "keep-remote"


class SyncDirection(str, Enum):
    """Direction of a sync pass."""

    OUTWARD = "outward"
    INWARD = "inward"


class SyncPhase(str, Enum):
    """Steps of a single sync pass."""

    IDLE = "idle"
    GATING = "gating"
    MIGRATING = "migrating"
    REQUESTING = "requesting"
    MERGING = "merging"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class _StoredModel(BaseModel):
    """Base for documents persisted in the key-value store (camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_storage(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LastCommit(_StoredModel):
    """Most recent commit known for a linked repository."""

    sha: str | None = None
    message: str | None = None
    date: str | None = None
    author: str | None = None


class CanonicalProject(_StoredModel):
    """
    Current, authoritative stored representation of a tracked repo link.

    Example:
        >>> project = CanonicalProject(
        ...     id="abc123",
        ...     remote_id="abc123",
        ...     display_name="My app",
        ...     repo_name="my-app",
        ... )
        >>> project.to_storage()["remoteId"]
        'abc123'
    """

    id: str = Field(description="Stable local key referenced by the UI")
    remote_id: str = Field(description="Backend join key")
    display_name: str = Field(default="", description="Human-readable project title")
    repo_owner: str = Field(default="", description="GitHub owner (user or org)")
    repo_name: str = Field(default="", description="GitHub repository name")
    branch: str = Field(default="main", description="Target branch")
    is_private: bool | None = Field(default=None)
    last_modified: datetime = Field(default_factory=utc_now)
    sync_status: SyncStatus = Field(default=SyncStatus.PENDING)
    version: int = Field(default=1, ge=1)
    schema_version: int = Field(default=CURRENT_SCHEMA_VERSION, ge=1)

    # Extended metadata
    language: str | None = None
    description: str | None = None
    last_commit: LastCommit | None = None

    def to_backend(self) -> BackendProject:
        """Strip local-only fields and map to the backend wire schema."""
        commit = self.last_commit or LastCommit()
        return BackendProject(
            remote_id=self.remote_id,
            project_name=self.display_name,
            github_repo_owner=self.repo_owner or None,
            github_repo_name=self.repo_name or None,
            github_branch=self.branch or None,
            is_private=self.is_private,
            last_modified=self.last_modified,
            sync_status=self.sync_status,
            project_description=self.description,
            language=self.language,
            latest_commit_sha=commit.sha,
            latest_commit_message=commit.message,
            latest_commit_date=commit.date,
            latest_commit_author=commit.author,
        )


class LegacyProjectEntry(_StoredModel):
    """
    One value of the legacy ``projectSettings`` map (keyed by remote id).

    Unknown keys (commit counts, default branch, cached GitHub metadata...)
    are kept as extras so a write-back never drops them.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    repo_name: str = ""
    branch: str = "main"
    project_title: str | None = None
    is_private: bool | None = None


class BackendProject(BaseModel):
    """Backend-safe form of a canonical project, as sent and received on the wire."""

    model_config = ConfigDict(extra="ignore")

    remote_id: str = Field(
        validation_alias=AliasChoices("remote_id", "project_id", "bolt_project_id"),
    )
    project_name: str = ""
    github_repo_owner: str | None = None
    github_repo_name: str | None = None
    github_branch: str | None = None
    is_private: bool | None = None
    last_modified: datetime | None = None
    sync_status: SyncStatus | None = None
    project_description: str | None = None
    language: str | None = None
    latest_commit_sha: str | None = None
    latest_commit_message: str | None = None
    latest_commit_date: str | None = None
    latest_commit_author: str | None = None

    def last_commit(self) -> LastCommit | None:
        """Collect the flat commit fields, or None when the server sent none."""
        commit = LastCommit(
            sha=self.latest_commit_sha,
            message=self.latest_commit_message,
            date=self.latest_commit_date,
            author=self.latest_commit_author,
        )
        if commit.model_dump(exclude_none=True):
            return commit
        return None


class SyncConflict(BaseModel):
    """A conflict reported by the backend. Passed through to callers unmodified."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    project: BackendProject | None = None
    conflict_kind: str | None = Field(
        default=None,
        validation_alias=AliasChoices("conflictKind", "conflict_kind", "conflict"),
        serialization_alias="conflictKind",
    )
    message: str | None = None
    error: str | None = None
    server_project: BackendProject | None = Field(
        default=None,
        validation_alias=AliasChoices("dbProject", "server_project"),
        serialization_alias="dbProject",
    )


class SyncRequest(BaseModel):
    """Body of ``POST /sync-projects``."""

    model_config = ConfigDict(populate_by_name=True)

    local_projects: list[BackendProject] = Field(default_factory=list, alias="localProjects")
    last_sync_timestamp: str | None = Field(default=None, alias="lastSyncTimestamp")
    conflict_resolution: ConflictResolution = Field(
        default=ConflictResolution.AUTO_RESOLVE, alias="conflictResolution"
    )

    def to_payload(self) -> dict[str, Any]:
        """JSON body; ``lastSyncTimestamp`` is omitted when unknown."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SyncResponse(BaseModel):
    """Body returned by the backend for a successful sync call."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    updated_projects: list[BackendProject] = Field(
        default_factory=list,
        validation_alias=AliasChoices("updatedProjects", "updated_projects"),
    )
    conflicts: list[SyncConflict] = Field(default_factory=list)
    deleted_projects: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("deletedProjects", "deletedProjectIds", "deleted_projects"),
    )
    error: str | None = None


class RecentChangeRecord(_StoredModel):
    """A user edit recorded by the settings-save path."""

    project_id: str
    changed_fields: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def age_ms(self, now: datetime) -> int:
        """Milliseconds elapsed between the edit and ``now``."""
        return int((now - self.timestamp).total_seconds() * 1000)


class RecentChange(BaseModel):
    """A still-protected edit, as returned by the race guard."""

    fields: list[str]
    age_ms: int


__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "Clock",
    "BackendProject",
    "CanonicalProject",
    "ConflictResolution",
    "LastCommit",
    "LegacyProjectEntry",
    "RecentChange",
    "RecentChangeRecord",
    "SyncConflict",
    "SyncDirection",
    "SyncPhase",
    "SyncRequest",
    "SyncResponse",
    "SyncStatus",
    "utc_now",
]
