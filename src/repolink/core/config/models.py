"""
Configuration data models for repolink.

These models define the structure of .repolink.json and
~/.config/repolink/config.json files, with validation and type safety via
Pydantic.
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def get_xdg_data_home() -> Path:
    """
    Get XDG data home directory.

    Returns:
        Path to data directory (defaults to ~/.local/share)
    """
    if xdg_home := os.environ.get("XDG_DATA_HOME"):
        return Path(xdg_home)
    return Path.home() / ".local" / "share"


class BackendConfig(BaseModel):
    """
    Connection settings for the sync backend.
    """
    base_url: str = Field(
        default="http://localhost:54321/functions/v1",
        description="Base URL of the backend; /sync-projects is appended"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout for one sync request, in seconds"
    )
    max_retries: int = Field(
        default=2,
        ge=0,
        description="Retries for transient failures (0 disables the retry transport)"
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial backoff delay between retries, in seconds"
    )

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must be an http(s) URL")
        return value.rstrip("/")


class SyncConfig(BaseModel):
    """
    Thresholds used by the sync engine.

    The defaults protect server data on new installs and user edits made
    while a sync pass is in flight.
    """
    race_window_ms: int = Field(
        default=30_000,
        ge=0,
        description="How long a local edit is protected from write-back, in ms"
    )
    fresh_install_max_age_days: int = Field(
        default=7,
        ge=0,
        description="Installs younger than this count as fresh"
    )
    fresh_install_max_lifetime_projects: int = Field(
        default=2,
        ge=0,
        description="Installs that created at most this many projects count as fresh"
    )
    fresh_install_max_tracked_projects: int = Field(
        default=1,
        ge=0,
        description="Fresh installs track at most this many projects"
    )
    inward_max_tracked_projects: int = Field(
        default=1,
        ge=0,
        description="Pull from the server only when tracking at most this many projects"
    )
    inward_gate_fail_open: bool = Field(
        default=True,
        description="Allow inward sync when the project count cannot be read"
    )


class StorageConfig(BaseModel):
    """
    Where local sync state is kept.
    """
    state_file: Optional[Path] = Field(
        default=None,
        description="JSON state file (defaults to $XDG_DATA_HOME/repolink/state.json)"
    )

    def resolved_state_file(self) -> Path:
        if self.state_file is not None:
            return self.state_file.expanduser()
        return get_xdg_data_home() / "repolink" / "state.json"


class AuthConfig(BaseModel):
    """
    How the CLI finds a bearer token.

    A token in the named environment variable wins; otherwise the token
    stored in the state file is used.
    """
    token_env_var: str = Field(
        default="REPOLINK_TOKEN",
        min_length=1,
        description="Environment variable holding the bearer token"
    )


class RepoLinkConfig(BaseModel):
    """
    Complete repolink configuration.

    Merged from defaults < user config < project config < env vars.
    """
    model_config = ConfigDict(extra="ignore")

    backend: BackendConfig = Field(default_factory=BackendConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
