"""
Configuration models and loading.

This module provides Pydantic models for repolink configuration
with multi-layer merging: defaults < user < project < env vars.
"""

from .env import load_layered_env
from .loader import (
    get_project_config_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
)
from .models import (
    AuthConfig,
    BackendConfig,
    RepoLinkConfig,
    StorageConfig,
    SyncConfig,
)

__all__ = [
    # Models
    "AuthConfig",
    "BackendConfig",
    "RepoLinkConfig",
    "StorageConfig",
    "SyncConfig",
    # Loader functions
    "get_project_config_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
    "load_layered_env",
]
