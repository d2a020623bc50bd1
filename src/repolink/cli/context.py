"""
Wiring shared by CLI commands: config, store, transport, coordinator.
"""

import asyncio
import logging
import os
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError as PydanticValidationError

from repolink.cli.errors import exit_with_user_error
from repolink.core.config import RepoLinkConfig, load_config
from repolink.core.sync.auth import AuthProvider, StaticTokenAuthProvider, StoredTokenAuthProvider
from repolink.core.sync.backend import SyncBackendClient
from repolink.core.sync.coordinator import SyncCoordinator
from repolink.core.sync.store import JsonFileKeyValueStore, KeyValueStore
from repolink.core.sync.transport import RetryConfig, RetryTransport

T = TypeVar("T")


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for CLI commands.

    Args:
        debug: If True, enable DEBUG level logging
    """
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine from Typer's sync CLI context."""
    return asyncio.run(coro)


def load_cli_config(project_dir: Path | None = None) -> RepoLinkConfig:
    """Load configuration, exiting with USER_ERROR if it does not validate."""
    try:
        return load_config(project_dir)
    except PydanticValidationError as e:
        exit_with_user_error(
            f"Invalid configuration: {e.error_count()} error(s)\n{e}",
            solution="fix .repolink.json or the REPOLINK_* environment variables",
        )


def build_store(config: RepoLinkConfig) -> KeyValueStore:
    return JsonFileKeyValueStore(config.storage.resolved_state_file())


def build_transport(config: RepoLinkConfig) -> httpx.AsyncBaseTransport:
    """HTTP transport for the backend, with retries when configured."""
    transport: httpx.AsyncBaseTransport = httpx.AsyncHTTPTransport()
    if config.backend.max_retries > 0:
        transport = RetryTransport(
            transport,
            RetryConfig(
                max_retries=config.backend.max_retries,
                base_delay=config.backend.retry_base_delay,
            ),
        )
    return transport


def build_auth(config: RepoLinkConfig, store: KeyValueStore) -> AuthProvider:
    """A token in the configured env var wins over one kept in the state file."""
    token = os.environ.get(config.auth.token_env_var)
    if token:
        return StaticTokenAuthProvider(token, auth_method="env")
    return StoredTokenAuthProvider(store)


def build_coordinator(config: RepoLinkConfig, store: KeyValueStore | None = None) -> SyncCoordinator:
    store = store or build_store(config)
    backend = SyncBackendClient(
        config.backend.base_url,
        timeout=config.backend.timeout_seconds,
        transport=build_transport(config),
    )
    return SyncCoordinator.from_config(config.sync, store, backend, build_auth(config, store))
