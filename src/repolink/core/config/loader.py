"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars

Nothing is cached: every call reads the files and the environment again.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable

from .models import RepoLinkConfig

logger = logging.getLogger(__name__)


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """
    Get path to user configuration file.

    Returns:
        Path to ~/.config/repolink/config.json (or XDG equivalent)
    """
    return get_xdg_config_home() / "repolink" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """
    Get path to project configuration file.

    Args:
        cwd: Working directory to search from (defaults to current directory)

    Returns:
        Path to .repolink.json in the project root
    """
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".repolink.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`. Nested dicts
    are merged, not replaced.

    Example:
        >>> base = {"a": 1, "b": {"x": 10, "y": 20}}
        >>> override = {"b": {"y": 30, "z": 40}, "c": 3}
        >>> deep_merge(base, override)
        {'a': 1, 'b': {'x': 10, 'y': 30, 'z': 40}, 'c': 3}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON file, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON as dict, or None if file doesn't exist or can't be parsed
    """
    if not path.exists():
        return None

    try:
        with path.open() as f:
            data = json.load(f)
            if isinstance(data, dict):
                return data
            logger.warning("Ignoring config at %s: top level is not an object", path)
            return None
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None


def _positive_float(raw: str) -> float:
    value = float(raw)
    if value <= 0:
        raise ValueError("must be > 0")
    return value


def _non_negative_int(raw: str) -> int:
    value = int(raw)
    if value < 0:
        raise ValueError("must be >= 0")
    return value


def _http_url(raw: str) -> str:
    if not raw.startswith(("http://", "https://")):
        raise ValueError("must be an http(s) URL")
    return raw


# env var -> (section, key, parser)
ENV_OVERRIDES: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "REPOLINK_BACKEND_URL": ("backend", "base_url", _http_url),
    "REPOLINK_TIMEOUT": ("backend", "timeout_seconds", _positive_float),
    "REPOLINK_MAX_RETRIES": ("backend", "max_retries", _non_negative_int),
    "REPOLINK_RACE_WINDOW_MS": ("sync", "race_window_ms", _non_negative_int),
    "REPOLINK_STATE_FILE": ("storage", "state_file", str),
}


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Env vars have the highest precedence and override all config files.
    Invalid values are ignored with a warning.

    Supported env vars:
        REPOLINK_BACKEND_URL - overrides backend.base_url
        REPOLINK_TIMEOUT - overrides backend.timeout_seconds
        REPOLINK_MAX_RETRIES - overrides backend.max_retries
        REPOLINK_RACE_WINDOW_MS - overrides sync.race_window_ms
        REPOLINK_STATE_FILE - overrides storage.state_file

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    for env_var, (section, key, parse) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if not raw:
            continue
        try:
            value = parse(raw)
        except ValueError as e:
            logger.warning("Invalid %s value %r (%s), ignoring", env_var, raw, e)
            continue
        result[section] = {**result.get(section, {}), key: value}

    return result


def get_default_config() -> dict[str, Any]:
    """
    Get hardcoded default configuration.

    Only values that differ from the model defaults need to appear here.

    Returns:
        Dictionary with default configuration values
    """
    return {
        "sync": {"race_window_ms": 30_000, "inward_gate_fail_open": True},
    }


def load_config(project_dir: Path | None = None) -> RepoLinkConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (REPOLINK_*)
        2. Project config (.repolink.json)
        3. User config (~/.config/repolink/config.json)
        4. Hardcoded defaults

    Args:
        project_dir: Project directory to load .repolink.json from (defaults to cwd)

    Returns:
        Validated RepoLinkConfig instance

    Raises:
        pydantic.ValidationError: If the merged config fails validation

    Example:
        >>> config = load_config()
        >>> config.sync.race_window_ms
        30000
    """
    merged = get_default_config()

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    return RepoLinkConfig.model_validate(merged)
