"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from .models import SyncConfig

logger = logging.getLogger(__name__)

# Global cache to avoid reloading config multiple times per process
_config_cache: SyncConfig | None = None


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
        Path to ~/.config/collabsync/config.json (or XDG equivalent)
    """
    return get_xdg_config_home() / "collabsync" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """
    Get path to project configuration file.

    Args:
        cwd: Working directory to search from (defaults to current directory)

    Returns:
        Path to .collabsync.json in the project root
    """
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".collabsync.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Values in `override` take precedence over values in `base`.
    Nested dicts are merged, not replaced.

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
            return None
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None


def _set_nested(config_dict: dict[str, Any], section: str, key: str, value: Any) -> None:
    config_dict.setdefault(section, {})
    config_dict[section][key] = value


def _env_number(name: str, cast: type, minimum: float) -> int | float | None:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        value = cast(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s', ignoring", name, raw)
        return None
    if value < minimum:
        logger.warning("%s must be >= %s, got %s, ignoring", name, minimum, value)
        return None
    return value


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Env vars have the highest precedence and override all config files.

    Supported env vars:
        COLLABSYNC_DB_PATH - overrides queue.db_path
        COLLABSYNC_API_URL - overrides github.api_url
        COLLABSYNC_HTTP_TIMEOUT - overrides github.timeout_seconds
        COLLABSYNC_MAX_RETRIES - overrides queue.max_retries
        COLLABSYNC_POLL_INTERVAL - overrides worker.poll_interval

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    if db_path := os.environ.get("COLLABSYNC_DB_PATH"):
        _set_nested(result, "queue", "db_path", db_path)

    if api_url := os.environ.get("COLLABSYNC_API_URL"):
        _set_nested(result, "github", "api_url", api_url)

    timeout = _env_number("COLLABSYNC_HTTP_TIMEOUT", float, 0.001)
    if timeout is not None:
        _set_nested(result, "github", "timeout_seconds", timeout)

    max_retries = _env_number("COLLABSYNC_MAX_RETRIES", int, 1)
    if max_retries is not None:
        _set_nested(result, "queue", "max_retries", max_retries)

    poll_interval = _env_number("COLLABSYNC_POLL_INTERVAL", float, 0.001)
    if poll_interval is not None:
        _set_nested(result, "worker", "poll_interval", poll_interval)

    return result


def get_default_config() -> dict[str, Any]:
    """
    Get default configuration as a plain dictionary.

    Returns:
        Dictionary with default configuration values
    """
    return SyncConfig().model_dump(mode="json")


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> SyncConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (COLLABSYNC_*)
        2. Project config (.collabsync.json)
        3. User config (~/.config/collabsync/config.json)
        4. Hardcoded defaults

    Args:
        project_dir: Project directory to load .collabsync.json from (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated SyncConfig instance

    Raises:
        pydantic.ValidationError: If the merged config fails validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    config = SyncConfig(**merged)

    _config_cache = config

    return config


def clear_cache() -> None:
    """
    Clear the cached configuration.

    Useful for testing or when config files change during execution.
    """
    global _config_cache
    _config_cache = None
