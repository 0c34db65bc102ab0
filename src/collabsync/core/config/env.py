"""Layered .env loading.

Per-user access tokens (``COLLABSYNC_TOKEN_<USER>``) and the
``COLLABSYNC_*`` overrides are usually kept in .env files beside the
deployment rather than exported in the shell. They are copied into the
process environment before configuration is loaded.

Precedence:
  exported environment > project .env.local > project .env > user .env
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


def default_user_env_paths() -> list[Path]:
    """The per-user .env under the XDG config directory."""
    xdg_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return [Path(xdg_home) / "collabsync" / ".env"]


def default_project_env_paths(project_dir: Path) -> list[Path]:
    """Project .env files, lowest precedence first."""
    return [project_dir / ".env", project_dir / ".env.local"]


def read_env_file(path: Path) -> dict[str, str]:
    """Key/value pairs from one .env file; keys without a value are dropped."""
    if not path.is_file():
        return {}
    return {
        str(key): str(value)
        for key, value in dotenv_values(path).items()
        if key is not None and value is not None
    }


def load_layered_env(
    *,
    project_dir: Path | None = None,
    user_env_paths: Iterable[Path] | None = None,
    project_env_paths: Iterable[Path] | None = None,
) -> set[str]:
    """
    Copy user and project .env values into ``os.environ``.

    Args:
        project_dir: Base directory for the project files (defaults to cwd)
        user_env_paths: Explicit user .env files
        project_env_paths: Explicit project .env files

    Returns:
        Names of the variables this call set
    """
    if user_env_paths is None:
        user_env_paths = default_user_env_paths()
    if project_env_paths is None:
        project_env_paths = default_project_env_paths(project_dir or Path.cwd())

    # Anything already exported wins over every file
    exported = set(os.environ)
    loaded: set[str] = set()

    for path in [*user_env_paths, *project_env_paths]:
        values = read_env_file(Path(path))
        if values:
            logger.debug("Loading %d variables from %s", len(values), path)
        for key, value in values.items():
            if key in exported:
                continue
            os.environ[key] = value
            loaded.add(key)

    return loaded
