"""
Configuration models and loading.

Pydantic models for collabsync configuration with multi-layer merging:
defaults < user < project < env vars.
"""

from .env import load_layered_env
from .loader import (
    clear_cache,
    get_project_config_path,
    get_user_config_path,
    get_xdg_config_home,
    load_config,
)
from .models import (
    GitHubConfig,
    QueueConfig,
    RepositoryConfig,
    RetryConfig,
    SyncConfig,
    WorkerConfig,
)

__all__ = [
    # Models
    "GitHubConfig",
    "QueueConfig",
    "RepositoryConfig",
    "RetryConfig",
    "SyncConfig",
    "WorkerConfig",
    # Loader functions
    "clear_cache",
    "get_project_config_path",
    "get_user_config_path",
    "get_xdg_config_home",
    "load_config",
    "load_layered_env",
]
