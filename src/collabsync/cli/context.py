"""Shared configuration and service lookup for CLI commands."""

from __future__ import annotations

from collabsync.core.config import SyncConfig, load_config
from collabsync.core.service import SyncService


def get_config() -> SyncConfig:
    """Load configuration fresh for this invocation."""
    return load_config(use_cache=False)


def get_service(config: SyncConfig | None = None) -> SyncService:
    """Get a SyncService on the configured database."""
    return SyncService.from_config(config or get_config())
