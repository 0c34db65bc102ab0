"""
collabsync - Git sync for collaborative editing sessions

Queues repository creation and commit operations for a session and
executes them against the GitHub Git Data API with bounded retry and an
auditable history.
"""

__version__ = "0.1.0"

# Re-export core entry points for convenience
from collabsync.core.config.models import SyncConfig
from collabsync.core.service import SyncService

__all__ = ["SyncConfig", "SyncService", "__version__"]
