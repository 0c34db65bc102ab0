"""
Repository binding store.

Tracks which remote repository each collaborative session commits to.
"""

from collabsync.core.bindings.models import RepositoryBinding
from collabsync.core.bindings.store import BindingStore

__all__ = ["BindingStore", "RepositoryBinding"]
