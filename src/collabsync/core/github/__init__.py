"""
GitHub integration for collabsync.

Provides the request-scoped Git Data API client and its response models.
"""

from collabsync.core.github.client import GitHubClient, map_error
from collabsync.core.github.models import (
    FILE_MODE,
    AuthenticatedUser,
    BranchHead,
    GitCommit,
    RemoteRepository,
    TreeEntry,
)

__all__ = [
    "FILE_MODE",
    "AuthenticatedUser",
    "BranchHead",
    "GitCommit",
    "GitHubClient",
    "RemoteRepository",
    "TreeEntry",
    "map_error",
]
