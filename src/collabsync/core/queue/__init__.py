"""
Operation queue.

Persists enqueued sync operations and hands them to workers through an
atomic claim.
"""

from collabsync.core.queue.models import (
    CommitPayload,
    CreateRepoPayload,
    FileAction,
    FileChange,
    OperationKind,
    Payload,
    QueueItem,
    QueueStatus,
    SnapshotFile,
    SyncPayload,
    normalize_path,
    parse_payload,
)
from collabsync.core.queue.store import OperationQueue, QueueTransitionError

__all__ = [
    "CommitPayload",
    "CreateRepoPayload",
    "FileAction",
    "FileChange",
    "OperationKind",
    "OperationQueue",
    "Payload",
    "QueueItem",
    "QueueStatus",
    "QueueTransitionError",
    "SnapshotFile",
    "SyncPayload",
    "normalize_path",
    "parse_payload",
]
