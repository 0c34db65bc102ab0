"""
Sync execution: retry policy, commit pipeline, repository bootstrap and
the worker that drives them from the queue.
"""

from collabsync.core.sync.bootstrap import RepositoryBootstrapper
from collabsync.core.sync.pipeline import CommitPipeline, CommitResult
from collabsync.core.sync.retry import BackoffPolicy
from collabsync.core.sync.worker import (
    ProcessOutcome,
    ProcessResult,
    SyncWorker,
    run_workers,
)

__all__ = [
    "BackoffPolicy",
    "CommitPipeline",
    "CommitResult",
    "ProcessOutcome",
    "ProcessResult",
    "RepositoryBootstrapper",
    "SyncWorker",
    "run_workers",
]
