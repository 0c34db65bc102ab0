"""
Submission and inspection facade for the sync subsystem.

SyncService is what callers outside the worker use: it validates and
enqueues operations, and reads the audit history and repository bindings.

Example:
    >>> service = SyncService.from_config(load_config())
    >>> item = service.enqueue("abc", "user-1", "create_repo", {})
    >>> service.list_history("abc")[0].status
    <AuditStatus.PENDING: 'pending'>
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from collabsync.core.audit import AuditLog, AuditRecord
from collabsync.core.bindings import BindingStore, RepositoryBinding
from collabsync.core.config.models import SyncConfig
from collabsync.core.db import get_connection, init_db
from collabsync.core.exceptions import ValidationError
from collabsync.core.queue import (
    OperationKind,
    OperationQueue,
    QueueItem,
    SyncPayload,
    parse_payload,
)
from collabsync.core.sync.retry import BackoffPolicy
from collabsync.core.sync.worker import ClientFactory, SyncWorker
from collabsync.core.tokens import EnvTokenProvider, TokenProvider

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncService:
    """Entry point for enqueueing operations and reading their history."""

    def __init__(
        self,
        db_path: Path | str,
        config: SyncConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize the service and make sure the database exists.

        Args:
            db_path: SQLite database shared with the workers
            config: Configuration (defaults apply when omitted)
            clock: Returns the current time (overridable in tests)
        """
        self.db_path = Path(db_path)
        self.config = config or SyncConfig()
        init_db(self.db_path)
        self.queue = OperationQueue(self.db_path, clock=clock)
        self.audit = AuditLog(self.db_path, clock=clock)
        self.bindings = BindingStore(self.db_path, clock=clock)
        self._clock = clock

    @classmethod
    def from_config(cls, config: SyncConfig) -> SyncService:
        """Build a service on the configured database."""
        return cls(config.queue.db_path, config)

    def enqueue(
        self,
        session_id: str,
        user_id: str,
        kind: OperationKind | str,
        payload: dict[str, Any] | BaseModel | None = None,
        *,
        priority: int = 0,
        max_retries: int | None = None,
    ) -> QueueItem:
        """
        Validate and persist an operation together with its audit record.

        Args:
            session_id: Session the operation belongs to
            user_id: User whose token will execute it
            kind: create_repo, commit or sync
            payload: Kind-specific parameters
            priority: Higher runs sooner
            max_retries: Attempts allowed (configured default when omitted)

        Returns:
            The queued item

        Raises:
            ValidationError: If any argument or the payload is invalid
        """
        if not session_id or not session_id.strip():
            raise ValidationError("session_id is required")
        if not user_id or not user_id.strip():
            raise ValidationError("user_id is required", session_id=session_id)
        if max_retries is None:
            max_retries = self.config.queue.max_retries
        if max_retries < 1:
            raise ValidationError("max_retries must be at least 1", max_retries=max_retries)

        typed = parse_payload(kind, payload)
        if isinstance(typed, SyncPayload) and not typed.commit_message:
            typed = typed.model_copy(
                update={"commit_message": self.config.repository.default_commit_message}
            )

        item = self.queue.new_item(
            session_id=session_id,
            user_id=user_id,
            kind=OperationKind(typed.kind),
            payload=typed,
            priority=priority,
            max_retries=max_retries,
        )
        with get_connection(self.db_path) as conn:
            self.queue.insert(item, conn)
            self.audit.create(item, conn)

        logger.info(
            "Enqueued %s for session %s as %s (priority %d)",
            item.operation_kind.value,
            session_id,
            item.id,
            priority,
        )
        return item

    def list_history(self, session_id: str, limit: int | None = None) -> list[AuditRecord]:
        """Audit records of a session, newest first."""
        if limit is None:
            limit = self.config.queue.history_limit
        if limit < 1:
            raise ValidationError("limit must be at least 1", limit=limit)
        return self.audit.list_history(session_id, limit)

    def get_binding(self, session_id: str) -> RepositoryBinding | None:
        """Repository bound to a session, if any."""
        return self.bindings.get(session_id)

    def get_item(self, item_id: str) -> QueueItem | None:
        """Queue item by id, if any."""
        return self.queue.get(item_id)

    def create_worker(
        self,
        token_provider: TokenProvider | None = None,
        *,
        client_factory: ClientFactory | None = None,
        policy: BackoffPolicy | None = None,
        worker_id: str | None = None,
    ) -> SyncWorker:
        """
        Build a worker on this service's stores.

        Args:
            token_provider: Token lookup (environment by default)
            client_factory: Override how clients are built
            policy: Override the retry policy
            worker_id: Name used in log lines
        """
        if token_provider is None:
            token_provider = EnvTokenProvider(self.config.token_env_prefix)
        return SyncWorker(
            self.queue,
            self.audit,
            self.bindings,
            token_provider,
            config=self.config,
            client_factory=client_factory,
            policy=policy,
            worker_id=worker_id,
            clock=self._clock,
        )
