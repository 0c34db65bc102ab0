"""
SQLite-backed audit log.

Status changes are written with ``WHERE status NOT IN ('completed',
'failed')`` so a record that reached a terminal state is never touched
again, even by a late or duplicate writer.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from collabsync.core.audit.models import AuditRecord, AuditStatus
from collabsync.core.db import get_connection, to_db_time, use_connection
from collabsync.core.queue.models import QueueItem

logger = logging.getLogger(__name__)

_NOT_TERMINAL = "status NOT IN ('completed', 'failed')"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLog:
    """
    History of enqueued operations, newest first.

    Example:
        >>> log = AuditLog(Path(".collabsync/sync.db"))
        >>> for record in log.list_history("session-1", limit=5):
        ...     print(record.status, record.commit_message)
    """

    def __init__(self, db_path: Path | str, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.db_path = Path(db_path)
        self._clock = clock

    def create(self, item: QueueItem, conn: sqlite3.Connection | None = None) -> AuditRecord:
        """
        Create the pending record for a newly enqueued item.

        Args:
            item: The queue item
            conn: Join the enqueue transaction
        """
        record = AuditRecord(
            id=uuid.uuid4().hex,
            queue_item_id=item.id,
            session_id=item.session_id,
            user_id=item.user_id,
            operation_kind=item.operation_kind.value,
            status=AuditStatus.PENDING,
            priority=item.priority,
            retry_count=item.retry_count,
            max_retries=item.max_retries,
            commit_message=item.payload.commit_message,
            file_count=item.payload.file_count,
            created_at=item.created_at,
            updated_at=item.created_at,
        )
        with use_connection(self.db_path, conn) as c:
            c.execute(
                """
                INSERT INTO audit_records (
                    id, queue_item_id, session_id, user_id, operation_kind, status,
                    priority, retry_count, max_retries, commit_message, file_count,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.queue_item_id,
                    record.session_id,
                    record.user_id,
                    record.operation_kind,
                    record.status.value,
                    record.priority,
                    record.retry_count,
                    record.max_retries,
                    record.commit_message,
                    record.file_count,
                    to_db_time(record.created_at),
                    to_db_time(record.updated_at),
                ),
            )
        return record

    def get_for_item(self, queue_item_id: str) -> AuditRecord | None:
        """Get the record following a queue item."""
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM audit_records WHERE queue_item_id = ?", (queue_item_id,)
            ).fetchone()
        return AuditRecord.from_row(row) if row else None

    def _update(self, queue_item_id: str, fields: dict[str, Any]) -> bool:
        fields["updated_at"] = to_db_time(self._clock())
        assignments = ", ".join(f"{column} = ?" for column in fields)
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                f"UPDATE audit_records SET {assignments} "
                f"WHERE queue_item_id = ? AND {_NOT_TERMINAL}",
                (*fields.values(), queue_item_id),
            )
        if cursor.rowcount == 0:
            logger.debug("Audit record for %s is terminal or missing; not updated", queue_item_id)
            return False
        return True

    def mark_processing(self, item: QueueItem) -> bool:
        """Record that a worker started an attempt."""
        return self._update(
            item.id,
            {"status": AuditStatus.PROCESSING.value, "retry_count": item.retry_count},
        )

    def mark_retrying(self, item: QueueItem, error: str) -> bool:
        """Record a failed attempt that will be retried."""
        return self._update(
            item.id,
            {
                "status": AuditStatus.PENDING.value,
                "retry_count": item.retry_count,
                "error": error,
            },
        )

    def mark_completed(
        self,
        item: QueueItem,
        *,
        commit_sha: str | None = None,
        commit_url: str | None = None,
        commit_message: str | None = None,
    ) -> bool:
        """Freeze the record as completed."""
        fields: dict[str, Any] = {
            "status": AuditStatus.COMPLETED.value,
            "retry_count": item.retry_count,
            "processed_at": to_db_time(item.processed_at or self._clock()),
            "commit_sha": commit_sha,
            "commit_url": commit_url,
            "error": None,
        }
        if commit_message is not None:
            fields["commit_message"] = commit_message
        return self._update(item.id, fields)

    def mark_failed(self, item: QueueItem, error: str) -> bool:
        """Freeze the record as failed."""
        return self._update(
            item.id,
            {
                "status": AuditStatus.FAILED.value,
                "retry_count": item.retry_count,
                "processed_at": to_db_time(item.processed_at or self._clock()),
                "error": error,
            },
        )

    def list_history(self, session_id: str, limit: int = 20) -> list[AuditRecord]:
        """
        Get a session's records, newest first.

        Args:
            session_id: Session to look up
            limit: Maximum number of records
        """
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM audit_records
                WHERE session_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (session_id, limit),
            ).fetchall()
        return [AuditRecord.from_row(row) for row in rows]
