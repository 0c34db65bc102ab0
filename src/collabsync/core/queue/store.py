"""
SQLite-backed operation queue.

The queue is the only coordination point between workers. An item moves
``queued -> processing`` through a conditional UPDATE, so exactly one
worker wins each claim no matter how many threads or processes race.
Every later transition is guarded on ``status = 'processing'``.

Example:
    >>> queue = OperationQueue(Path(".collabsync/sync.db"))
    >>> item = queue.claim_next()
    >>> if item is not None:
    ...     queue.mark_completed(item.id)
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from collabsync.core.db import get_connection, to_db_time, use_connection
from collabsync.core.exceptions import NotFoundError, SyncError
from collabsync.core.queue.models import (
    OperationKind,
    Payload,
    QueueItem,
    QueueStatus,
)

logger = logging.getLogger(__name__)

# Candidates fetched per claim round
CLAIM_BATCH_SIZE = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueTransitionError(SyncError):
    """Raised when an item is not in the state a transition requires."""


class OperationQueue:
    """
    Persistent priority queue of sync operations.

    Selection order is priority descending, then creation time, then
    insertion order.
    """

    def __init__(self, db_path: Path | str, *, clock: Callable[[], datetime] = _utcnow) -> None:
        """
        Initialize OperationQueue.

        Args:
            db_path: SQLite database file
            clock: Returns the current time (overridable in tests)
        """
        self.db_path = Path(db_path)
        self._clock = clock

    # ------------------------------------------------------------------
    # Insertion and lookup
    # ------------------------------------------------------------------

    def new_item(
        self,
        *,
        session_id: str,
        user_id: str,
        kind: OperationKind,
        payload: Payload,
        priority: int = 0,
        max_retries: int = 3,
    ) -> QueueItem:
        """Build an unsaved queued item stamped with the current time."""
        now = self._clock()
        return QueueItem(
            id=uuid.uuid4().hex,
            session_id=session_id,
            user_id=user_id,
            operation_kind=kind,
            status=QueueStatus.QUEUED,
            priority=priority,
            payload=payload,
            retry_count=0,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
            available_at=now,
        )

    def insert(self, item: QueueItem, conn: sqlite3.Connection | None = None) -> QueueItem:
        """
        Persist a new item.

        Args:
            item: Item built by new_item()
            conn: Join the caller's transaction instead of opening one
        """
        with use_connection(self.db_path, conn) as c:
            c.execute(
                """
                INSERT INTO queue_items (
                    id, session_id, user_id, operation_kind, status, priority,
                    payload, retry_count, max_retries, created_at, updated_at,
                    available_at, claimed_at, processed_at, error
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.session_id,
                    item.user_id,
                    item.operation_kind.value,
                    item.status.value,
                    item.priority,
                    item.payload.model_dump_json(),
                    item.retry_count,
                    item.max_retries,
                    to_db_time(item.created_at),
                    to_db_time(item.updated_at),
                    to_db_time(item.available_at),
                    to_db_time(item.claimed_at),
                    to_db_time(item.processed_at),
                    item.error,
                ),
            )
        logger.debug(
            "Queued %s item %s for session %s (priority %d)",
            item.operation_kind.value,
            item.id,
            item.session_id,
            item.priority,
        )
        return item

    def get(self, item_id: str) -> QueueItem | None:
        """Get an item by id, or None."""
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM queue_items WHERE id = ?", (item_id,)).fetchone()
        return QueueItem.from_row(row) if row else None

    def list_items(
        self,
        *,
        session_id: str | None = None,
        status: QueueStatus | None = None,
        limit: int | None = None,
    ) -> list[QueueItem]:
        """List items in selection order, optionally filtered."""
        query = "SELECT * FROM queue_items WHERE 1 = 1"
        params: list[Any] = []
        if session_id is not None:
            query += " AND session_id = ?"
            params.append(session_id)
        if status is not None:
            query += " AND status = ?"
            params.append(QueueStatus(status).value)
        query += " ORDER BY priority DESC, created_at ASC, rowid ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with get_connection(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [QueueItem.from_row(row) for row in rows]

    def counts(self) -> dict[str, int]:
        """Number of items per status."""
        counts = {status.value: 0 for status in QueueStatus}
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM queue_items GROUP BY status"
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    def list_candidates(self, limit: int = CLAIM_BATCH_SIZE) -> list[QueueItem]:
        """
        Items eligible for a claim right now, in selection order.

        Eligible means queued, attempts left, and past ``available_at``.
        """
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT * FROM queue_items
                WHERE status = 'queued'
                  AND retry_count < max_retries
                  AND available_at <= ?
                ORDER BY priority DESC, created_at ASC, rowid ASC
                LIMIT ?
                """,
                (to_db_time(self._clock()), limit),
            ).fetchall()
        return [QueueItem.from_row(row) for row in rows]

    def claim(self, item_id: str) -> QueueItem | None:
        """
        Atomically take ownership of one item.

        Returns:
            The claimed item, or None if another worker got it first or it
            is not eligible
        """
        now = self._clock()
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE queue_items
                SET status = 'processing', claimed_at = ?, updated_at = ?
                WHERE id = ?
                  AND status = 'queued'
                  AND retry_count < max_retries
                  AND available_at <= ?
                """,
                (to_db_time(now), to_db_time(now), item_id, to_db_time(now)),
            )
            if cursor.rowcount != 1:
                return None
            row = conn.execute("SELECT * FROM queue_items WHERE id = ?", (item_id,)).fetchone()

        logger.debug("Claimed queue item %s", item_id)
        return QueueItem.from_row(row)

    def claim_next(self) -> QueueItem | None:
        """
        Claim the highest-priority eligible item.

        Losing a race on one candidate moves on to the next.

        Returns:
            The claimed item, or None when nothing is eligible
        """
        while True:
            candidates = self.list_candidates()
            if not candidates:
                return None
            for candidate in candidates:
                claimed = self.claim(candidate.id)
                if claimed is not None:
                    return claimed
            logger.debug("Lost every claim race in batch of %d, retrying", len(candidates))

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _transition(self, item_id: str, assignments: str, params: tuple[Any, ...]) -> QueueItem:
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                f"UPDATE queue_items SET {assignments} WHERE id = ? AND status = 'processing'",
                (*params, item_id),
            )
            row = conn.execute("SELECT * FROM queue_items WHERE id = ?", (item_id,)).fetchone()

        if row is None:
            raise NotFoundError(f"Queue item not found: {item_id}", item_id=item_id)
        if cursor.rowcount != 1:
            raise QueueTransitionError(
                f"Queue item {item_id} is {row['status']}, not processing",
                item_id=item_id,
                status=row["status"],
            )
        return QueueItem.from_row(row)

    def mark_completed(self, item_id: str) -> QueueItem:
        """Record a successful execution."""
        now = to_db_time(self._clock())
        item = self._transition(
            item_id,
            "status = 'completed', processed_at = ?, updated_at = ?, "
            "claimed_at = NULL, error = NULL",
            (now, now),
        )
        logger.info("Queue item %s completed", item_id)
        return item

    def requeue(self, item_id: str, error: str, delay_seconds: float) -> QueueItem:
        """
        Return a failed item to the queue for another attempt.

        Increments ``retry_count`` and delays eligibility by ``delay_seconds``.
        """
        now = self._clock()
        available_at = now + timedelta(seconds=max(0.0, delay_seconds))
        item = self._transition(
            item_id,
            "status = 'queued', retry_count = retry_count + 1, available_at = ?, "
            "updated_at = ?, claimed_at = NULL, error = ?",
            (to_db_time(available_at), to_db_time(now), error),
        )
        logger.warning(
            "Queue item %s requeued (attempt %d/%d, next in %.1fs): %s",
            item_id,
            item.retry_count,
            item.max_retries,
            delay_seconds,
            error,
        )
        return item

    def mark_failed(self, item_id: str, error: str, *, count_attempt: bool = True) -> QueueItem:
        """
        Record a terminal failure.

        Args:
            item_id: Item being processed
            error: Error message to keep
            count_attempt: Increment ``retry_count`` (retryable failures that
                ran out of attempts)
        """
        now = to_db_time(self._clock())
        increment = "retry_count = retry_count + 1, " if count_attempt else ""
        item = self._transition(
            item_id,
            f"status = 'failed', {increment}processed_at = ?, updated_at = ?, "
            "claimed_at = NULL, error = ?",
            (now, now, error),
        )
        logger.info("Queue item %s failed: %s", item_id, error)
        return item

    def recover_stale_claims(self, older_than: timedelta) -> list[str]:
        """
        Return items stuck in processing back to the queue.

        An item stays processing only while a worker runs it; one claimed
        longer ago than ``older_than`` belonged to a worker that died.

        Returns:
            Ids of the recovered items
        """
        now = self._clock()
        cutoff = to_db_time(now - older_than)
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id FROM queue_items WHERE status = 'processing' AND claimed_at < ?",
                (cutoff,),
            ).fetchall()
            ids = [row["id"] for row in rows]
            for item_id in ids:
                conn.execute(
                    """
                    UPDATE queue_items
                    SET status = 'queued', claimed_at = NULL, updated_at = ?
                    WHERE id = ? AND status = 'processing'
                    """,
                    (to_db_time(now), item_id),
                )

        for item_id in ids:
            logger.warning("Recovered stale claim on queue item %s", item_id)
        return ids
