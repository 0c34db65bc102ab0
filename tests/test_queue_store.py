"""
Tests for the SQLite operation queue.

Covers selection order, the atomic claim, outcome transitions and
stale-claim recovery.
"""

import threading
from datetime import timedelta

import pytest

from collabsync.core.exceptions import NotFoundError
from collabsync.core.queue import (
    CreateRepoPayload,
    OperationKind,
    OperationQueue,
    QueueItem,
    QueueStatus,
    QueueTransitionError,
)


def add_item(queue: OperationQueue, session: str = "abc", priority: int = 0, **kwargs) -> QueueItem:
    item = queue.new_item(
        session_id=session,
        user_id="user-1",
        kind=OperationKind.CREATE_REPO,
        payload=CreateRepoPayload(),
        priority=priority,
        **kwargs,
    )
    return queue.insert(item)


class TestInsertAndGet:
    """Persistence of queue items."""

    def test_round_trip(self, queue: OperationQueue) -> None:
        """Test that an inserted item reads back with its fields."""
        item = add_item(queue, priority=3, max_retries=5)
        loaded = queue.get(item.id)

        assert loaded is not None
        assert loaded.status == QueueStatus.QUEUED
        assert loaded.priority == 3
        assert loaded.max_retries == 5
        assert loaded.retry_count == 0
        assert isinstance(loaded.payload, CreateRepoPayload)
        assert loaded.created_at == item.created_at

    def test_get_missing(self, queue: OperationQueue) -> None:
        """Test that an unknown id returns None."""
        assert queue.get("nope") is None

    def test_counts(self, queue: OperationQueue) -> None:
        """Test status counts."""
        add_item(queue)
        add_item(queue)
        queue.claim_next()

        counts = queue.counts()
        assert counts["queued"] == 1
        assert counts["processing"] == 1
        assert counts["failed"] == 0


class TestSelectionOrder:
    """Priority first, then creation order."""

    def test_priority_then_fifo(self, queue: OperationQueue) -> None:
        """Test that priorities [1, 5, 1] are processed as 5, first 1, second 1."""
        first = add_item(queue, priority=1)
        high = add_item(queue, priority=5)
        second = add_item(queue, priority=1)

        order = [queue.claim_next().id for _ in range(3)]

        assert order == [high.id, first.id, second.id]
        assert queue.claim_next() is None

    def test_fifo_across_time(self, queue: OperationQueue, clock) -> None:
        """Test that equal priorities run oldest first."""
        older = add_item(queue)
        clock.advance(1)
        newer = add_item(queue)

        assert [c.id for c in queue.list_candidates()] == [older.id, newer.id]

    def test_delayed_item_not_eligible(self, queue: OperationQueue, clock) -> None:
        """Test that an item is skipped until its available_at passes."""
        item = add_item(queue)
        claimed = queue.claim_next()
        queue.requeue(claimed.id, "boom", delay_seconds=30)

        assert queue.claim_next() is None
        clock.advance(31)
        assert queue.claim_next().id == item.id


class TestClaim:
    """Atomic ownership of items."""

    def test_claim_sets_processing(self, queue: OperationQueue) -> None:
        """Test that a claim marks the item processing."""
        item = add_item(queue)
        claimed = queue.claim(item.id)

        assert claimed.status == QueueStatus.PROCESSING
        assert claimed.claimed_at is not None

    def test_second_claim_loses(self, queue: OperationQueue) -> None:
        """Test that an item cannot be claimed twice."""
        item = add_item(queue)

        assert queue.claim(item.id) is not None
        assert queue.claim(item.id) is None

    def test_concurrent_claims_are_exclusive(self, queue: OperationQueue) -> None:
        """Test that racing threads never claim the same item."""
        items = [add_item(queue) for _ in range(20)]
        claimed: list[str] = []
        lock = threading.Lock()

        def grab() -> None:
            while (item := queue.claim_next()) is not None:
                with lock:
                    claimed.append(item.id)

        threads = [threading.Thread(target=grab) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(claimed) == sorted(i.id for i in items)
        assert len(claimed) == len(set(claimed))


class TestTransitions:
    """Outcomes recorded after processing."""

    def test_mark_completed(self, queue: OperationQueue) -> None:
        """Test completion stamps processed_at."""
        item = add_item(queue)
        queue.claim(item.id)
        done = queue.mark_completed(item.id)

        assert done.status == QueueStatus.COMPLETED
        assert done.processed_at is not None
        assert done.error is None

    def test_requeue_increments_retry_count(self, queue: OperationQueue, clock) -> None:
        """Test that a requeue counts the attempt and delays the item."""
        item = add_item(queue)
        queue.claim(item.id)
        again = queue.requeue(item.id, "server error", delay_seconds=10)

        assert again.status == QueueStatus.QUEUED
        assert again.retry_count == 1
        assert again.error == "server error"
        assert again.available_at == clock.now + timedelta(seconds=10)

    def test_mark_failed_counting(self, queue: OperationQueue) -> None:
        """Test that a counted failure increments retry_count."""
        item = add_item(queue)
        queue.claim(item.id)
        failed = queue.mark_failed(item.id, "gave up", count_attempt=True)

        assert failed.status == QueueStatus.FAILED
        assert failed.retry_count == 1

    def test_mark_failed_not_counting(self, queue: OperationQueue) -> None:
        """Test that a terminal error leaves retry_count alone."""
        item = add_item(queue)
        queue.claim(item.id)
        failed = queue.mark_failed(item.id, "bad token", count_attempt=False)

        assert failed.retry_count == 0
        assert failed.error == "bad token"

    def test_transition_requires_processing(self, queue: OperationQueue) -> None:
        """Test that an unclaimed item cannot be completed."""
        item = add_item(queue)
        with pytest.raises(QueueTransitionError):
            queue.mark_completed(item.id)

    def test_transition_missing_item(self, queue: OperationQueue) -> None:
        """Test that transitions on unknown ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            queue.mark_failed("nope", "x")

    def test_exhausted_item_never_selected(self, queue: OperationQueue) -> None:
        """Test that a queued item with no attempts left is not eligible."""
        item = add_item(queue, max_retries=1)
        queue.claim(item.id)
        queue.requeue(item.id, "boom", delay_seconds=0)

        assert queue.claim_next() is None


class TestStaleClaims:
    """Recovery of items whose worker died."""

    def test_recover_old_claims(self, queue: OperationQueue, clock) -> None:
        """Test that an item processing past the window is requeued."""
        item = add_item(queue)
        queue.claim(item.id)
        clock.advance(16 * 60)

        recovered = queue.recover_stale_claims(timedelta(minutes=15))

        assert recovered == [item.id]
        assert queue.get(item.id).status == QueueStatus.QUEUED

    def test_recent_claims_untouched(self, queue: OperationQueue, clock) -> None:
        """Test that a fresh claim is left alone."""
        item = add_item(queue)
        queue.claim(item.id)
        clock.advance(60)

        assert queue.recover_stale_claims(timedelta(minutes=15)) == []
        assert queue.get(item.id).status == QueueStatus.PROCESSING
