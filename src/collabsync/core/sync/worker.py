"""
Sync worker: claims queue items and executes them.

State machine of a queue item:

    queued -> processing -> completed
                         -> queued   (retryable failure, attempts left)
                         -> failed   (terminal failure or attempts exhausted)

If stale-claim recovery hands an item to another worker while an attempt
is still running, the late attempt records nothing and reports ``lost``.

The worker is the single place where the retry decision is made. It asks
the BackoffPolicy whether a failure is retryable and how long to wait,
then writes the outcome to the queue and the audit log.

Workers share nothing in memory. Any number of them, in threads or in
separate processes, coordinate only through the queue's atomic claim.

Example:
    >>> worker = SyncWorker(queue, audit, bindings, EnvTokenProvider())
    >>> worker.drain()
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field

from collabsync.core.audit import AuditLog
from collabsync.core.bindings import BindingStore
from collabsync.core.config.models import SyncConfig
from collabsync.core.exceptions import SyncError
from collabsync.core.github import GitHubClient
from collabsync.core.queue import OperationKind, OperationQueue, QueueItem, QueueTransitionError
from collabsync.core.queue.models import CreateRepoPayload
from collabsync.core.sync.bootstrap import RepositoryBootstrapper
from collabsync.core.sync.pipeline import CommitPipeline
from collabsync.core.sync.retry import BackoffPolicy
from collabsync.core.tokens import TokenProvider

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], GitHubClient]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessOutcome(str, Enum):
    """What happened to an item after one attempt."""

    COMPLETED = "completed"
    RETRYING = "retrying"
    FAILED = "failed"
    LOST = "lost"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessOutcome.COMPLETED, ProcessOutcome.FAILED)


class ProcessResult(BaseModel):
    """Result of one attempt at a queue item."""

    item_id: str = Field(..., description="Queue item id")
    session_id: str = Field(..., description="Session id")
    operation_kind: OperationKind = Field(..., description="Operation that ran")
    outcome: ProcessOutcome = Field(..., description="Outcome of the attempt")
    retry_count: int = Field(default=0, description="Retry count after the attempt")
    error: str | None = Field(default=None, description="Error message on failure")
    commit_sha: str | None = Field(default=None, description="New commit SHA")
    commit_url: str | None = Field(default=None, description="Browsable commit URL")
    retry_in: float | None = Field(default=None, description="Seconds until the next attempt")


class SyncWorker:
    """
    Processes queue items one at a time.

    A client is built per item from the item owner's token and closed
    when the item is done; no client outlives an item.
    """

    def __init__(
        self,
        queue: OperationQueue,
        audit: AuditLog,
        bindings: BindingStore,
        token_provider: TokenProvider,
        *,
        config: SyncConfig | None = None,
        client_factory: ClientFactory | None = None,
        policy: BackoffPolicy | None = None,
        worker_id: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize the worker.

        Args:
            queue: Operation queue to claim from
            audit: Audit log to keep in step with the queue
            bindings: Repository binding store
            token_provider: Resolves an item's user to an access token
            config: Configuration (defaults apply when omitted)
            client_factory: Builds a client for a token (tests inject a
                client on a mock transport)
            policy: Retry policy (built from config when omitted)
            worker_id: Name used in log lines
            clock: Returns the current time (overridable in tests)
        """
        self.queue = queue
        self.audit = audit
        self.bindings = bindings
        self.token_provider = token_provider
        self.config = config or SyncConfig()
        self.policy = policy or BackoffPolicy.from_config(self.config.retry)
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:6]}"
        self._client_factory = client_factory or self._default_client
        self._clock = clock

    def _default_client(self, token: str) -> GitHubClient:
        return GitHubClient.from_config(token, self.config.github)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _execute(self, item: QueueItem) -> ProcessResult:
        token = self.token_provider.get_token(item.user_id)
        repo_config = self.config.repository

        with self._client_factory(token) as client:
            payload = item.payload
            if isinstance(payload, CreateRepoPayload):
                bootstrapper = RepositoryBootstrapper(
                    client, self.bindings, repo_config, clock=self._clock
                )
                binding = bootstrapper.ensure_repository(
                    item.session_id, item.user_id, payload.description
                )
                logger.debug("Session %s bound to %s", item.session_id, binding.full_name)
                return ProcessResult(
                    item_id=item.id,
                    session_id=item.session_id,
                    operation_kind=item.operation_kind,
                    outcome=ProcessOutcome.COMPLETED,
                    retry_count=item.retry_count,
                )

            binding = self.bindings.require(item.session_id)
            pipeline = CommitPipeline(
                client,
                self.bindings,
                default_branch=repo_config.default_branch,
                fallback_branches=repo_config.fallback_branches,
                blob_workers=self.config.worker.blob_workers,
            )
            message = payload.commit_message or repo_config.default_commit_message
            result = pipeline.commit(binding, payload.branch, payload.changes(), message)
            return ProcessResult(
                item_id=item.id,
                session_id=item.session_id,
                operation_kind=item.operation_kind,
                outcome=ProcessOutcome.COMPLETED,
                retry_count=item.retry_count,
                commit_sha=result.sha,
                commit_url=result.url,
            )

    def _fail(self, item: QueueItem, error: BaseException) -> ProcessResult:
        message = str(error) or type(error).__name__
        retryable = self.policy.is_retryable(error)

        if retryable and item.retry_count + 1 < item.max_retries:
            delay = self.policy.delay_for(item.retry_count + 1, error)
            updated = self.queue.requeue(item.id, message, delay)
            self.audit.mark_retrying(updated, message)
            return ProcessResult(
                item_id=item.id,
                session_id=item.session_id,
                operation_kind=item.operation_kind,
                outcome=ProcessOutcome.RETRYING,
                retry_count=updated.retry_count,
                error=message,
                retry_in=delay,
            )

        updated = self.queue.mark_failed(item.id, message, count_attempt=retryable)
        self.audit.mark_failed(updated, message)
        return ProcessResult(
            item_id=item.id,
            session_id=item.session_id,
            operation_kind=item.operation_kind,
            outcome=ProcessOutcome.FAILED,
            retry_count=updated.retry_count,
            error=message,
        )

    def process(self, item: QueueItem) -> ProcessResult:
        """
        Run one attempt of a claimed item and record its outcome.

        Args:
            item: Item in processing status, owned by this worker

        An item recovered by another worker while this attempt ran is
        reported as ``lost``; its new owner decides what happens next.

        Returns:
            What happened to the item
        """
        logger.info(
            "[%s] Processing %s item %s for session %s (attempt %d/%d)",
            self.worker_id,
            item.operation_kind.value,
            item.id,
            item.session_id,
            item.retry_count + 1,
            item.max_retries,
        )
        self.audit.mark_processing(item)

        try:
            return self._attempt(item)
        except QueueTransitionError as e:
            logger.warning(
                "[%s] Lost claim on item %s before recording the outcome: %s",
                self.worker_id,
                item.id,
                e,
            )
            return ProcessResult(
                item_id=item.id,
                session_id=item.session_id,
                operation_kind=item.operation_kind,
                outcome=ProcessOutcome.LOST,
                retry_count=item.retry_count,
                error=str(e),
            )

    def _attempt(self, item: QueueItem) -> ProcessResult:
        try:
            result = self._execute(item)
        except SyncError as e:
            logger.warning("[%s] Item %s failed: %s", self.worker_id, item.id, e)
            return self._fail(item, e)
        except Exception as e:
            logger.exception("[%s] Unexpected error processing item %s", self.worker_id, item.id)
            return self._fail(item, e)

        completed = self.queue.mark_completed(item.id)
        self.audit.mark_completed(
            completed,
            commit_sha=result.commit_sha,
            commit_url=result.commit_url,
        )
        return result

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def recover_stale_claims(self) -> list[str]:
        """Requeue items whose worker disappeared mid-attempt."""
        window = timedelta(minutes=self.config.worker.stale_claim_minutes)
        recovered = self.queue.recover_stale_claims(window)
        for item_id in recovered:
            item = self.queue.get(item_id)
            if item is not None:
                self.audit.mark_retrying(item, "Worker stopped before finishing; requeued")
        return recovered

    def run_once(self) -> ProcessResult | None:
        """
        Claim and process at most one item.

        Returns:
            The attempt's result, or None if nothing was eligible
        """
        item = self.queue.claim_next()
        if item is None:
            return None
        return self.process(item)

    def drain(self, max_items: int | None = None) -> list[ProcessResult]:
        """
        Process items until none is eligible right now.

        Items requeued with a delay are not waited for.

        Args:
            max_items: Stop after this many attempts
        """
        results: list[ProcessResult] = []
        while max_items is None or len(results) < max_items:
            result = self.run_once()
            if result is None:
                break
            results.append(result)
        return results

    def run(self, stop_event: threading.Event | None = None) -> int:
        """
        Poll the queue until ``stop_event`` is set.

        Sleeps ``worker.poll_interval`` seconds whenever the queue has no
        eligible item.

        Returns:
            Number of attempts made
        """
        stop_event = stop_event or threading.Event()
        poll_interval = self.config.worker.poll_interval
        attempts = 0

        self.recover_stale_claims()
        logger.info("[%s] Started (poll interval %.1fs)", self.worker_id, poll_interval)

        while not stop_event.is_set():
            try:
                result = self.run_once()
            except Exception:
                # Keep polling; the item stays claimed until stale recovery
                logger.exception("[%s] Worker loop iteration failed", self.worker_id)
                stop_event.wait(poll_interval)
                continue
            if result is None:
                stop_event.wait(poll_interval)
                continue
            attempts += 1

        logger.info("[%s] Stopped after %d attempts", self.worker_id, attempts)
        return attempts


def run_workers(
    make_worker: Callable[[int], SyncWorker],
    concurrency: int,
    stop_event: threading.Event,
) -> int:
    """
    Run several workers on threads until ``stop_event`` is set.

    Args:
        make_worker: Builds the worker for a thread index
        concurrency: Number of worker threads
        stop_event: Shared stop signal

    Returns:
        Total attempts made by all workers
    """
    workers = [make_worker(index) for index in range(max(1, concurrency))]
    with ThreadPoolExecutor(max_workers=len(workers)) as executor:
        futures = [executor.submit(worker.run, stop_event) for worker in workers]
        try:
            return sum(future.result() for future in futures)
        except BaseException:
            # Executor shutdown waits for the threads, so they must stop first
            stop_event.set()
            raise
