"""
Repository binding store backed by SQLite.

Bindings are created once (insert-if-absent) and afterwards only their
``last_synced_at`` timestamp changes. Nothing here deletes a binding.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from collabsync.core.bindings.models import RepositoryBinding
from collabsync.core.db import get_connection, to_db_time
from collabsync.core.exceptions import NotFoundError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BindingStore:
    """
    Store for session-to-repository bindings.

    Example:
        >>> store = BindingStore(Path(".collabsync/sync.db"))
        >>> binding = store.get("session-1")
    """

    def __init__(self, db_path: Path | str, *, clock: Callable[[], datetime] = _utcnow) -> None:
        """
        Initialize BindingStore.

        Args:
            db_path: SQLite database file
            clock: Returns the current time (overridable in tests)
        """
        self.db_path = Path(db_path)
        self._clock = clock

    def get(self, session_id: str) -> RepositoryBinding | None:
        """
        Get the binding for a session.

        Returns:
            The binding, or None if the session is unbound
        """
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM repository_bindings WHERE session_id = ?",
                (session_id,),
            ).fetchone()
        return RepositoryBinding.from_row(row) if row else None

    def require(self, session_id: str) -> RepositoryBinding:
        """
        Get the binding for a session or raise.

        Raises:
            NotFoundError: If the session has no repository yet
        """
        binding = self.get(session_id)
        if binding is None:
            raise NotFoundError(
                f"Session {session_id} has no bound repository", session_id=session_id
            )
        return binding

    def bind(self, binding: RepositoryBinding) -> RepositoryBinding:
        """
        Store a binding unless the session is already bound.

        When a concurrent writer bound the session first, the stored binding
        wins and is returned unchanged.

        Args:
            binding: Candidate binding

        Returns:
            The binding actually stored for the session
        """
        now = self._clock()
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO repository_bindings (
                    session_id, remote_repo_id, repo_name, repo_owner, repo_url,
                    is_private, created_at, last_synced_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO NOTHING
                """,
                (
                    binding.session_id,
                    binding.remote_repo_id,
                    binding.repo_name,
                    binding.repo_owner,
                    binding.repo_url,
                    binding.is_private,
                    to_db_time(binding.created_at or now),
                    to_db_time(binding.last_synced_at),
                ),
            )
            inserted = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM repository_bindings WHERE session_id = ?",
                (binding.session_id,),
            ).fetchone()

        stored = RepositoryBinding.from_row(row)
        if inserted:
            logger.info("Bound session %s to %s", stored.session_id, stored.full_name)
        elif stored.remote_repo_id != binding.remote_repo_id:
            logger.warning(
                "Session %s already bound to %s; keeping existing binding",
                stored.session_id,
                stored.full_name,
            )
        return stored

    def touch_last_synced(self, session_id: str, when: datetime | None = None) -> datetime:
        """
        Record a successful commit for the session.

        Returns:
            The timestamp written

        Raises:
            NotFoundError: If the session has no binding
        """
        when = when or self._clock()
        with get_connection(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE repository_bindings SET last_synced_at = ? WHERE session_id = ?",
                (to_db_time(when), session_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(
                    f"Session {session_id} has no bound repository", session_id=session_id
                )
        return when
