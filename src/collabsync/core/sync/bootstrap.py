"""
Repository bootstrapper.

Ensures a session is bound to a remote repository, creating the repository
on first use. Running it again for a bound session makes no remote call.

Creation races are expected: two queued create_repo items, or a worker
that crashed after the remote created the repository but before the
binding was stored. When the remote answers "name already exists" the
bootstrapper adopts the existing repository instead of failing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from collabsync.core.bindings import BindingStore, RepositoryBinding
from collabsync.core.config.models import RepositoryConfig
from collabsync.core.exceptions import AuthError, ConflictError, SyncError
from collabsync.core.github import GitHubClient, RemoteRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepositoryBootstrapper:
    """
    Creates and binds session repositories.

    Example:
        >>> bootstrapper = RepositoryBootstrapper(client, bindings)
        >>> binding = bootstrapper.ensure_repository("abc", "user-1")
        >>> binding.repo_name
        'codecollab-abc'
    """

    def __init__(
        self,
        client: GitHubClient,
        bindings: BindingStore,
        config: RepositoryConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.client = client
        self.bindings = bindings
        self.config = config or RepositoryConfig()
        self._clock = clock

    def repository_name(self, session_id: str) -> str:
        return f"{self.config.name_prefix}{session_id}"

    def _description(self, session_id: str, description: str | None) -> str:
        if description:
            return description
        return self.config.description_template.format(session_id=session_id)

    def _bind(self, session_id: str, repo: RemoteRepository) -> RepositoryBinding:
        now = self._clock()
        return self.bindings.bind(
            RepositoryBinding(
                session_id=session_id,
                remote_repo_id=repo.id,
                repo_name=repo.name,
                repo_owner=repo.owner,
                repo_url=repo.html_url,
                is_private=repo.private,
                created_at=now,
                last_synced_at=now,
            )
        )

    def _recover_existing(self, login: str, name: str, cause: ConflictError) -> RemoteRepository:
        try:
            repo = self.client.get_repository(login, name)
        except SyncError as e:
            if e.retryable:
                raise
            raise ConflictError(
                f"Repository {login}/{name} already exists but could not be adopted: {e}",
                retryable=False,
                repo=f"{login}/{name}",
            ) from cause
        logger.info("Repository %s already exists, adopting it", repo.full_name)
        return repo

    def ensure_repository(
        self,
        session_id: str,
        user_id: str,
        description: str | None = None,
    ) -> RepositoryBinding:
        """
        Return the session's binding, creating the repository if needed.

        Args:
            session_id: Session to bind
            user_id: User whose token the client carries (for logging)
            description: Repository description override

        Returns:
            The stored binding (an existing one wins over a new one)

        Raises:
            AuthError: If the token is invalid or lacks repository scope
            ConflictError: If the name is taken and the repository cannot be
                adopted (not retryable)
            TransientNetworkError: On server or network failures (retryable)
        """
        existing = self.bindings.get(session_id)
        if existing is not None:
            logger.debug("Session %s already bound to %s", session_id, existing.full_name)
            return existing

        user = self.client.get_authenticated_user()
        if not user.has_any_scope(self.config.required_scopes):
            raise AuthError(
                f"Token for {user.login} lacks repository scope "
                f"(needs one of: {', '.join(self.config.required_scopes)})",
                user_id=user_id,
                scopes=user.scopes,
            )

        name = self.repository_name(session_id)
        try:
            repo = self.client.create_repository(
                name,
                description=self._description(session_id, description),
                private=self.config.private,
                auto_init=self.config.auto_init,
            )
            logger.info("Created repository %s for session %s", repo.full_name, session_id)
        except ConflictError as e:
            repo = self._recover_existing(user.login, name, e)

        return self._bind(session_id, repo)
