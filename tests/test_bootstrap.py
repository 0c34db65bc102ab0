"""
Tests for the repository bootstrapper against the fake GitHub.
"""

import pytest

from collabsync.core.bindings import BindingStore
from collabsync.core.config.models import RepositoryConfig
from collabsync.core.exceptions import AuthError, ConflictError, TransientNetworkError
from collabsync.core.sync import RepositoryBootstrapper


@pytest.fixture
def bootstrapper(github, bindings: BindingStore, clock) -> RepositoryBootstrapper:
    return RepositoryBootstrapper(github.client(), bindings, clock=clock)


class TestEnsureRepository:
    """Creating and binding session repositories."""

    def test_creates_private_repository(self, bootstrapper, github, bindings) -> None:
        """Test that an unbound session gets a new private repository."""
        binding = bootstrapper.ensure_repository("abc", "user-1")

        repo = github.repos["codecollab-abc"]
        assert repo.private is True
        assert repo.description == "CodeCollab session: abc"
        assert binding.repo_name == "codecollab-abc"
        assert binding.repo_owner == "alice"
        assert binding.remote_repo_id == str(repo.id)
        assert binding.last_synced_at is not None
        assert bindings.get("abc") == binding

    def test_idempotent(self, bootstrapper, github) -> None:
        """Test that a second call returns the same binding with no remote call."""
        first = bootstrapper.ensure_repository("abc", "user-1")
        calls = len(github.requests)

        second = bootstrapper.ensure_repository("abc", "user-1")

        assert second == first
        assert len(github.requests) == calls
        assert github.count("POST", r"^/user/repos$") == 1

    def test_custom_description(self, bootstrapper, github) -> None:
        """Test that a description override is sent."""
        bootstrapper.ensure_repository("abc", "user-1", description="Team notes")
        assert github.repos["codecollab-abc"].description == "Team notes"

    def test_custom_prefix(self, github, bindings, clock) -> None:
        """Test that the repository name prefix is configurable."""
        config = RepositoryConfig(name_prefix="pair-")
        bootstrapper = RepositoryBootstrapper(github.client(), bindings, config, clock=clock)

        assert bootstrapper.ensure_repository("abc", "user-1").repo_name == "pair-abc"

    def test_existing_name_is_adopted(self, bootstrapper, github) -> None:
        """Test that 'already exists' recovers by binding the existing repository."""
        existing = github.create_repo("codecollab-abc")

        binding = bootstrapper.ensure_repository("abc", "user-1")

        assert binding.remote_repo_id == str(existing.id)
        assert github.count("GET", r"^/repos/alice/codecollab-abc$") == 1

    def test_unrecoverable_name_conflict(self, bootstrapper, github, bindings) -> None:
        """Test that a taken name that cannot be fetched is a terminal conflict."""
        github.create_repo("codecollab-abc")
        github.fail("GET", r"^/repos/alice/codecollab-abc$", 404)

        with pytest.raises(ConflictError) as exc_info:
            bootstrapper.ensure_repository("abc", "user-1")

        assert exc_info.value.retryable is False
        assert bindings.get("abc") is None

    def test_missing_scope(self, github, bindings) -> None:
        """Test that a token without repo scope is rejected before creation."""
        github.scopes = "read:user"
        bootstrapper = RepositoryBootstrapper(github.client(), bindings)

        with pytest.raises(AuthError, match="scope"):
            bootstrapper.ensure_repository("abc", "user-1")
        assert github.count("POST", r"^/user/repos$") == 0

    def test_public_repo_scope_accepted(self, github, bindings) -> None:
        """Test that public_repo scope is enough."""
        github.scopes = "public_repo"
        bootstrapper = RepositoryBootstrapper(github.client(), bindings)

        assert bootstrapper.ensure_repository("abc", "user-1").repo_name == "codecollab-abc"

    def test_invalid_token(self, bootstrapper, github) -> None:
        """Test that a rejected token surfaces as AuthError."""
        github.fail("GET", r"^/user$", 401, {"message": "Bad credentials"})

        with pytest.raises(AuthError):
            bootstrapper.ensure_repository("abc", "user-1")

    def test_server_error_is_transient(self, bootstrapper, github, bindings) -> None:
        """Test that a 5xx during creation propagates as retryable."""
        github.fail("POST", r"^/user/repos$", 502)

        with pytest.raises(TransientNetworkError):
            bootstrapper.ensure_repository("abc", "user-1")
        assert bindings.get("abc") is None

    def test_retry_after_crash_adopts_repository(self, bootstrapper, github, bindings) -> None:
        """Test that a repository created before a crash is bound on retry."""
        github.fail("POST", r"^/user/repos$", 502)
        with pytest.raises(TransientNetworkError):
            bootstrapper.ensure_repository("abc", "user-1")
        # The remote created the repository even though the response was lost
        github.create_repo("codecollab-abc")

        binding = bootstrapper.ensure_repository("abc", "user-1")

        assert binding.repo_name == "codecollab-abc"
