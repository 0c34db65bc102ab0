"""
Tests for the commit pipeline against the fake GitHub.
"""

import json

import pytest

from collabsync.core.bindings import RepositoryBinding
from collabsync.core.exceptions import (
    ConflictError,
    NotFoundError,
    TransientNetworkError,
    ValidationError,
)
from collabsync.core.queue import FileAction, FileChange
from collabsync.core.sync import CommitPipeline


def change(path: str, action: str = "update", content: str | None = "x") -> FileChange:
    return FileChange(path=path, action=FileAction(action), content=content)


@pytest.fixture
def pipeline(github, bindings) -> CommitPipeline:
    return CommitPipeline(github.client(), bindings, blob_workers=2)


class TestCommit:
    """Building one commit from file changes."""

    def test_tree_reflects_changes(self, pipeline, github, bound_repo) -> None:
        """Test that the new head has the created, updated and deleted paths."""
        repo, binding = bound_repo
        pipeline.commit(binding, "main", [change("notes.txt", "create", "hello")], "Add notes")

        result = pipeline.commit(
            binding,
            "main",
            [
                change("src/app.py", "create", "print(1)\n"),
                change("notes.txt", "update", "hello again"),
                change("README.md", "delete", None),
            ],
            "Rework",
        )

        files = repo.head_files("main")
        assert files == {"src/app.py": "print(1)\n", "notes.txt": "hello again"}
        assert repo.branches["main"] == result.sha
        assert repo.commits[result.sha]["message"] == "Rework"

    def test_single_parent_and_base_tree(self, pipeline, github, bound_repo) -> None:
        """Test that the commit has the old head as its only parent."""
        repo, binding = bound_repo
        old_head = repo.branches["main"]
        old_tree = repo.commits[old_head]["tree"]

        result = pipeline.commit(binding, None, [change("a.txt")], "One")

        assert result.parent_sha == old_head
        assert repo.commits[result.sha]["parents"] == [old_head]
        tree_requests = [r for r in github.requests if r.url.path.endswith("/git/trees")]
        assert json.loads(tree_requests[0].content)["base_tree"] == old_tree

    def test_one_blob_per_written_file(self, pipeline, github, bound_repo) -> None:
        """Test that deletions create no blob."""
        _, binding = bound_repo
        pipeline.commit(
            binding,
            "main",
            [change("a.txt"), change("b.txt"), change("README.md", "delete", None)],
            "Mixed",
        )

        assert github.count("POST", r"/git/blobs$") == 2
        assert github.count("POST", r"/git/trees$") == 1
        assert github.count("POST", r"/git/commits$") == 1

    def test_result_url_and_last_synced(self, pipeline, bound_repo, bindings, clock) -> None:
        """Test that the result links to the commit and last_synced_at moves."""
        _, binding = bound_repo
        clock.advance(60)

        result = pipeline.commit(binding, "main", [change("a.txt")], "One")

        assert result.url == f"https://github.com/alice/codecollab-abc/commit/{result.sha}"
        assert result.branch == "main"
        assert bindings.get("abc").last_synced_at == clock.now

    def test_later_change_to_same_path_wins(self, pipeline, bound_repo) -> None:
        """Test that repeated paths collapse to the last change."""
        repo, binding = bound_repo
        pipeline.commit(
            binding,
            "main",
            [change("a.txt", "create", "first"), change("a.txt", "update", "second")],
            "Twice",
        )

        assert repo.head_files()["a.txt"] == "second"

    def test_empty_files_rejected(self, pipeline, github, bound_repo) -> None:
        """Test that an empty change set makes no remote call."""
        _, binding = bound_repo
        calls = len(github.requests)

        with pytest.raises(ValidationError):
            pipeline.commit(binding, "main", [], "Nothing")
        assert len(github.requests) == calls

    def test_blank_message_rejected(self, pipeline, bound_repo) -> None:
        """Test that a commit needs a message."""
        _, binding = bound_repo
        with pytest.raises(ValidationError):
            pipeline.commit(binding, "main", [change("a.txt")], "  ")


class TestBranchResolution:
    """Candidate branches and head lookup."""

    def test_candidates(self, pipeline) -> None:
        """Test the ordered candidate list."""
        assert pipeline.candidate_branches(None) == ["main", "master"]
        assert pipeline.candidate_branches("dev") == ["dev", "master"]
        assert pipeline.candidate_branches("master") == ["master"]

    def test_falls_back_to_master(self, github, bindings) -> None:
        """Test that a repository without main commits to master."""
        repo = github.create_repo("codecollab-old", branch="master")
        binding = bindings.bind(
            RepositoryBinding(
                session_id="old",
                remote_repo_id=str(repo.id),
                repo_name=repo.name,
                repo_owner=repo.owner,
                repo_url=repo.html_url,
            )
        )
        pipeline = CommitPipeline(github.client(), bindings)

        result = pipeline.commit(binding, None, [change("a.txt")], "Legacy")

        assert result.branch == "master"
        assert repo.branches["master"] == result.sha

    def test_no_branch_found(self, pipeline, github, bound_repo) -> None:
        """Test that exhausting every candidate raises NotFoundError."""
        _, binding = bound_repo
        with pytest.raises(NotFoundError):
            pipeline.commit(binding, "gone", [change("a.txt")], "Nowhere")

    def test_server_error_does_not_fall_back(self, pipeline, github, bound_repo) -> None:
        """Test that only a missing branch moves on to the next candidate."""
        _, binding = bound_repo
        github.fail("GET", r"/branches/main$", 503)

        with pytest.raises(TransientNetworkError):
            pipeline.commit(binding, "main", [change("a.txt")], "One")
        assert github.count("GET", r"/branches/master$") == 0

    def test_tree_resolved_from_commit(self, pipeline, github, bound_repo) -> None:
        """Test that the head tree is fetched when the branch omits it."""
        repo, binding = bound_repo
        github.embed_tree = False

        pipeline.commit(binding, "main", [change("a.txt", "create", "a")], "One")

        assert github.count("GET", r"/git/commits/[0-9a-f]+$") == 1
        assert repo.head_files()["README.md"] == "# codecollab-abc\n"


class TestRefConflict:
    """Non-force ref updates."""

    def test_concurrent_push_is_retryable_conflict(self, pipeline, github, bound_repo) -> None:
        """Test that a branch moved mid-commit is rejected and not overwritten."""
        repo, binding = bound_repo

        def race(fake_repo, branch):
            github.before_ref_update = None
            github.push_external_commit(fake_repo, branch)

        github.before_ref_update = race

        with pytest.raises(ConflictError) as exc_info:
            pipeline.commit(binding, "main", [change("a.txt")], "Mine")

        assert exc_info.value.retryable is True
        assert "EXTERNAL.md" in repo.head_files()
        assert "a.txt" not in repo.head_files()

    def test_retry_after_conflict_builds_on_new_head(self, pipeline, github, bound_repo) -> None:
        """Test that the next attempt includes the concurrent change."""
        repo, binding = bound_repo

        def race(fake_repo, branch):
            github.before_ref_update = None
            github.push_external_commit(fake_repo, branch)

        github.before_ref_update = race
        with pytest.raises(ConflictError):
            pipeline.commit(binding, "main", [change("a.txt")], "Mine")

        result = pipeline.commit(binding, "main", [change("a.txt")], "Mine")

        files = repo.head_files()
        assert "EXTERNAL.md" in files and "a.txt" in files
        assert repo.branches["main"] == result.sha
