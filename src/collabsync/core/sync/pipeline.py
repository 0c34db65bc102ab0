"""
Commit pipeline over the Git Data API.

Turns a set of file changes into one commit on a remote branch without a
local repository:

1. Resolve the branch head (commit and tree)
2. Create a blob for every created or updated file
3. Create one tree on top of the head's tree
4. Create one commit whose only parent is the head
5. Move the branch ref to the commit without forcing

A concurrent push between steps 1 and 5 makes step 5 fail with a
retryable ConflictError; the next attempt starts again from step 1.
Nothing here retries or swallows errors.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime

from pydantic import BaseModel, Field

from collabsync.core.bindings import BindingStore, RepositoryBinding
from collabsync.core.exceptions import (
    ConflictError,
    NotFoundError,
    RemoteAPIError,
    ValidationError,
)
from collabsync.core.github import FILE_MODE, BranchHead, GitHubClient, TreeEntry
from collabsync.core.queue.models import FileAction, FileChange

logger = logging.getLogger(__name__)


class CommitResult(BaseModel):
    """Outcome of a successful commit."""

    sha: str = Field(..., description="New commit SHA")
    url: str = Field(..., description="Browsable commit URL")
    branch: str = Field(..., description="Branch the commit landed on")
    tree_sha: str = Field(..., description="SHA of the new tree")
    parent_sha: str = Field(..., description="Head the commit was built on")
    file_count: int = Field(default=0, description="Number of paths written or deleted")
    synced_at: datetime | None = Field(default=None, description="New last_synced_at value")


class CommitPipeline:
    """
    Builds and publishes commits for bound sessions.

    Example:
        >>> pipeline = CommitPipeline(client, bindings)
        >>> result = pipeline.commit(binding, "main", changes, "Update from CodeCollab")
        >>> result.url
        'https://github.com/alice/codecollab-abc/commit/...'
    """

    def __init__(
        self,
        client: GitHubClient,
        bindings: BindingStore,
        *,
        default_branch: str = "main",
        fallback_branches: list[str] | None = None,
        blob_workers: int = 4,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            client: Client authenticated as the operation's user
            bindings: Store whose last_synced_at is advanced on success
            default_branch: Branch used when none is requested
            fallback_branches: Branches tried, in order, when the requested
                one does not exist
            blob_workers: Threads used to create blobs concurrently
        """
        self.client = client
        self.bindings = bindings
        self.default_branch = default_branch
        self.fallback_branches = ["master"] if fallback_branches is None else fallback_branches
        self.blob_workers = max(1, blob_workers)

    def candidate_branches(self, branch: str | None) -> list[str]:
        """
        Ordered, de-duplicated branches to try for a requested branch.

        Example:
            >>> pipeline.candidate_branches(None)
            ['main', 'master']
        """
        candidates: list[str] = []
        for name in [branch or self.default_branch, *self.fallback_branches]:
            if name and name not in candidates:
                candidates.append(name)
        return candidates

    def resolve_head(self, binding: RepositoryBinding, branch: str | None) -> BranchHead:
        """
        Find the head commit and tree of the first existing candidate branch.

        Raises:
            NotFoundError: If none of the candidate branches exists
        """
        owner, repo = binding.repo_owner, binding.repo_name
        candidates = self.candidate_branches(branch)

        for name in candidates:
            try:
                head = self.client.get_branch(owner, repo, name)
            except NotFoundError:
                logger.debug("Branch %s not found in %s", name, binding.full_name)
                continue

            if head.tree_sha is None:
                commit = self.client.get_commit(owner, repo, head.commit_sha)
                head = head.model_copy(update={"tree_sha": commit.tree_sha})
            if name != candidates[0]:
                logger.info(
                    "Branch %s missing in %s, using %s", candidates[0], binding.full_name, name
                )
            return head

        raise NotFoundError(
            f"None of the branches {', '.join(candidates)} exist in {binding.full_name}",
            repo=binding.full_name,
            branches=candidates,
        )

    def _collapse(self, files: list[FileChange]) -> list[FileChange]:
        # Last change to a path wins
        by_path: dict[str, FileChange] = {}
        for change in files:
            by_path.pop(change.path, None)
            by_path[change.path] = change
        if len(by_path) != len(files):
            logger.debug("Collapsed %d changes to %d paths", len(files), len(by_path))
        return list(by_path.values())

    def create_blobs(self, binding: RepositoryBinding, files: list[FileChange]) -> list[TreeEntry]:
        """
        Create blobs and return the tree entries for every change.

        Deletions produce an entry with ``sha=None`` and no blob.
        """
        owner, repo = binding.repo_owner, binding.repo_name
        futures: dict[str, Future[str]] = {}

        with ThreadPoolExecutor(max_workers=self.blob_workers) as executor:
            for change in files:
                if change.action == FileAction.DELETE:
                    continue
                futures[change.path] = executor.submit(
                    self.client.create_blob, owner, repo, change.content or ""
                )

        # Results in input order; the first failure propagates
        entries = []
        for change in files:
            sha = futures[change.path].result() if change.path in futures else None
            entries.append(TreeEntry(path=change.path, mode=FILE_MODE, type="blob", sha=sha))
        logger.debug("Created %d blobs in %s", len(futures), binding.full_name)
        return entries

    def commit(
        self,
        binding: RepositoryBinding,
        branch: str | None,
        files: list[FileChange],
        message: str,
    ) -> CommitResult:
        """
        Publish ``files`` as one commit on ``branch``.

        Args:
            binding: Repository the session is bound to
            branch: Requested branch, or None for the default
            files: Changes to apply (must not be empty)
            message: Commit message

        Returns:
            The new commit's SHA, URL and lineage

        Raises:
            ValidationError: If there are no files or no message
            NotFoundError: If no candidate branch exists
            ConflictError: If the branch moved while the commit was built
        """
        if not files:
            raise ValidationError("A commit needs at least one file change")
        if not message or not message.strip():
            raise ValidationError("A commit needs a non-empty message")

        owner, repo = binding.repo_owner, binding.repo_name
        changes = self._collapse(files)

        head = self.resolve_head(binding, branch)
        entries = self.create_blobs(binding, changes)

        tree_sha = self.client.create_tree(owner, repo, entries, base_tree=head.tree_sha)
        logger.debug("Created tree %s on base %s", tree_sha, head.tree_sha)

        commit = self.client.create_commit(
            owner, repo, message=message, tree=tree_sha, parents=[head.commit_sha]
        )
        logger.debug("Created commit %s with parent %s", commit.sha, head.commit_sha)

        try:
            self.client.update_ref(owner, repo, head.name, commit.sha, force=False)
        except (ConflictError, RemoteAPIError) as e:
            if isinstance(e, RemoteAPIError) and e.status_code not in (409, 422):
                raise
            raise ConflictError(
                f"Branch {head.name} of {binding.full_name} moved during the commit",
                retryable=True,
                branch=head.name,
                repo=binding.full_name,
                expected_parent=head.commit_sha,
            ) from e

        synced_at = self.bindings.touch_last_synced(binding.session_id)
        url = f"{binding.repo_url.rstrip('/')}/commit/{commit.sha}"
        logger.info(
            "Committed %d files to %s@%s: %s (%s)",
            len(changes),
            binding.full_name,
            head.name,
            commit.sha[:8],
            message,
        )
        return CommitResult(
            sha=commit.sha,
            url=url,
            branch=head.name,
            tree_sha=tree_sha,
            parent_sha=head.commit_sha,
            file_count=len(changes),
            synced_at=synced_at,
        )
