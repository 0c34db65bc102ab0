"""
GitHub data models for collabsync.

Defines Pydantic models for the pieces of the Git Data API responses the
sync subsystem reads, and for tree entries it sends.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, computed_field

# Regular (non-executable) file mode
FILE_MODE = "100644"


class AuthenticatedUser(BaseModel):
    """
    The account behind an access token.

    ``scopes`` is None when the remote does not report OAuth scopes
    (fine-grained tokens, GitHub Apps).
    """

    login: str = Field(..., description="Account login name")
    scopes: list[str] | None = Field(
        default=None,
        description="OAuth scopes from the X-OAuth-Scopes header",
    )

    def has_any_scope(self, required: list[str]) -> bool:
        """Check whether the token carries one of the required scopes."""
        if self.scopes is None:
            return True
        return any(scope in self.scopes for scope in required)


class RemoteRepository(BaseModel):
    """
    Repository as returned by POST /user/repos and GET /repos/{owner}/{repo}.

    Example:
        >>> RemoteRepository.from_api({
        ...     "id": 42, "name": "codecollab-abc", "owner": {"login": "alice"},
        ...     "html_url": "https://github.com/alice/codecollab-abc", "private": True,
        ... }).full_name
        'alice/codecollab-abc'
    """

    id: str = Field(..., description="Remote repository id")
    name: str = Field(..., description="Repository name")
    owner: str = Field(..., description="Owner login")
    html_url: str = Field(..., description="Browsable repository URL")
    private: bool = Field(default=True, description="Whether the repository is private")

    @computed_field
    @property
    def full_name(self) -> str:
        """Full repository name (owner/repo)."""
        return f"{self.owner}/{self.name}"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> RemoteRepository:
        """Build from a raw API payload."""
        return cls(
            id=str(data["id"]),
            name=data["name"],
            owner=data["owner"]["login"],
            html_url=data["html_url"],
            private=bool(data.get("private", True)),
        )


class BranchHead(BaseModel):
    """
    Current head of a branch.

    ``tree_sha`` is filled when the branch response embeds the commit's
    tree; otherwise the caller resolves it from the commit.
    """

    name: str = Field(..., description="Branch name")
    commit_sha: str = Field(..., description="SHA of the head commit")
    tree_sha: str | None = Field(default=None, description="SHA of the head commit's tree")

    @classmethod
    def from_api(cls, name: str, data: dict[str, Any]) -> BranchHead:
        """Build from a GET /repos/{owner}/{repo}/branches/{branch} payload."""
        commit = data["commit"]
        tree = (commit.get("commit") or {}).get("tree") or {}
        return cls(name=name, commit_sha=commit["sha"], tree_sha=tree.get("sha"))


class GitCommit(BaseModel):
    """A commit object from the Git Data API."""

    sha: str = Field(..., description="Commit SHA")
    tree_sha: str | None = Field(default=None, description="SHA of the commit's tree")
    html_url: str | None = Field(default=None, description="Browsable commit URL")

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> GitCommit:
        """Build from a git/commits payload."""
        tree = data.get("tree") or {}
        return cls(sha=data["sha"], tree_sha=tree.get("sha"), html_url=data.get("html_url"))


class TreeEntry(BaseModel):
    """
    One entry of a POST git/trees request.

    ``sha`` is None to delete the path from the base tree; it is always
    serialized, because an omitted sha is not a deletion.
    """

    path: str = Field(..., description="Path relative to the repository root")
    mode: str = Field(default=FILE_MODE, description="Git file mode")
    type: Literal["blob", "tree", "commit"] = Field(default="blob", description="Object type")
    sha: str | None = Field(..., description="Blob SHA, or None to delete the path")
