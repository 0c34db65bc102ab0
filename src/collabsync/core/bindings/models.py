"""
Models for session repository bindings.

A binding links one collaborative session to the remote repository that
receives its commits.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, computed_field

from collabsync.core.db import from_db_time


class RepositoryBinding(BaseModel):
    """
    Represents the remote repository bound to a session.

    There is at most one binding per session. ``remote_repo_id`` never
    changes once set; only ``last_synced_at`` moves after each commit.
    """

    session_id: str = Field(..., description="Collaborative session id")
    remote_repo_id: str = Field(..., description="Remote repository id")
    repo_name: str = Field(..., description="Repository name")
    repo_owner: str = Field(..., description="Owner login")
    repo_url: str = Field(..., description="Browsable repository URL")
    is_private: bool = Field(default=True, description="Whether the repository is private")
    created_at: datetime | None = Field(default=None, description="When the binding was stored")
    last_synced_at: datetime | None = Field(
        default=None, description="Time of the last successful commit"
    )

    @computed_field
    @property
    def full_name(self) -> str:
        """Full repository name (owner/repo)."""
        return f"{self.repo_owner}/{self.repo_name}"

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> RepositoryBinding:
        """Build from a repository_bindings row."""
        return cls(
            session_id=row["session_id"],
            remote_repo_id=row["remote_repo_id"],
            repo_name=row["repo_name"],
            repo_owner=row["repo_owner"],
            repo_url=row["repo_url"],
            is_private=bool(row["is_private"]),
            created_at=from_db_time(row["created_at"]),
            last_synced_at=from_db_time(row["last_synced_at"]),
        )
