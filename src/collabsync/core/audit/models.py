"""
Models for the sync audit log.

There is one audit record per queue item. It mirrors the item while the
item is in flight and freezes once a terminal status is reached.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from collabsync.core.db import from_db_time


class AuditStatus(str, Enum):
    """Status of an audited operation."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if the record can no longer change."""
        return self in (AuditStatus.COMPLETED, AuditStatus.FAILED)


class AuditRecord(BaseModel):
    """User-visible history entry for one enqueued operation."""

    id: str = Field(..., description="Audit record id")
    queue_item_id: str = Field(..., description="Queue item this record follows")
    session_id: str = Field(..., description="Session id")
    user_id: str = Field(..., description="User who enqueued the operation")
    operation_kind: str = Field(..., description="create_repo, commit or sync")
    status: AuditStatus = Field(default=AuditStatus.PENDING, description="Current status")
    priority: int = Field(default=0, description="Queue priority")
    retry_count: int = Field(default=0, description="Failed attempts so far")
    max_retries: int = Field(default=3, description="Attempts allowed")
    commit_message: str | None = Field(default=None, description="Commit message, if any")
    file_count: int = Field(default=0, description="Number of files in the operation")
    commit_sha: str | None = Field(default=None, description="Resulting commit SHA")
    commit_url: str | None = Field(default=None, description="Browsable commit URL")
    created_at: datetime = Field(..., description="When the operation was enqueued")
    updated_at: datetime = Field(..., description="Last change to this record")
    processed_at: datetime | None = Field(default=None, description="When it finished")
    error: str | None = Field(default=None, description="Last error message")

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AuditRecord:
        """Build from an audit_records row."""
        data = dict(row)
        for key in ("created_at", "updated_at", "processed_at"):
            data[key] = from_db_time(data[key])
        return cls.model_validate(data)
