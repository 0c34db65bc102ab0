"""
Data models for the operation queue.

Payloads are a tagged union keyed by ``kind``. They are validated once,
when an operation is enqueued; the worker trusts what it reads back.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from collabsync.core.db import from_db_time
from collabsync.core.exceptions import ValidationError


class OperationKind(str, Enum):
    """Kinds of operation a session can enqueue."""

    CREATE_REPO = "create_repo"
    COMMIT = "commit"
    SYNC = "sync"

    @property
    def writes_files(self) -> bool:
        """Check if this operation goes through the commit pipeline."""
        return self in (OperationKind.COMMIT, OperationKind.SYNC)


class QueueStatus(str, Enum):
    """Lifecycle of a queue item."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transition can happen."""
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)


class FileAction(str, Enum):
    """What a commit does to one path."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def normalize_path(value: str) -> str:
    """
    Normalize a repository-relative path.

    Strips leading slashes and rejects empty paths, '.' segments and
    parent references.

    Example:
        >>> normalize_path("/src/app.py")
        'src/app.py'
    """
    path = value.strip().lstrip("/")
    if not path:
        raise ValueError("path must not be empty")
    segments = path.split("/")
    if any(segment == ".." for segment in segments):
        raise ValueError(f"path must not contain '..': {value}")
    if any(segment == "." for segment in segments):
        raise ValueError(f"path must not contain '.' segments: {value}")
    if any(segment == "" for segment in segments):
        raise ValueError(f"path must not contain empty segments: {value}")
    return path


class FileChange(BaseModel):
    """One file edit in a commit."""

    path: str = Field(..., description="Path relative to the repository root")
    content: str | None = Field(default=None, description="New content; absent for delete")
    action: FileAction = Field(..., description="create, update or delete")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        return normalize_path(v)

    @model_validator(mode="after")
    def require_content(self) -> FileChange:
        if self.action != FileAction.DELETE and self.content is None:
            raise ValueError(f"{self.action.value} of {self.path} requires content")
        return self


class SnapshotFile(BaseModel):
    """One file of a full session snapshot."""

    path: str = Field(..., description="Path relative to the repository root")
    content: str = Field(..., description="File content")

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        return normalize_path(v)


class CreateRepoPayload(BaseModel):
    """Create the session's remote repository."""

    kind: Literal["create_repo"] = "create_repo"
    description: str | None = Field(default=None, description="Repository description override")

    @property
    def commit_message(self) -> str | None:
        return None

    @property
    def file_count(self) -> int:
        return 0


class CommitPayload(BaseModel):
    """Commit an explicit set of file changes."""

    kind: Literal["commit"] = "commit"
    files: list[FileChange] = Field(..., min_length=1, description="Changes to apply")
    commit_message: str = Field(..., min_length=1, description="Commit message")
    branch: str | None = Field(default=None, description="Target branch; default if absent")

    @field_validator("commit_message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("commit_message must not be blank")
        return v

    @property
    def file_count(self) -> int:
        return len(self.files)

    def changes(self) -> list[FileChange]:
        return list(self.files)


class SyncPayload(BaseModel):
    """
    Commit a full snapshot of the session's files.

    Every snapshot entry is written as an update; files missing from the
    snapshot are left untouched on the remote.
    """

    kind: Literal["sync"] = "sync"
    files: list[SnapshotFile] = Field(..., min_length=1, description="Session files")
    commit_message: str | None = Field(default=None, description="Commit message")
    branch: str | None = Field(default=None, description="Target branch; default if absent")

    @property
    def file_count(self) -> int:
        return len(self.files)

    def changes(self) -> list[FileChange]:
        return [
            FileChange(path=f.path, content=f.content, action=FileAction.UPDATE)
            for f in self.files
        ]


Payload = Annotated[
    Union[CreateRepoPayload, CommitPayload, SyncPayload],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter[Any] = TypeAdapter(Payload)


def _format_errors(error: PydanticValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        parts.append(f"{location}: {detail['msg']}" if location else detail["msg"])
    return "; ".join(parts)


def parse_payload(kind: OperationKind | str, data: dict[str, Any] | BaseModel | None) -> Payload:
    """
    Validate a payload for an operation kind.

    Args:
        kind: Operation kind the payload belongs to
        data: Raw payload mapping, or an already built payload model

    Returns:
        The typed payload

    Raises:
        ValidationError: If the kind is unknown or the payload is malformed
    """
    try:
        kind = OperationKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown operation kind: {kind}", kind=str(kind)) from None

    if isinstance(data, BaseModel):
        data = data.model_dump()
    body = dict(data or {})
    if body.get("kind", kind.value) != kind.value:
        raise ValidationError(
            f"Payload kind {body['kind']!r} does not match operation {kind.value!r}",
            kind=kind.value,
        )
    body["kind"] = kind.value

    try:
        return _payload_adapter.validate_python(body)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {kind.value} payload: {_format_errors(e)}", kind=kind.value
        ) from e


class QueueItem(BaseModel):
    """
    A persisted operation waiting for, or finished with, execution.

    ``status == processing`` means exactly one worker owns the item.
    """

    id: str = Field(..., description="Queue item id")
    session_id: str = Field(..., description="Session the operation belongs to")
    user_id: str = Field(..., description="User whose token executes the operation")
    operation_kind: OperationKind = Field(..., description="What to execute")
    status: QueueStatus = Field(default=QueueStatus.QUEUED, description="Lifecycle state")
    priority: int = Field(default=0, description="Higher runs sooner")
    payload: Payload = Field(..., description="Kind-specific parameters")
    retry_count: int = Field(default=0, ge=0, description="Failed attempts so far")
    max_retries: int = Field(default=3, ge=1, description="Attempts allowed")
    created_at: datetime = Field(..., description="When the item was enqueued")
    updated_at: datetime = Field(..., description="Last state change")
    available_at: datetime = Field(..., description="Earliest time the item may be claimed")
    claimed_at: datetime | None = Field(default=None, description="Start of the current claim")
    processed_at: datetime | None = Field(default=None, description="When a terminal state was reached")
    error: str | None = Field(default=None, description="Last error message")

    @property
    def attempts_left(self) -> int:
        return max(0, self.max_retries - self.retry_count)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> QueueItem:
        """Build from a queue_items row."""
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            user_id=row["user_id"],
            operation_kind=row["operation_kind"],
            status=row["status"],
            priority=row["priority"],
            payload=json.loads(row["payload"]),
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
            available_at=from_db_time(row["available_at"]),
            claimed_at=from_db_time(row["claimed_at"]),
            processed_at=from_db_time(row["processed_at"]),
            error=row["error"],
        )
