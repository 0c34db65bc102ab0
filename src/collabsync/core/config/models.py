"""
Configuration data models for collabsync.

These models define the structure of .collabsync.json and
~/.config/collabsync/config.json files, with validation and type safety
via Pydantic.
"""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GitHubConfig(BaseModel):
    """
    Remote Git hosting API settings.

    Used to build a request-scoped client for every queue item.
    """
    api_url: str = Field(
        default="https://api.github.com",
        description="Base URL of the Git Data API"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Client-side timeout applied to every remote call"
    )
    user_agent: str = Field(
        default="CodeCollab-App",
        description="User-Agent header sent with every request"
    )
    api_version: str = Field(
        default="2022-11-28",
        description="Value of the X-GitHub-Api-Version header"
    )

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so endpoint paths can be appended."""
        return v.rstrip("/")


class QueueConfig(BaseModel):
    """
    Operation queue storage and retry bookkeeping.
    """
    db_path: Path = Field(
        default=Path(".collabsync/sync.db"),
        description="SQLite database holding the queue, audit log and bindings"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts allowed per queue item before it is marked failed"
    )
    history_limit: int = Field(
        default=20,
        ge=1,
        description="Default number of audit records returned by history queries"
    )


class RetryConfig(BaseModel):
    """
    Backoff applied between attempts of a failed queue item.

    delay = base_delay * multiplier ** (retry_count - 1), capped at max_delay,
    with ±jitter_ratio random variance.
    """
    base_delay: float = Field(
        default=2.0,
        ge=0.0,
        description="Delay in seconds before the first retry"
    )
    multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Exponential backoff multiplier"
    )
    max_delay: float = Field(
        default=300.0,
        ge=0.0,
        description="Upper bound on a single retry delay in seconds"
    )
    jitter_ratio: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Random variance ratio applied to each delay"
    )


class WorkerConfig(BaseModel):
    """
    Sync worker loop behavior.
    """
    poll_interval: float = Field(
        default=2.0,
        gt=0.0,
        description="Seconds to sleep when the queue has no eligible item"
    )
    concurrency: int = Field(
        default=1,
        ge=1,
        description="Number of worker threads started by the CLI"
    )
    blob_workers: int = Field(
        default=4,
        ge=1,
        description="Threads used to create blobs in parallel within one commit"
    )
    stale_claim_minutes: int = Field(
        default=15,
        ge=1,
        description="Items processing longer than this are returned to the queue"
    )


class RepositoryConfig(BaseModel):
    """
    How session repositories are created and which branch receives commits.
    """
    name_prefix: str = Field(
        default="codecollab-",
        description="Repository name is <name_prefix><session id>"
    )
    private: bool = Field(
        default=True,
        description="Create session repositories as private"
    )
    auto_init: bool = Field(
        default=True,
        description="Ask the remote to create an initial commit"
    )
    description_template: str = Field(
        default="CodeCollab session: {session_id}",
        description="Repository description; {session_id} is substituted"
    )
    default_branch: str = Field(
        default="main",
        description="Branch used when a payload does not name one"
    )
    fallback_branches: list[str] = Field(
        default_factory=lambda: ["master"],
        description="Branches tried in order when the requested branch is missing"
    )
    default_commit_message: str = Field(
        default="Update from CodeCollab",
        description="Message used for sync operations without one"
    )
    required_scopes: list[str] = Field(
        default_factory=lambda: ["repo", "public_repo"],
        description="Any one of these OAuth scopes allows repository creation"
    )


class SyncConfig(BaseModel):
    """
    Top-level collabsync configuration.

    Loaded from defaults, user config, project config, and env vars.

    Example:
        >>> config = SyncConfig(queue=QueueConfig(max_retries=5))
        >>> config.queue.max_retries
        5
        >>> config.repository.default_branch
        'main'
    """
    github: GitHubConfig = Field(
        default_factory=GitHubConfig,
        description="Remote API settings"
    )
    queue: QueueConfig = Field(
        default_factory=QueueConfig,
        description="Operation queue settings"
    )
    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Retry backoff settings"
    )
    worker: WorkerConfig = Field(
        default_factory=WorkerConfig,
        description="Worker loop settings"
    )
    repository: RepositoryConfig = Field(
        default_factory=RepositoryConfig,
        description="Repository creation and branch settings"
    )
    token_env_prefix: Optional[str] = Field(
        default="COLLABSYNC_TOKEN_",
        description="Per-user token variables are <prefix><USER_ID>"
    )

    model_config = ConfigDict(
        extra="allow",  # Allow extra fields for forward compatibility
        validate_assignment=True,
    )
