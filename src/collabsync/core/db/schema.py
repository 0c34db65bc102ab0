"""
SQLite schema for the collabsync store.

One database file holds the three shared records of the sync subsystem:

- queue_items: pending and in-flight operations with retry bookkeeping
- audit_records: one immutable-after-terminal history row per queue item
- repository_bindings: at most one remote repository per session
- schema_info: version tracking for migrations

Timestamps are stored as UTC ISO-8601 strings with microsecond precision so
that lexical order matches chronological order.
"""

import sqlite3

# Schema version for migrations
SCHEMA_VERSION = 1

OPERATION_KINDS = ["create_repo", "commit", "sync"]

QUEUE_STATUSES = ["queued", "processing", "completed", "failed"]

AUDIT_STATUSES = ["pending", "processing", "completed", "failed"]


SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    description TEXT
);

CREATE TABLE IF NOT EXISTS queue_items (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    operation_kind TEXT NOT NULL CHECK(operation_kind IN ('create_repo', 'commit', 'sync')),
    status TEXT NOT NULL CHECK(status IN ('queued', 'processing', 'completed', 'failed')),
    priority INTEGER NOT NULL DEFAULT 0,
    payload JSON NOT NULL,
    retry_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    available_at TEXT NOT NULL,
    claimed_at TEXT,
    processed_at TEXT,
    error TEXT
);

CREATE TABLE IF NOT EXISTS audit_records (
    id TEXT PRIMARY KEY,
    queue_item_id TEXT NOT NULL UNIQUE,
    session_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    operation_kind TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('pending', 'processing', 'completed', 'failed')),
    priority INTEGER NOT NULL DEFAULT 0,
    retry_count INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    commit_message TEXT,
    file_count INTEGER NOT NULL DEFAULT 0,
    commit_sha TEXT,
    commit_url TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    processed_at TEXT,
    error TEXT
);

CREATE TABLE IF NOT EXISTS repository_bindings (
    session_id TEXT PRIMARY KEY,
    remote_repo_id TEXT NOT NULL,
    repo_name TEXT NOT NULL,
    repo_owner TEXT NOT NULL,
    repo_url TEXT NOT NULL,
    is_private BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TEXT NOT NULL,
    last_synced_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_queue_selection
    ON queue_items(status, priority DESC, created_at ASC);
CREATE INDEX IF NOT EXISTS idx_queue_session ON queue_items(session_id);
CREATE INDEX IF NOT EXISTS idx_audit_session_created
    ON audit_records(session_id, created_at DESC);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    """
    Create the database schema.

    Idempotent - safe to call multiple times.

    Args:
        conn: SQLite database connection

    Example:
        >>> import sqlite3
        >>> conn = sqlite3.connect(":memory:")
        >>> create_schema(conn)
        >>> cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        >>> tables = [row[0] for row in cursor.fetchall()]
        >>> assert "queue_items" in tables
    """
    conn.executescript(SCHEMA_DDL)

    conn.execute(
        """
        INSERT OR REPLACE INTO schema_info (version, description)
        VALUES (?, ?)
        """,
        (SCHEMA_VERSION, "Queue, audit log and repository bindings"),
    )

    conn.commit()


def get_schema_version(conn: sqlite3.Connection) -> int | None:
    """
    Get the current schema version from the database.

    Returns:
        Current schema version, or None if schema_info table doesn't exist
    """
    try:
        cursor = conn.execute("SELECT MAX(version) FROM schema_info")
        row = cursor.fetchone()
        if row is None:
            return None
        value = row["MAX(version)"] if isinstance(row, dict) else row[0]
        return value if value is not None else None
    except sqlite3.OperationalError:
        return None


def needs_migration(conn: sqlite3.Connection) -> bool:
    """
    Check if database needs migration to current schema version.

    Example:
        >>> import sqlite3
        >>> conn = sqlite3.connect(":memory:")
        >>> assert needs_migration(conn) is True
        >>> create_schema(conn)
        >>> assert needs_migration(conn) is False
    """
    version = get_schema_version(conn)
    return version is None or version < SCHEMA_VERSION
