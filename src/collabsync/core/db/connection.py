"""
Database connection management for the collabsync store.

The connection module follows SQLite best practices:
- WAL mode so worker processes can read while another one writes
- A busy timeout so concurrent claim attempts wait instead of failing
- Row factory for dict-like access
- Context managers for safe transaction handling

Usage:
    from collabsync.core.db import get_connection, init_db

    init_db(db_path)

    with get_connection(db_path) as conn:
        conn.execute("UPDATE queue_items SET status = ? WHERE id = ?", ("failed", item_id))
        # Commits on successful exit, rolls back on exception
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from collabsync.core.db.schema import create_schema, needs_migration

# Seconds a connection waits for a competing writer before raising
BUSY_TIMEOUT_SECONDS = 30.0


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """
    Row factory that returns rows as dictionaries.

    Enables row["column_name"] instead of row[0].
    """
    fields = [column[0] for column in cursor.description]
    return dict(zip(fields, row))


def configure_connection(conn: sqlite3.Connection) -> None:
    """
    Configure a SQLite connection with the settings every store relies on.

    Args:
        conn: SQLite connection to configure
    """
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = dict_factory


def _connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), timeout=BUSY_TIMEOUT_SECONDS)
    configure_connection(conn)
    return conn


def init_db(db_path: Path | str, *, force_recreate: bool = False) -> None:
    """
    Initialize the database.

    Creates the database file if it doesn't exist and applies the schema.

    Args:
        db_path: Path to the SQLite database file
        force_recreate: If True, delete existing database and recreate
    """
    db_path = Path(db_path)

    if force_recreate and db_path.exists():
        db_path.unlink()

    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = _connect(db_path)
    try:
        if needs_migration(conn):
            create_schema(conn)
    finally:
        conn.close()


@contextmanager
def get_connection(db_path: Path | str) -> Iterator[sqlite3.Connection]:
    """
    Get a database connection as a context manager.

    The transaction is committed when the block exits normally and rolled
    back if it raises. The connection is always closed.

    Args:
        db_path: Path to the SQLite database file

    Yields:
        Configured SQLite connection
    """
    db_path = Path(db_path)

    if not db_path.exists():
        init_db(db_path)

    conn = _connect(db_path)

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def to_db_time(value: datetime | None) -> str | None:
    """
    Serialize a datetime for storage.

    Naive datetimes are taken to be UTC. Microseconds are always written so
    that string comparison in SQL matches time order.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@contextmanager
def use_connection(
    db_path: Path | str, conn: sqlite3.Connection | None = None
) -> Iterator[sqlite3.Connection]:
    """
    Reuse a caller's connection, or open one for the duration of the block.

    Lets a store method join a transaction opened by the caller so that
    writes to several tables commit together.
    """
    if conn is not None:
        yield conn
        return
    with get_connection(db_path) as own:
        yield own
