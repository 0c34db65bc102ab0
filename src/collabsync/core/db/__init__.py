"""
Database layer for collabsync.

Provides the SQLite schema and connection management shared by the
operation queue, the audit log and the repository binding store.

Usage:
    from collabsync.core.db import get_connection, init_db

    init_db(db_path)

    with get_connection(db_path) as conn:
        rows = conn.execute("SELECT * FROM queue_items WHERE status = ?", ("queued",))
"""

from collabsync.core.db.connection import (
    from_db_time,
    get_connection,
    init_db,
    to_db_time,
    use_connection,
)
from collabsync.core.db.schema import SCHEMA_VERSION, create_schema

__all__ = [
    "get_connection",
    "init_db",
    "create_schema",
    "from_db_time",
    "to_db_time",
    "use_connection",
    "SCHEMA_VERSION",
]
