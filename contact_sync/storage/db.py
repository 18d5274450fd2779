"""
SQLite database module for the contact store and sync log.

Provides the shared connection handling and schema used by ContactStore
and SyncLogStore. Structured records are stored as JSON documents next to
the indexed columns the queries filter and sort on.
"""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

# SQL Schema for contacts and the sync log
SCHEMA = """
CREATE TABLE IF NOT EXISTS contacts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    document TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_contacts_user ON contacts(user_id);
CREATE INDEX IF NOT EXISTS idx_contacts_user_updated ON contacts(user_id, updated_at);

CREATE TABLE IF NOT EXISTS sync_log (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    operation TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    timestamp TEXT NOT NULL,
    document TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sync_log_user_status ON sync_log(user_id, status);
CREATE INDEX IF NOT EXISTS idx_sync_log_entity
    ON sync_log(user_id, entity_type, entity_id);
CREATE INDEX IF NOT EXISTS idx_sync_log_timestamp ON sync_log(timestamp);
"""


def sortable_timestamp(value: datetime) -> str:
    """
    Format a datetime so that string order matches time order.

    Naive datetimes are assumed to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SyncDatabase:
    """
    Connection and schema owner shared by ContactStore and SyncLogStore.

    ':memory:' databases keep one connection open for the object's lifetime,
    since each new in-memory connection would see an empty database. File
    databases open a connection per unit of work.

    Usage:
        db = SyncDatabase(str(config_dir / "contacts.db"))
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Args:
            db_path: SQLite file path, or ':memory:'
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None

    @property
    def is_memory(self) -> bool:
        return self.db_path == ":memory:"

    def _open(self) -> sqlite3.Connection:
        if self.is_memory:
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(":memory:")
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        One transaction: committed when the block exits normally, rolled
        back when it raises.

        Usage:
            with db.connection() as conn:
                conn.execute("DELETE FROM sync_log WHERE user_id = ?", (uid,))
        """
        conn = self._open()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not self.is_memory:
                conn.close()

    def initialize(self) -> None:
        """Create the contacts and sync_log tables and indexes if missing."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    def clear_all(self) -> None:
        """Delete every contact and sync log entry for all users."""
        with self.connection() as conn:
            conn.execute("DELETE FROM contacts")
            conn.execute("DELETE FROM sync_log")

    def close(self) -> None:
        """Release the in-memory connection; file databases hold none."""
        if self._shared_connection is not None:
            self._shared_connection.close()
            self._shared_connection = None

    def __repr__(self) -> str:
        return f"SyncDatabase(db_path={self.db_path!r})"
