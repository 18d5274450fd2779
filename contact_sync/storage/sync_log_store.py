"""
Sync log store backed by SQLite.

Entries are saved in full after every state transition; save() is an
upsert by entry id so repeated saves are idempotent.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional

from contact_sync.storage.db import SyncDatabase, sortable_timestamp
from contact_sync.sync.sync_log import SyncLogEntry, SyncOperation, SyncStatus

logger = logging.getLogger(__name__)


def _row_params(entry: SyncLogEntry) -> tuple[Any, ...]:
    return (
        entry.id,
        entry.user_id,
        entry.operation.value,
        entry.entity_id,
        entry.entity_type,
        entry.status.value,
        sortable_timestamp(entry.timestamp),
        # Failed entries may carry the raw, unvalidated client payload
        json.dumps(entry.to_dict(), default=str),
    )


class SyncLogStore:
    """
    Persistent storage for sync log entries.

    Usage:
        store = SyncLogStore(database)
        store.create(entry)
        for pending in store.find_pending("user-1"):
            ...
            store.save(pending)
    """

    def __init__(self, database: SyncDatabase):
        """
        Initialize the store.

        Args:
            database: Initialized SyncDatabase
        """
        self.database = database

    def create(self, entry: SyncLogEntry) -> SyncLogEntry:
        """
        Insert a new entry.

        Raises:
            sqlite3.IntegrityError: If an entry with the same id exists
        """
        with self.database.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_log (
                    id, user_id, operation, entity_id, entity_type,
                    status, timestamp, document
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                _row_params(entry),
            )
        logger.debug(
            f"Recorded sync log {entry.id}: {entry.operation.value} "
            f"{entry.entity_id} [{entry.status.value}]"
        )
        return entry

    def save(self, entry: SyncLogEntry) -> None:
        """Insert or update an entry by id."""
        with self.database.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_log (
                    id, user_id, operation, entity_id, entity_type,
                    status, timestamp, document
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    entity_id = excluded.entity_id,
                    status = excluded.status,
                    document = excluded.document
                """,
                _row_params(entry),
            )

    def get(self, user_id: str, entry_id: str) -> Optional[SyncLogEntry]:
        """
        Get an entry owned by a user.

        Returns:
            The entry, or None if it does not exist for this user
        """
        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT document FROM sync_log WHERE id = ? AND user_id = ?",
                (entry_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return SyncLogEntry.from_dict(json.loads(row["document"]))

    def find(
        self,
        user_id: str,
        status: Optional[SyncStatus] = None,
        operation: Optional[SyncOperation] = None,
        since: Optional[datetime] = None,
    ) -> list[SyncLogEntry]:
        """
        List a user's entries, oldest first.

        Args:
            user_id: Owning user
            status: Only entries in this status
            operation: Only entries for this operation
            since: Only entries whose timestamp is strictly after this time
        """
        query = "SELECT document FROM sync_log WHERE user_id = ?"
        params: list[str] = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if operation is not None:
            query += " AND operation = ?"
            params.append(operation.value)
        if since is not None:
            query += " AND timestamp > ?"
            params.append(sortable_timestamp(since))
        query += " ORDER BY timestamp ASC, rowid ASC"

        with self.database.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [SyncLogEntry.from_dict(json.loads(row["document"])) for row in rows]

    def find_pending(self, user_id: str) -> list[SyncLogEntry]:
        """List a user's PENDING entries in ascending timestamp order."""
        return self.find(user_id, status=SyncStatus.PENDING)

    def users_with_pending(self) -> list[str]:
        """List the users that have at least one PENDING entry."""
        with self.database.connection() as conn:
            rows = conn.execute(
                "SELECT DISTINCT user_id FROM sync_log WHERE status = ? "
                "ORDER BY user_id",
                (SyncStatus.PENDING.value,),
            ).fetchall()
        return [row["user_id"] for row in rows]

    def count_by_status(self, user_id: str) -> dict[str, int]:
        """Count a user's entries per status."""
        counts = {status.value: 0 for status in SyncStatus}
        with self.database.connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS total FROM sync_log "
                "WHERE user_id = ? GROUP BY status",
                (user_id,),
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["total"]
        return counts
