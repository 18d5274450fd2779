"""
Contact store backed by SQLite.

All operations are scoped by user id: a contact is only visible to, and
mutable by, the user that owns it.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Optional, Union

from contact_sync.storage.db import SyncDatabase, sortable_timestamp
from contact_sync.sync.contact import Contact, ContactPatch, derive_category
from contact_sync.sync.sync_log import new_id
from contact_sync.utils.timestamps import utc_now

logger = logging.getLogger(__name__)

ContactPayload = Union[ContactPatch, dict[str, Any]]


def _prepare_patch(payload: ContactPayload) -> ContactPatch:
    """Validate a payload and apply write-boundary derivations."""
    if isinstance(payload, ContactPatch):
        data = payload.to_dict()
    else:
        data = ContactPatch.from_dict(payload).to_dict()
    return ContactPatch.from_dict(derive_category(data))


def _matches(contact: Contact, filters: dict[str, Any]) -> bool:
    """
    Check a contact against equality filters on camelCase fields.

    For list-valued fields (tags, categories) a scalar filter value
    matches when it is one of the list items.
    """
    data = contact.to_dict()
    for key, expected in filters.items():
        actual = data.get(key)
        if isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


class ContactStore:
    """
    Persistent per-user contact storage.

    Usage:
        store = ContactStore(database)
        contact = store.create("user-1", {"firstName": "Jane", "lastName": "Doe"})
        store.update_one("user-1", contact.id, {"phone": "+1555"})
        store.delete_one("user-1", contact.id)
    """

    def __init__(self, database: SyncDatabase):
        """
        Initialize the store.

        Args:
            database: Initialized SyncDatabase
        """
        self.database = database

    def _write(self, conn: Any, contact: Contact, insert: bool) -> None:
        document = json.dumps(contact.to_dict())
        created_at = contact.created_at or utc_now()
        updated_at = contact.updated_at or created_at
        if insert:
            conn.execute(
                """
                INSERT INTO contacts (id, user_id, document, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    contact.id,
                    contact.user_id,
                    document,
                    sortable_timestamp(created_at),
                    sortable_timestamp(updated_at),
                ),
            )
        else:
            conn.execute(
                """
                UPDATE contacts SET document = ?, updated_at = ?
                WHERE id = ? AND user_id = ?
                """,
                (
                    document,
                    sortable_timestamp(updated_at),
                    contact.id,
                    contact.user_id,
                ),
            )

    def find(
        self,
        user_id: str,
        filters: Optional[dict[str, Any]] = None,
        updated_since: Optional[datetime] = None,
    ) -> list[Contact]:
        """
        List a user's contacts.

        Args:
            user_id: Owning user
            filters: Optional equality filters on camelCase fields
            updated_since: Only contacts modified strictly after this time

        Returns:
            Matching contacts ordered by last name, then first name
        """
        query = "SELECT document FROM contacts WHERE user_id = ?"
        params: list[str] = [user_id]
        if updated_since is not None:
            query += " AND updated_at > ?"
            params.append(sortable_timestamp(updated_since))

        with self.database.connection() as conn:
            rows = conn.execute(query, params).fetchall()

        contacts = [Contact.from_dict(json.loads(row["document"])) for row in rows]
        if filters:
            contacts = [c for c in contacts if _matches(c, filters)]
        return sorted(contacts, key=lambda c: (c.last_name, c.first_name, c.id))

    def find_one(self, user_id: str, contact_id: str) -> Optional[Contact]:
        """
        Get a single contact.

        Returns:
            The contact, or None if it does not exist for this user
        """
        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT document FROM contacts WHERE id = ? AND user_id = ?",
                (contact_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return Contact.from_dict(json.loads(row["document"]))

    def create(
        self,
        user_id: str,
        payload: ContactPayload,
        contact_id: Optional[str] = None,
    ) -> Contact:
        """
        Create a contact for a user.

        Args:
            user_id: Owning user
            payload: ContactPatch or camelCase dictionary
            contact_id: Identifier to use; a fresh one is generated if None

        Returns:
            The stored contact

        Raises:
            InvalidArgumentError: If the payload is invalid or lacks names
            sqlite3.IntegrityError: If contact_id is already taken
        """
        patch = _prepare_patch(payload)
        patch.validate_for_create()

        now = utc_now()
        contact = Contact(
            id=contact_id or new_id(),
            user_id=user_id,
            first_name="",
            last_name="",
            created_at=now,
            updated_at=now,
            last_synced_at=now,
        )
        contact.apply_patch(patch)

        with self.database.connection() as conn:
            self._write(conn, contact, insert=True)

        logger.debug(f"Created contact {contact.id} for user {user_id}")
        return contact

    def update_one(
        self, user_id: str, contact_id: str, patch: ContactPayload
    ) -> Optional[Contact]:
        """
        Apply a partial update to a contact.

        Fields absent from the patch keep their values. lastSyncedAt and
        updatedAt are stamped with the current time.

        Returns:
            The updated contact, or None if it does not exist for this user

        Raises:
            InvalidArgumentError: If the patch is invalid
        """
        prepared = _prepare_patch(patch)

        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT document FROM contacts WHERE id = ? AND user_id = ?",
                (contact_id, user_id),
            ).fetchone()
            if row is None:
                return None

            contact = Contact.from_dict(json.loads(row["document"]))
            contact.apply_patch(prepared)
            now = utc_now()
            contact.updated_at = now
            contact.last_synced_at = now
            self._write(conn, contact, insert=False)

        logger.debug(f"Updated contact {contact_id} for user {user_id}")
        return contact

    def delete_one(self, user_id: str, contact_id: str) -> Optional[Contact]:
        """
        Delete a contact.

        Returns:
            The deleted contact, or None if it does not exist for this user
        """
        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT document FROM contacts WHERE id = ? AND user_id = ?",
                (contact_id, user_id),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "DELETE FROM contacts WHERE id = ? AND user_id = ?",
                (contact_id, user_id),
            )

        logger.debug(f"Deleted contact {contact_id} for user {user_id}")
        return Contact.from_dict(json.loads(row["document"]))

    def count(self, user_id: str) -> int:
        """Count a user's contacts."""
        with self.database.connection() as conn:
            cursor = conn.execute(
                "SELECT COUNT(*) FROM contacts WHERE user_id = ?", (user_id,)
            )
            result: int = cursor.fetchone()[0]
            return result
