"""
Conflict detection and resolution for offline contact edits.

A conflict exists when a client's locally edited contact diverges from
the server's stored copy on one or more fields. Conflicts are parked on
the sync log entry and resolved later with one of three strategies:
local wins, server wins, or a field-level merge.
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from contact_sync.storage.contact_store import ContactStore
from contact_sync.storage.sync_log_store import SyncLogStore
from contact_sync.sync.contact import MAP_FIELDS, SET_FIELDS, Contact, ContactPatch
from contact_sync.sync.errors import (
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    StaleConflictError,
)
from contact_sync.sync.sync_log import ConflictData, SyncLogEntry, SyncStatus
from contact_sync.utils.timestamps import EPOCH, parse_timestamp

logger = logging.getLogger(__name__)

# Keys never considered for divergence
IGNORED_FIELDS = frozenset({"id", "_id", "userId", "lastSyncedAt"})


class ResolutionStrategy(str, Enum):
    """Available conflict resolution strategies."""

    LOCAL = "local"
    SERVER = "server"
    MERGE = "merge"

    @classmethod
    def parse(cls, value: Any) -> ResolutionStrategy:
        """
        Parse a resolution strategy name.

        Raises:
            InvalidArgumentError: If value is not local, server or merge
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise InvalidArgumentError(
            f"Invalid resolution strategy '{value}'. "
            f"Must be one of: {', '.join(s.value for s in cls)}"
        )


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def canonical_value(field: str, value: Any) -> str:
    """
    Serialize a field value for structural comparison.

    Objects are compared by content regardless of key order, and set
    valued fields regardless of item order or duplicates. Blank address
    parts are dropped and an address with no parts equals a missing one.
    """
    if field == "address" and isinstance(value, dict):
        value = {k: v for k, v in value.items() if v is not None and str(v).strip()}
    if field == "address" and not value:
        value = None
    if field in SET_FIELDS and isinstance(value, list):
        if all(isinstance(item, str) for item in value):
            value = sorted(set(value))
    return json.dumps(value, sort_keys=True, default=_json_default)


def find_conflicting_fields(
    local_data: dict[str, Any], server_data: dict[str, Any]
) -> list[str]:
    """
    List the fields of local_data whose values differ from server_data.

    Only keys present in local_data are compared; id, _id, userId and
    lastSyncedAt are always skipped.

    Returns:
        Divergent field names in local_data key order
    """
    conflicts = []
    for field, local_value in local_data.items():
        if field in IGNORED_FIELDS:
            continue
        if canonical_value(field, local_value) != canonical_value(
            field, server_data.get(field)
        ):
            conflicts.append(field)
    return conflicts


def _unique(values: list[Any]) -> list[Any]:
    result: list[Any] = []
    for value in values:
        if value not in result:
            result.append(value)
    return result


def merge_versions(
    local_version: dict[str, Any], server_version: dict[str, Any]
) -> dict[str, Any]:
    """
    Merge both sides of a conflict field by field.

    Starts from the server version. If the local version has a strictly
    newer lastSyncedAt, every plain field it carries overwrites the
    server value. Tags are the union of both sides (server order first)
    and socialProfiles the union of both maps, local winning on key
    collisions, whichever side is newer.

    Args:
        local_version: The client's submitted contact data
        server_version: The stored contact at detection time

    Returns:
        The merged camelCase contact dictionary
    """
    merged = copy.deepcopy(server_version)

    local_time = parse_timestamp(local_version.get("lastSyncedAt")) or EPOCH
    server_time = parse_timestamp(server_version.get("lastSyncedAt")) or EPOCH

    if local_time > server_time:
        for field, value in local_version.items():
            if field in SET_FIELDS or field in MAP_FIELDS:
                continue
            merged[field] = copy.deepcopy(value)

    for field in SET_FIELDS:
        if field in local_version or field in server_version:
            merged[field] = _unique(
                list(server_version.get(field) or [])
                + list(local_version.get(field) or [])
            )

    for field in MAP_FIELDS:
        if field in local_version or field in server_version:
            merged[field] = {
                **(server_version.get(field) or {}),
                **(local_version.get(field) or {}),
            }

    return merged


class ConflictDetector:
    """
    Compares a client's local contact data against the stored copy.

    Usage:
        detector = ConflictDetector(contact_store)
        conflict = detector.detect_conflicts(user_id, contact_id, local_data)
        if conflict:
            entry.mark_conflict(conflict)
    """

    def __init__(self, contacts: ContactStore):
        """
        Initialize the detector.

        Args:
            contacts: Store holding the server versions
        """
        self.contacts = contacts

    def detect_conflicts(
        self,
        user_id: str,
        contact_id: str,
        local_data: Union[ContactPatch, dict[str, Any]],
    ) -> Optional[ConflictData]:
        """
        Detect divergence between local data and the stored contact.

        Args:
            user_id: Owning user
            contact_id: Contact to compare against
            local_data: Client contact data (ContactPatch or camelCase dict)

        Returns:
            ConflictData with both versions and the divergent fields, or
            None if the contact does not exist or nothing diverges
        """
        if isinstance(local_data, ContactPatch):
            local_data = local_data.to_dict()

        server_contact = self.contacts.find_one(user_id, contact_id)
        if server_contact is None:
            logger.debug(
                f"No server copy of contact {contact_id} for user {user_id}; "
                "no conflict"
            )
            return None

        server_data = server_contact.to_dict()
        conflict_fields = find_conflicting_fields(local_data, server_data)
        if not conflict_fields:
            return None

        logger.debug(
            f"Conflict on contact {contact_id}: {', '.join(conflict_fields)}"
        )
        return ConflictData(
            local_version=dict(local_data),
            server_version=server_data,
            conflict_fields=conflict_fields,
        )


class ConflictResolver:
    """
    Resolves parked conflicts and commits the outcome.

    Usage:
        resolver = ConflictResolver(contact_store, sync_log_store)
        contact = resolver.resolve_conflict(entry, "merge")

    Attributes:
        verify_server_version: If True, refuse to resolve when the stored
            contact changed after the conflict was recorded
    """

    def __init__(
        self,
        contacts: ContactStore,
        sync_log: SyncLogStore,
        verify_server_version: bool = False,
    ):
        """
        Initialize the conflict resolver.

        Args:
            contacts: Store the resolved contact is written to
            sync_log: Store the completed entry is saved to
            verify_server_version: Compare updatedAt before writing
        """
        self.contacts = contacts
        self.sync_log = sync_log
        self.verify_server_version = verify_server_version

    def resolve_conflict(
        self,
        entry: SyncLogEntry,
        resolution: Union[ResolutionStrategy, str],
    ) -> Contact:
        """
        Resolve a conflicted sync log entry.

        Args:
            entry: Entry in CONFLICT status carrying conflict data
            resolution: local, server or merge

        Returns:
            The updated contact

        Raises:
            InvalidStateError: If the entry has no conflict to resolve
            InvalidArgumentError: If the resolution strategy is unknown
            StaleConflictError: If verification is on and the server copy
                changed since detection
            NotFoundError: If the target contact no longer exists
        """
        if entry.conflict_data is None or entry.status != SyncStatus.CONFLICT:
            raise InvalidStateError("No conflict data found")

        strategy = ResolutionStrategy.parse(resolution)
        local_version = entry.conflict_data.local_version
        server_version = entry.conflict_data.server_version

        if strategy == ResolutionStrategy.LOCAL:
            resolved = local_version
        elif strategy == ResolutionStrategy.SERVER:
            resolved = server_version
        else:
            resolved = merge_versions(local_version, server_version)

        if self.verify_server_version:
            self._check_server_version(entry, server_version)

        updated = self.contacts.update_one(entry.user_id, entry.entity_id, resolved)
        if updated is None:
            raise NotFoundError("Contact not found")

        entry.mark_resolved(strategy.value)
        self.sync_log.save(entry)

        logger.info(
            f"Resolved conflict on contact {entry.entity_id} "
            f"(sync log {entry.id}) with '{strategy.value}'"
        )
        return updated

    def _check_server_version(
        self, entry: SyncLogEntry, server_version: dict[str, Any]
    ) -> None:
        current = self.contacts.find_one(entry.user_id, entry.entity_id)
        if current is None:
            raise NotFoundError("Contact not found")

        recorded = parse_timestamp(server_version.get("updatedAt"))
        if recorded != current.updated_at:
            raise StaleConflictError(
                f"Contact {entry.entity_id} changed since the conflict was "
                f"recorded ({recorded} != {current.updated_at})"
            )

    def __repr__(self) -> str:
        """Return a readable string representation."""
        return f"ConflictResolver(verify_server_version={self.verify_server_version})"
