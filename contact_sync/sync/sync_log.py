"""
Sync log model and state machine.

Every sync operation attempt is recorded as a SyncLogEntry. Entries move
through an explicit state machine and are never deleted by the core:

    PENDING  -> COMPLETED | FAILED | CONFLICT | PENDING (retry)
    CONFLICT -> COMPLETED (explicit resolution only)
    COMPLETED, FAILED: terminal

Transition timestamps (completed_at, failed_at, last_retry_at) are set by
the transition methods themselves, never by the storage layer.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from contact_sync.sync.errors import InvalidOperationError, InvalidStateError
from contact_sync.utils.timestamps import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

# Processing attempts allowed before an entry is forced to FAILED
MAX_RETRIES = 3

# Entity type recorded for contact operations
CONTACT_ENTITY_TYPE = "Contact"


class SyncOperation(str, Enum):
    """Change operations a client can submit."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @classmethod
    def parse(cls, value: Any) -> SyncOperation:
        """
        Parse an operation tag.

        Tags are matched case-insensitively.

        Raises:
            InvalidOperationError: If the tag is not a known operation
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise InvalidOperationError(value)


class SyncStatus(str, Enum):
    """Lifecycle states of a sync log entry."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CONFLICT = "CONFLICT"


_ALLOWED_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.PENDING: frozenset(
        {
            SyncStatus.PENDING,
            SyncStatus.COMPLETED,
            SyncStatus.FAILED,
            SyncStatus.CONFLICT,
        }
    ),
    SyncStatus.CONFLICT: frozenset({SyncStatus.COMPLETED}),
    SyncStatus.COMPLETED: frozenset(),
    SyncStatus.FAILED: frozenset(),
}


def new_id() -> str:
    """Generate a fresh entity or entry identifier."""
    return uuid.uuid4().hex


@dataclass
class ConflictData:
    """
    Both sides of a detected conflict.

    Attributes:
        local_version: The client's submitted contact data
        server_version: The full stored contact at detection time
        conflict_fields: Divergent field names, in local_version key order
    """

    local_version: dict[str, Any]
    server_version: dict[str, Any]
    conflict_fields: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConflictData:
        """Create from the stored camelCase form."""
        return cls(
            local_version=dict(data.get("localVersion") or {}),
            server_version=dict(data.get("serverVersion") or {}),
            conflict_fields=list(data.get("conflictFields") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored camelCase form."""
        return {
            "localVersion": self.local_version,
            "serverVersion": self.server_version,
            "conflictFields": list(self.conflict_fields),
        }


@dataclass
class SyncLogEntry:
    """
    Audit and state record for one sync operation.

    Attributes:
        user_id: Owning user
        operation: CREATE, UPDATE or DELETE
        entity_id: Target contact id (assigned at creation for CREATE)
        entity_type: Kind of entity; "Contact" for this core
        status: Current state machine status
        id: Entry identifier
        timestamp: When the change was accepted for processing
        payload: Client-submitted contact data for this change
        conflict_data: Both versions; present exactly while in CONFLICT
        retry_count: Failed processing attempts so far
        error: Last error message
        synced_at: Set on terminal success
        completed_at: Set when the entry reaches COMPLETED
        failed_at: Set when the entry reaches FAILED
        last_retry_at: Set on every retry
        resolution: Strategy used to resolve a conflict
    """

    user_id: str
    operation: SyncOperation
    entity_id: str
    entity_type: str = CONTACT_ENTITY_TYPE
    status: SyncStatus = SyncStatus.PENDING
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)
    payload: Optional[dict[str, Any]] = None
    conflict_data: Optional[ConflictData] = None
    retry_count: int = 0
    error: Optional[str] = None
    synced_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    last_retry_at: Optional[datetime] = None
    resolution: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        """Check whether no further transitions are possible."""
        return not _ALLOWED_TRANSITIONS[self.status]

    def retries_exhausted(self, max_retries: int = MAX_RETRIES) -> bool:
        """Check whether the entry must fail before another attempt."""
        return self.retry_count >= max_retries

    def _transition(self, status: SyncStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Sync log {self.id} cannot move from {self.status.value} "
                f"to {status.value}"
            )
        logger.debug(
            f"Sync log {self.id} ({self.operation.value} {self.entity_id}): "
            f"{self.status.value} -> {status.value}"
        )
        self.status = status

    def mark_completed(self, now: Optional[datetime] = None) -> None:
        """Record terminal success."""
        now = now or utc_now()
        self._transition(SyncStatus.COMPLETED)
        self.synced_at = now
        self.completed_at = now
        self.error = None

    def mark_failed(self, error: Optional[str] = None) -> None:
        """Record terminal failure."""
        self._transition(SyncStatus.FAILED)
        self.failed_at = utc_now()
        if error is not None:
            self.error = error

    def mark_conflict(self, conflict: ConflictData) -> None:
        """Park the entry until a conflict resolution is requested."""
        if conflict is None:
            raise InvalidStateError("A CONFLICT entry requires conflict data")
        self._transition(SyncStatus.CONFLICT)
        self.conflict_data = conflict

    def record_retry(self, error: str) -> None:
        """Count a failed attempt; the entry stays PENDING."""
        self._transition(SyncStatus.PENDING)
        self.retry_count += 1
        self.error = error
        self.last_retry_at = utc_now()

    def mark_resolved(self, resolution: str, now: Optional[datetime] = None) -> None:
        """Complete a CONFLICT entry and drop its conflict data."""
        if self.status != SyncStatus.CONFLICT or self.conflict_data is None:
            raise InvalidStateError(f"Sync log {self.id} has no conflict to resolve")
        self.mark_completed(now)
        self.resolution = resolution
        self.conflict_data = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncLogEntry:
        """Create from the stored camelCase form."""
        conflict = data.get("conflictData")
        return cls(
            id=data["id"],
            user_id=data["userId"],
            operation=SyncOperation(data["operation"]),
            entity_id=data["entityId"],
            entity_type=data.get("entityType", CONTACT_ENTITY_TYPE),
            status=SyncStatus(data.get("status", SyncStatus.PENDING.value)),
            timestamp=parse_timestamp(data.get("timestamp")) or utc_now(),
            payload=data.get("payload"),
            conflict_data=ConflictData.from_dict(conflict) if conflict else None,
            retry_count=int(data.get("retryCount", 0)),
            error=data.get("error"),
            synced_at=parse_timestamp(data.get("syncedAt")),
            completed_at=parse_timestamp(data.get("completedAt")),
            failed_at=parse_timestamp(data.get("failedAt")),
            last_retry_at=parse_timestamp(data.get("lastRetryAt")),
            resolution=data.get("resolution"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to camelCase form with ISO-8601 timestamps."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "operation": self.operation.value,
            "entityId": self.entity_id,
            "entityType": self.entity_type,
            "status": self.status.value,
            "timestamp": format_timestamp(self.timestamp),
            "payload": self.payload,
            "conflictData": self.conflict_data.to_dict()
            if self.conflict_data
            else None,
            "retryCount": self.retry_count,
            "error": self.error,
            "syncedAt": format_timestamp(self.synced_at),
            "completedAt": format_timestamp(self.completed_at),
            "failedAt": format_timestamp(self.failed_at),
            "lastRetryAt": format_timestamp(self.last_retry_at),
            "resolution": self.resolution,
        }
