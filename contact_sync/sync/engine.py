"""
Sync engine for offline contact synchronization.

Applies client-submitted batches of CREATE/UPDATE/DELETE changes to the
contact store, records every attempt in the sync log, advances queued
PENDING entries in a background sweep, and exposes conflict resolution,
sync status and the server-side change feed.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Union

if TYPE_CHECKING:
    from contact_sync.config.settings import SyncSettings

from contact_sync.storage.contact_store import ContactStore
from contact_sync.storage.sync_log_store import SyncLogStore
from contact_sync.sync.conflict import (
    ConflictDetector,
    ConflictResolver,
    ResolutionStrategy,
)
from contact_sync.sync.contact import Contact, ContactPatch
from contact_sync.sync.errors import InvalidArgumentError, NotFoundError, SyncError
from contact_sync.sync.sync_log import (
    MAX_RETRIES,
    SyncLogEntry,
    SyncOperation,
    SyncStatus,
    new_id,
)
from contact_sync.utils.logging import user_context
from contact_sync.utils.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

# Errors the sweep converts into a retry instead of propagating
RETRYABLE_ERRORS = (SyncError, sqlite3.Error)


@dataclass
class SyncChange:
    """
    One change submitted by a client.

    The operation is kept as submitted; it is parsed when the change is
    processed so an unknown tag becomes a per-change failure.

    Attributes:
        operation: CREATE, UPDATE or DELETE
        contact: camelCase contact data (required for CREATE)
        contact_id: Target contact (required for UPDATE and DELETE)
    """

    operation: Any
    contact: Optional[dict[str, Any]] = None
    contact_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "SyncChange":
        """
        Create from the wire form {operation, contact|data, contactId}.

        Raises:
            InvalidArgumentError: If data is not a dictionary
        """
        if not isinstance(data, dict):
            raise InvalidArgumentError(
                f"Change must be an object, got {type(data).__name__}"
            )
        contact = data.get("contact")
        if contact is None:
            contact = data.get("data")
        contact_id = data.get("contactId")
        return cls(
            operation=data.get("operation"),
            contact=contact,
            contact_id=str(contact_id) if contact_id is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire form."""
        operation = self.operation
        if isinstance(operation, SyncOperation):
            operation = operation.value
        result: dict[str, Any] = {"operation": operation}
        if self.contact_id is not None:
            result["contactId"] = self.contact_id
        if self.contact is not None:
            result["contact"] = self.contact
        return result


@dataclass
class ChangeResult:
    """
    Outcome of one change in a batch, tracked by its index.

    Attributes:
        index: Position of the change in the submitted batch
        operation: Operation tag as submitted
        success: True if the change was applied
        status: "completed", "failed" or "conflict"
        contact_id: Affected contact, when known
        sync_log_id: Sync log entry written for the change, if any
        error: Failure message
        conflict_fields: Divergent fields when status is "conflict"
    """

    index: int
    operation: str
    success: bool
    status: str
    contact_id: Optional[str] = None
    sync_log_id: Optional[str] = None
    error: Optional[str] = None
    conflict_fields: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to camelCase form."""
        result: dict[str, Any] = {
            "index": self.index,
            "operation": self.operation,
            "success": self.success,
            "status": self.status,
            "contactId": self.contact_id,
            "syncLogId": self.sync_log_id,
        }
        if self.error is not None:
            result["error"] = self.error
        if self.conflict_fields:
            result["conflicts"] = list(self.conflict_fields)
        return result


@dataclass
class SyncResult:
    """
    Result of a batch sync.

    Attributes:
        success: False if any change failed
        processed: Changes applied
        failed: Changes that failed
        conflicts: Changes parked in CONFLICT
        errors: Failure messages in encounter order
        results: One ChangeResult per submitted change, by index
    """

    success: bool = True
    processed: int = 0
    failed: int = 0
    conflicts: int = 0
    errors: list[str] = field(default_factory=list)
    results: list[ChangeResult] = field(default_factory=list)

    def add(self, change_result: ChangeResult) -> None:
        """Record the outcome of the next change."""
        self.results.append(change_result)
        if change_result.status == "completed":
            self.processed += 1
        elif change_result.status == "conflict":
            self.conflicts += 1
        else:
            self.failed += 1
            self.success = False
            if change_result.error:
                self.errors.append(change_result.error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the response form."""
        return {
            "success": self.success,
            "processed": self.processed,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "errors": list(self.errors),
            "results": [r.to_dict() for r in self.results],
        }

    def summary(self) -> str:
        """Generate a human-readable summary."""
        return (
            f"{self.processed} applied, {self.failed} failed, "
            f"{self.conflicts} in conflict"
        )


@dataclass
class SweepResult:
    """
    Result of one background sweep over a user's PENDING entries.

    Attributes:
        processed: Entries examined
        completed: Entries moved to COMPLETED
        failed: Entries moved to FAILED after exhausting retries
        conflicts: Entries moved to CONFLICT
        retried: Entries left PENDING with an incremented retry count
    """

    processed: int = 0
    completed: int = 0
    failed: int = 0
    conflicts: int = 0
    retried: int = 0

    def summary(self) -> str:
        """Generate a human-readable summary."""
        return (
            f"{self.processed} processed: {self.completed} completed, "
            f"{self.conflicts} in conflict, {self.retried} retried, "
            f"{self.failed} failed"
        )


@dataclass
class SyncStatusReport:
    """
    Pending and conflicted work for a user.

    Attributes:
        pending: PENDING entries, oldest first
        conflicts: CONFLICT entries awaiting resolution, oldest first
        counts: Number of entries per status
    """

    pending: list[SyncLogEntry] = field(default_factory=list)
    conflicts: list[SyncLogEntry] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def pending_changes(self) -> int:
        """Number of PENDING entries."""
        return len(self.pending)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the response form."""
        return {
            "pendingChanges": self.pending_changes,
            "items": [entry.to_dict() for entry in self.pending],
            "conflicts": [entry.to_dict() for entry in self.conflicts],
            "counts": dict(self.counts),
        }


class SyncEngine:
    """
    Orchestrates batch sync, background sweeps and conflict resolution.

    Usage:
        engine = SyncEngine(ContactStore(db), SyncLogStore(db))

        result = engine.sync_changes("user-1", [
            {"operation": "CREATE", "contact": {"firstName": "Jane", "lastName": "Doe"}},
            {"operation": "DELETE", "contactId": "abc123"},
        ])

        engine.process_pending_syncs("user-1")
        engine.resolve("user-1", sync_log_id, "merge")

    Attributes:
        contacts: The contact store
        sync_log: The sync log store
        max_retries: Failed attempts before a PENDING entry is failed
        detect_conflicts_on_batch: Run the conflict detector on batch UPDATEs
        detector: ConflictDetector bound to the contact store
        resolver: ConflictResolver bound to both stores
    """

    def __init__(
        self,
        contacts: ContactStore,
        sync_log: SyncLogStore,
        max_retries: int = MAX_RETRIES,
        detect_conflicts_on_batch: bool = True,
        verify_server_version: bool = False,
    ):
        """
        Initialize the sync engine.

        Args:
            contacts: Contact store
            sync_log: Sync log store
            max_retries: Failed attempts allowed per PENDING entry
            detect_conflicts_on_batch: Batch UPDATEs that diverge from the
                server copy are parked in CONFLICT; False applies them
                directly
            verify_server_version: If True, resolution refuses to overwrite
                a contact that changed after the conflict was recorded

        Raises:
            InvalidArgumentError: If max_retries is outside 1..MAX_RETRIES
        """
        if not 1 <= max_retries <= MAX_RETRIES:
            raise InvalidArgumentError(
                f"max_retries must be between 1 and {MAX_RETRIES}, got {max_retries}"
            )
        self.contacts = contacts
        self.sync_log = sync_log
        self.max_retries = max_retries
        self.detect_conflicts_on_batch = detect_conflicts_on_batch
        self.detector = ConflictDetector(contacts)
        self.resolver = ConflictResolver(
            contacts, sync_log, verify_server_version=verify_server_version
        )

    @classmethod
    def from_settings(
        cls,
        contacts: ContactStore,
        sync_log: SyncLogStore,
        settings: "SyncSettings",
    ) -> "SyncEngine":
        """Create an engine configured from SyncSettings."""
        return cls(
            contacts,
            sync_log,
            max_retries=settings.max_retries,
            detect_conflicts_on_batch=settings.detect_conflicts_on_batch,
            verify_server_version=settings.verify_server_version,
        )

    # =========================================================================
    # Batch Path
    # =========================================================================

    def sync_changes(
        self,
        user_id: str,
        changes: list[Union[SyncChange, dict[str, Any]]],
    ) -> SyncResult:
        """
        Apply a batch of client changes in order.

        Each change is processed independently; a failure is recorded in
        the result and the sync log, and processing moves on.

        Args:
            user_id: User submitting the batch
            changes: SyncChange objects or wire dictionaries

        Returns:
            SyncResult with one ChangeResult per change
        """
        result = SyncResult()

        with user_context(user_id):
            logger.info(f"Syncing {len(changes)} change(s) for user {user_id}")
            for index, raw_change in enumerate(changes):
                result.add(self._apply_change(user_id, index, raw_change))
            logger.info(f"Batch sync for user {user_id}: {result.summary()}")

        return result

    def _apply_change(
        self, user_id: str, index: int, raw_change: Union[SyncChange, dict[str, Any]]
    ) -> ChangeResult:
        """Apply one batch change and describe its outcome."""
        try:
            change = (
                raw_change
                if isinstance(raw_change, SyncChange)
                else SyncChange.from_dict(raw_change)
            )
        except SyncError as e:
            logger.warning(f"Change #{index} rejected: {e}")
            return ChangeResult(
                index=index, operation="", success=False, status="failed", error=str(e)
            )

        label = (
            change.operation.value
            if isinstance(change.operation, SyncOperation)
            else str(change.operation)
        )

        try:
            operation = SyncOperation.parse(change.operation)
        except SyncError as e:
            # Unknown tags cannot be recorded as a SyncOperation
            logger.warning(f"Change #{index} rejected: {e}")
            return ChangeResult(
                index=index,
                operation=label,
                success=False,
                status="failed",
                contact_id=change.contact_id,
                error=str(e),
            )

        try:
            if operation == SyncOperation.CREATE:
                entry = self._batch_create(user_id, change)
            elif operation == SyncOperation.UPDATE:
                entry = self._batch_update(user_id, change)
            else:
                entry = self._batch_delete(user_id, change)
        except RETRYABLE_ERRORS as e:
            logger.warning(f"Change #{index} ({operation.value}) failed: {e}")
            failed_entry = self._record_failure(user_id, operation, change, str(e))
            return ChangeResult(
                index=index,
                operation=operation.value,
                success=False,
                status="failed",
                contact_id=change.contact_id,
                sync_log_id=failed_entry.id,
                error=str(e),
            )

        conflict = entry.conflict_data
        if entry.status == SyncStatus.CONFLICT and conflict is not None:
            return ChangeResult(
                index=index,
                operation=operation.value,
                success=False,
                status="conflict",
                contact_id=entry.entity_id,
                sync_log_id=entry.id,
                conflict_fields=list(conflict.conflict_fields),
            )

        return ChangeResult(
            index=index,
            operation=operation.value,
            success=True,
            status="completed",
            contact_id=entry.entity_id,
            sync_log_id=entry.id,
        )

    def _batch_create(self, user_id: str, change: SyncChange) -> SyncLogEntry:
        if change.contact is None:
            raise InvalidArgumentError("Contact data is required for CREATE")

        patch = ContactPatch.from_dict(change.contact)
        contact = self.contacts.create(user_id, patch)

        entry = SyncLogEntry(
            user_id=user_id,
            operation=SyncOperation.CREATE,
            entity_id=contact.id,
            payload=patch.to_dict(),
        )
        entry.mark_completed()
        return self.sync_log.create(entry)

    def _batch_update(self, user_id: str, change: SyncChange) -> SyncLogEntry:
        if not change.contact_id:
            raise InvalidArgumentError("Contact ID is required for UPDATE")

        patch = ContactPatch.from_dict(change.contact or {})
        entry = SyncLogEntry(
            user_id=user_id,
            operation=SyncOperation.UPDATE,
            entity_id=change.contact_id,
            payload=patch.to_dict(),
        )

        if self.detect_conflicts_on_batch:
            conflict = self.detector.detect_conflicts(
                user_id, change.contact_id, patch
            )
            if conflict is not None:
                entry.mark_conflict(conflict)
                logger.info(
                    f"Contact {change.contact_id} is in conflict "
                    f"({', '.join(conflict.conflict_fields)})"
                )
                return self.sync_log.create(entry)

        if self.contacts.update_one(user_id, change.contact_id, patch) is None:
            raise NotFoundError("Contact not found")

        entry.mark_completed()
        return self.sync_log.create(entry)

    def _batch_delete(self, user_id: str, change: SyncChange) -> SyncLogEntry:
        if not change.contact_id:
            raise InvalidArgumentError("Contact ID is required for DELETE")

        if self.contacts.delete_one(user_id, change.contact_id) is None:
            raise NotFoundError("Contact not found")

        entry = SyncLogEntry(
            user_id=user_id,
            operation=SyncOperation.DELETE,
            entity_id=change.contact_id,
        )
        entry.mark_completed()
        return self.sync_log.create(entry)

    def _record_failure(
        self,
        user_id: str,
        operation: SyncOperation,
        change: SyncChange,
        error: str,
    ) -> SyncLogEntry:
        entry = SyncLogEntry(
            user_id=user_id,
            operation=operation,
            entity_id=change.contact_id or new_id(),
            payload=change.contact if isinstance(change.contact, dict) else None,
        )
        entry.mark_failed(error)
        return self.sync_log.create(entry)

    # =========================================================================
    # Queue and Background Sweep
    # =========================================================================

    def queue_changes(
        self,
        user_id: str,
        changes: list[Union[SyncChange, dict[str, Any]]],
    ) -> list[SyncLogEntry]:
        """
        Record changes as PENDING entries for the background sweep.

        The whole list is validated before anything is written.

        Args:
            user_id: User submitting the changes
            changes: SyncChange objects or wire dictionaries

        Returns:
            The PENDING entries, in submitted order

        Raises:
            InvalidOperationError: If a change has an unknown operation
            InvalidArgumentError: If a change lacks its id or payload, or
                the payload is invalid
        """
        entries = []
        for index, raw_change in enumerate(changes):
            change = (
                raw_change
                if isinstance(raw_change, SyncChange)
                else SyncChange.from_dict(raw_change)
            )
            operation = SyncOperation.parse(change.operation)

            payload = None
            if operation == SyncOperation.CREATE:
                if change.contact is None:
                    raise InvalidArgumentError(
                        f"Change #{index}: Contact data is required for CREATE"
                    )
                patch = ContactPatch.from_dict(change.contact)
                patch.validate_for_create()
                payload = patch.to_dict()
                entity_id = new_id()
            else:
                if not change.contact_id:
                    raise InvalidArgumentError(
                        f"Change #{index}: Contact ID is required for "
                        f"{operation.value}"
                    )
                entity_id = change.contact_id
                if operation == SyncOperation.UPDATE:
                    payload = ContactPatch.from_dict(change.contact or {}).to_dict()

            entries.append(
                SyncLogEntry(
                    user_id=user_id,
                    operation=operation,
                    entity_id=entity_id,
                    payload=payload,
                )
            )

        for entry in entries:
            self.sync_log.create(entry)

        logger.info(f"Queued {len(entries)} change(s) for user {user_id}")
        return entries

    def process_pending_syncs(self, user_id: str) -> SweepResult:
        """
        Advance a user's PENDING entries, oldest first.

        Entries that exhausted their retries are failed without another
        attempt. Store errors leave the entry PENDING with its retry count
        incremented. Each entry is saved right after its transition.

        Args:
            user_id: User whose entries are swept

        Returns:
            SweepResult with per-outcome counts
        """
        with user_context(user_id):
            result = self._sweep_user(user_id)
        if result.processed:
            logger.info(f"Sweep for user {user_id}: {result.summary()}")
        return result

    def _sweep_user(self, user_id: str) -> SweepResult:
        result = SweepResult()

        for entry in self.sync_log.find_pending(user_id):
            result.processed += 1

            if entry.retries_exhausted(self.max_retries):
                entry.mark_failed(entry.error or "Maximum retries exceeded")
                self.sync_log.save(entry)
                result.failed += 1
                logger.warning(
                    f"Sync log {entry.id} failed after {entry.retry_count} retries"
                )
                continue

            try:
                self._process_entry(entry)
            except RETRYABLE_ERRORS as e:
                entry.record_retry(str(e))
                result.retried += 1
                logger.warning(
                    f"Sync log {entry.id} ({entry.operation.value} "
                    f"{entry.entity_id}) attempt {entry.retry_count} failed: {e}"
                )
            else:
                if entry.status == SyncStatus.CONFLICT:
                    result.conflicts += 1
                else:
                    result.completed += 1

            self.sync_log.save(entry)

        return result

    def _process_entry(self, entry: SyncLogEntry) -> None:
        """Replay one PENDING entry against the contact store."""
        if entry.operation == SyncOperation.CREATE:
            if not entry.payload:
                raise InvalidArgumentError("Contact data is required for CREATE")
            # A previous attempt may have written the contact before failing
            if self.contacts.find_one(entry.user_id, entry.entity_id) is None:
                self.contacts.create(
                    entry.user_id, entry.payload, contact_id=entry.entity_id
                )
            entry.mark_completed()

        elif entry.operation == SyncOperation.UPDATE:
            payload = entry.payload or {}
            conflict = self.detector.detect_conflicts(
                entry.user_id, entry.entity_id, payload
            )
            if conflict is not None:
                entry.mark_conflict(conflict)
                return
            if self.contacts.update_one(entry.user_id, entry.entity_id, payload) is None:
                raise NotFoundError("Contact not found")
            entry.mark_completed()

        else:
            if self.contacts.delete_one(entry.user_id, entry.entity_id) is None:
                raise NotFoundError("Contact not found")
            entry.mark_completed()

    def list_users_with_pending(self) -> list[str]:
        """List the users that have PENDING entries, sorted by id."""
        return self.sync_log.users_with_pending()

    def sweep_all(self) -> dict[str, SweepResult]:
        """
        Run a sweep for every user with PENDING entries.

        Returns:
            SweepResult per user id
        """
        return {
            user_id: self.process_pending_syncs(user_id)
            for user_id in self.list_users_with_pending()
        }

    # =========================================================================
    # Status, Resolution and Change Feed
    # =========================================================================

    def get_sync_status(self, user_id: str) -> SyncStatusReport:
        """Report a user's pending and conflicted entries."""
        return SyncStatusReport(
            pending=self.sync_log.find_pending(user_id),
            conflicts=self.sync_log.find(user_id, status=SyncStatus.CONFLICT),
            counts=self.sync_log.count_by_status(user_id),
        )

    def resolve(
        self,
        user_id: str,
        sync_log_id: str,
        resolution: Union[ResolutionStrategy, str],
    ) -> Contact:
        """
        Resolve a user's conflicted entry by id.

        Raises:
            NotFoundError: If the entry does not exist for this user
            InvalidStateError: If the entry is not in conflict
            InvalidArgumentError: If the resolution strategy is unknown
        """
        entry = self.sync_log.get(user_id, sync_log_id)
        if entry is None:
            raise NotFoundError(f"Sync log {sync_log_id} not found")
        return self.resolver.resolve_conflict(entry, resolution)

    def get_changes(self, user_id: str, since: Union[datetime, str]) -> list[SyncChange]:
        """
        List server-side changes a client has not seen yet.

        Contacts created after `since` are reported as CREATE, contacts
        modified after it as UPDATE, and completed deletions after it as
        DELETE.

        Args:
            user_id: User pulling changes
            since: Time of the client's last sync (datetime or ISO-8601)

        Returns:
            Changes in chronological order
        """
        try:
            since_time = parse_timestamp(since)
        except ValueError as e:
            raise InvalidArgumentError(f"Invalid timestamp '{since}': {e}") from e
        if since_time is None:
            raise InvalidArgumentError("A last sync time is required")

        timed: list[tuple[datetime, SyncChange]] = []

        for contact in self.contacts.find(user_id, updated_since=since_time):
            created = contact.created_at is not None and contact.created_at > since_time
            operation = SyncOperation.CREATE if created else SyncOperation.UPDATE
            changed_at = contact.updated_at or since_time
            timed.append(
                (
                    changed_at,
                    SyncChange(
                        operation=operation,
                        contact=contact.to_dict(),
                        contact_id=contact.id,
                    ),
                )
            )

        # Queued deletes may complete long after they were accepted
        for entry in self.sync_log.find(
            user_id, status=SyncStatus.COMPLETED, operation=SyncOperation.DELETE
        ):
            deleted_at = entry.completed_at or entry.timestamp
            if deleted_at <= since_time:
                continue
            timed.append(
                (
                    deleted_at,
                    SyncChange(operation=SyncOperation.DELETE, contact_id=entry.entity_id),
                )
            )

        timed.sort(key=lambda pair: pair[0])
        return [change for _, change in timed]

    def __repr__(self) -> str:
        """Return a readable string representation."""
        return (
            f"SyncEngine(database={self.contacts.database.db_path!r}, "
            f"max_retries={self.max_retries})"
        )
