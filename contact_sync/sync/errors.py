"""
Error taxonomy for the sync core.

Batch processing converts these into per-change failures, the background
sweep converts them into retries, and conflict resolution raises them to
the caller.
"""


class SyncError(Exception):
    """Base exception for all sync core errors."""

    pass


class InvalidArgumentError(SyncError):
    """A required id or payload field is missing or malformed."""

    pass


class InvalidOperationError(SyncError):
    """A change carries an unrecognized operation tag."""

    def __init__(self, operation: object):
        self.operation = operation
        super().__init__(f"Invalid operation: {operation}")


class NotFoundError(SyncError):
    """The target contact or sync log entry does not exist for the user."""

    pass


class InvalidStateError(SyncError):
    """A sync log entry is not in a state that allows the requested action."""

    pass


class StaleConflictError(InvalidStateError):
    """The server copy changed after the conflict was recorded."""

    pass
