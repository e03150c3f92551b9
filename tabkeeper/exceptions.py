"""
Shared exceptions for tabkeeper.

Domain-specific exceptions used across services, repositories and adapters.

Exception Hierarchy:
    TabKeeperError (base)
    ├── QuotaExceededError (write would exceed the storage byte budget)
    ├── StorageUnavailableError (backing medium cannot be read or written)
    ├── SessionResolutionError (lookup/validation failures)
    │   ├── SessionNotFoundError (id does not resolve)
    │   └── InvalidSessionError (snapshot fails validation)
    ├── LiveEnvironmentError (live environment failures)
    │   ├── PartialEntityFailure (one tab/group/window call failed)
    │   └── AdapterUnavailableError (environment unusable as a whole)
    ├── TransferError (import/export format problems)
    └── OperationFailedError (summarized failure of a user operation)
"""

from __future__ import annotations


class TabKeeperError(Exception):
    """Base exception for all tabkeeper errors."""


class QuotaExceededError(TabKeeperError):
    """Raised when a write would exceed the configured storage quota. Nothing is written."""

    def __init__(self, required_bytes: int, available_bytes: int) -> None:
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        super().__init__(
            f'Storage quota exceeded: need {required_bytes:,} bytes but only {available_bytes:,} available. '
            'Delete old sessions or export and clear.'
        )


class StorageUnavailableError(TabKeeperError):
    """Raised when the backing medium cannot be accessed."""


class SessionResolutionError(TabKeeperError):
    """Base exception for session lookup and validation failures."""


class SessionNotFoundError(SessionResolutionError):
    """Raised when a session id does not resolve to a stored snapshot."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f'Session not found: {session_id}')


class InvalidSessionError(SessionResolutionError):
    """Raised when a snapshot is empty or malformed."""


class LiveEnvironmentError(TabKeeperError):
    """Base exception for live-environment failures."""


class PartialEntityFailure(LiveEnvironmentError):
    """A single tab, group or window operation failed.

    Engines log and isolate these; they never abort the enclosing operation.
    """

    def __init__(self, operation: str, entity: object, reason: str) -> None:
        self.operation = operation
        self.entity = entity
        self.reason = reason
        super().__init__(f'{operation} failed for {entity!r}: {reason}')


class AdapterUnavailableError(LiveEnvironmentError):
    """The environment cannot be used at all (e.g. missing permissions). Not retried."""


class TransferError(TabKeeperError):
    """Raised when an export/import file is too large, unreadable or malformed."""


class OperationFailedError(TabKeeperError):
    """Single summarized failure surfaced for a user-initiated operation."""
