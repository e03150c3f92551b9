"""
Session save service - capture the live arrangement and store it.

The single save contract shared by manual saves, auto-save and crash recovery.
"""

from __future__ import annotations

from tabkeeper.exceptions import InvalidSessionError
from tabkeeper.protocols import LoggerProtocol, NullLogger
from tabkeeper.repositories.sessions import SessionStore
from tabkeeper.schemas.snapshot import Snapshot
from tabkeeper.services.capture import CaptureService

__all__ = ['SessionSaveService']


class SessionSaveService:
    """Captures a named snapshot and persists it."""

    def __init__(self, capture: CaptureService, store: SessionStore) -> None:
        self.capture = capture
        self.store = store

    async def save(self, name: str, logger: LoggerProtocol | None = None) -> Snapshot:
        """
        Capture and store a snapshot.

        Args:
            name: Snapshot name (blank names are rejected)
            logger: Optional progress logger

        Returns:
            The stored snapshot

        Raises:
            ValueError: If name is blank
            InvalidSessionError: If there is nothing restorable to save
            QuotaExceededError: If the snapshot does not fit (nothing written)
            AdapterUnavailableError: If the environment cannot be read
        """
        logger = logger or NullLogger()
        name = name.strip()
        if not name:
            raise ValueError('Session name must not be empty')

        snapshot = await self.capture.capture(name)
        await logger.info(
            f'Captured {snapshot.tab_count} tabs in {len(snapshot.windows)} windows, {len(snapshot.groups)} groups'
        )
        if not snapshot.is_restorable():
            raise InvalidSessionError('Nothing to save: no restorable tabs are open')

        await self.store.put(snapshot)
        await logger.info(f'Saved session {snapshot.id}')
        return snapshot
