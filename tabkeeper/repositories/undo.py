"""Undo history repository - the bounded undo log under the 'undoHistory' key.

Entries are kept oldest-first; pushing past the limit evicts from the front and
popping takes from the back.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pydantic

from tabkeeper.config import settings
from tabkeeper.schemas.undo import UndoEntry
from tabkeeper.storage.protocol import KeyValueBackend

__all__ = ['UNDO_HISTORY_KEY', 'UndoHistoryRepository']

UNDO_HISTORY_KEY = 'undoHistory'

logger = logging.getLogger(__name__)


class UndoHistoryRepository:
    """Persisted, bounded LIFO log of undo entries."""

    def __init__(self, backend: KeyValueBackend, limit: int | None = None) -> None:
        self.backend = backend
        self.limit = limit if limit is not None else settings.UNDO_HISTORY_LIMIT
        if self.limit <= 0:
            raise ValueError('Undo history limit must be positive')
        self._lock = asyncio.Lock()

    async def push(self, entry: UndoEntry) -> int:
        """Append an entry, evicting the oldest beyond the limit. Returns how many were evicted."""
        async with self._lock:
            history = await self._read_raw()
            history.append(entry.model_dump(mode='json', by_alias=True))
            evicted = max(0, len(history) - self.limit)
            if evicted:
                history = history[evicted:]
            await self.backend.set(UNDO_HISTORY_KEY, history)
            return evicted

    async def pop(self) -> UndoEntry | None:
        """Remove and return the newest readable entry, or None if the log is empty.

        The shortened log is persisted before the entry is returned, so an entry
        is consumed at most once even if replaying it fails.
        """
        async with self._lock:
            history = await self._read_raw()
            while history:
                raw = history.pop()
                await self.backend.set(UNDO_HISTORY_KEY, history)
                entry = self._parse(raw)
                if entry is not None:
                    return entry
            return None

    async def list(self) -> list[UndoEntry]:
        """Readable entries, oldest first."""
        return [e for e in (self._parse(raw) for raw in await self._read_raw()) if e is not None]

    async def clear(self) -> None:
        async with self._lock:
            await self.backend.set(UNDO_HISTORY_KEY, [])

    async def _read_raw(self) -> list[dict[str, Any]]:
        value = await self.backend.get(UNDO_HISTORY_KEY)
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, dict)]

    @staticmethod
    def _parse(raw: dict[str, Any]) -> UndoEntry | None:
        try:
            return UndoEntry.model_validate(raw)
        except pydantic.ValidationError as e:
            logger.warning('Discarding unreadable undo entry: %s', e.error_count())
            return None
