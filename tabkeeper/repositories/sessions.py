"""Session store - durable, quota-aware storage of snapshots.

All snapshots live as one list under the 'sessions' key. Every mutation is a
read-modify-write of that list followed by a single replacing write, so a
failure anywhere leaves the previously stored list untouched.

Read-modify-write cycles are serialized with an asyncio.Lock; entries that no
longer validate are preserved verbatim on writes and skipped on reads.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import pydantic

from tabkeeper.config import settings
from tabkeeper.exceptions import QuotaExceededError, SessionNotFoundError
from tabkeeper.schemas.operations import StorageUsage
from tabkeeper.schemas.snapshot import Snapshot
from tabkeeper.storage.protocol import KeyValueBackend
from tabkeeper.storage.sizing import estimate_bytes

__all__ = ['SESSIONS_KEY', 'SessionStore']

SESSIONS_KEY = 'sessions'

logger = logging.getLogger(__name__)

RawSession = dict[str, Any]


class SessionStore:
    """Durable store of named snapshots with a byte-quota budget."""

    def __init__(
        self,
        backend: KeyValueBackend,
        quota_bytes: int | None = None,
        warning_threshold: float | None = None,
    ) -> None:
        """
        Args:
            backend: Backing medium
            quota_bytes: Total byte budget (default: STORAGE_QUOTA_BYTES)
            warning_threshold: Fraction of quota above which writes log a warning
        """
        self.backend = backend
        self._quota = quota_bytes if quota_bytes is not None else settings.STORAGE_QUOTA_BYTES
        self._warning_threshold = (
            warning_threshold if warning_threshold is not None else settings.STORAGE_WARNING_THRESHOLD
        )
        self._lock = asyncio.Lock()

    @property
    def quota(self) -> int:
        return self._quota

    async def bytes_in_use(self) -> int:
        return await self.backend.get_bytes_in_use()

    async def usage(self) -> StorageUsage:
        bytes_in_use = await self.bytes_in_use()
        sessions = await self._read_raw()
        percent_used = bytes_in_use / self._quota
        return StorageUsage(
            bytes_in_use=bytes_in_use,
            quota_bytes=self._quota,
            available_bytes=max(0, self._quota - bytes_in_use),
            percent_used=percent_used,
            session_count=len(sessions),
            near_quota=percent_used > self._warning_threshold,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list(self) -> list[Snapshot]:
        """All valid snapshots, newest first."""
        snapshots = [s for s in (self._parse(raw) for raw in await self._read_raw()) if s is not None]
        return sorted(snapshots, key=lambda s: s.timestamp, reverse=True)

    async def get(self, session_id: str) -> Snapshot:
        """
        Raises:
            SessionNotFoundError: If no valid snapshot has this id
        """
        for raw in await self._read_raw():
            if str(raw.get('id')) == session_id:
                snapshot = self._parse(raw)
                if snapshot is not None:
                    return snapshot
        raise SessionNotFoundError(session_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def put(self, snapshot: Snapshot) -> None:
        """
        Append a snapshot.

        Raises:
            QuotaExceededError: If the estimated size exceeds the remaining budget (nothing written)
        """
        document = snapshot.to_document()
        async with self._lock:
            await self._ensure_fits(estimate_bytes(document))
            sessions = await self._read_raw()
            sessions.append(document)
            await self._write(sessions)
        logger.info('Stored session %s (%s)', snapshot.id, snapshot.name)

    async def extend(self, snapshots: Sequence[Snapshot]) -> int:
        """
        Append many snapshots in one write (used by import).

        Raises:
            QuotaExceededError: If the merged list would not fit (nothing written)
        """
        documents = [s.to_document() for s in snapshots]
        async with self._lock:
            await self._ensure_fits(sum(estimate_bytes(d) for d in documents))
            sessions = await self._read_raw()
            sessions.extend(documents)
            await self._write(sessions)
            return len(sessions)

    async def remove(self, session_id: str) -> None:
        """
        Raises:
            SessionNotFoundError: If no entry has this id
        """
        removed = await self._mutate(lambda sessions: [s for s in sessions if str(s.get('id')) != session_id])
        if removed == 0:
            raise SessionNotFoundError(session_id)

    async def remove_many(self, session_ids: Iterable[str]) -> int:
        """Remove every listed id in a single write. Unknown ids are ignored."""
        doomed = set(session_ids)
        if not doomed:
            return 0
        return await self._mutate(lambda sessions: [s for s in sessions if str(s.get('id')) not in doomed])

    async def rename(self, session_id: str, name: str) -> Snapshot:
        """
        Raises:
            SessionNotFoundError: If no valid snapshot has this id
            ValueError: If name is blank
        """
        name = name.strip()
        if not name:
            raise ValueError('Session name must not be empty')

        async with self._lock:
            sessions = await self._read_raw()
            for index, raw in enumerate(sessions):
                if str(raw.get('id')) != session_id:
                    continue
                snapshot = self._parse(raw)
                if snapshot is None:
                    break
                renamed = snapshot.model_copy(update={'name': name})
                sessions[index] = renamed.to_document()
                await self._write(sessions)
                return renamed
        raise SessionNotFoundError(session_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _mutate(self, transform: Callable[[list[RawSession]], list[RawSession]]) -> int:
        """Apply a filtering transform under the lock; return how many entries it dropped."""
        async with self._lock:
            sessions = await self._read_raw()
            remaining = transform(sessions)
            removed = len(sessions) - len(remaining)
            if removed:
                await self._write(remaining)
            return removed

    async def _ensure_fits(self, required: int) -> None:
        bytes_in_use = await self.backend.get_bytes_in_use()
        available = self._quota - bytes_in_use
        if required > available:
            raise QuotaExceededError(required_bytes=required, available_bytes=max(0, available))
        if (bytes_in_use + required) / self._quota > self._warning_threshold:
            logger.warning('Storage is nearly full: %d%%', round((bytes_in_use + required) * 100 / self._quota))

    async def _read_raw(self) -> list[RawSession]:
        value = await self.backend.get(SESSIONS_KEY)
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, dict)]

    async def _write(self, sessions: list[RawSession]) -> None:
        await self.backend.set(SESSIONS_KEY, sessions)

    @staticmethod
    def _parse(raw: RawSession) -> Snapshot | None:
        try:
            return Snapshot.model_validate(raw)
        except pydantic.ValidationError as e:
            logger.warning('Skipping unreadable session %r: %s', raw.get('id'), e.error_count())
            return None
