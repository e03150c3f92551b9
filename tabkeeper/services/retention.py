"""
Retention policy for system-generated snapshots.

Auto-save and recovery snapshots are identified by name prefix and trimmed to a
count or an age. Both operations are idempotent and tolerate an empty store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from tabkeeper.repositories.sessions import SessionStore

__all__ = ['RetentionService']

logger = logging.getLogger(__name__)


class RetentionService:
    def __init__(self, store: SessionStore) -> None:
        self.store = store

    async def prune(self, name_prefix: str, max_count: int) -> int:
        """
        Keep the newest `max_count` snapshots whose name starts with `name_prefix`.

        Returns:
            Number of snapshots removed

        Raises:
            ValueError: If max_count is negative
        """
        if max_count < 0:
            raise ValueError('max_count must not be negative')

        matching = [s for s in await self.store.list() if s.name.startswith(name_prefix)]
        doomed = [s.id for s in matching[max_count:]]  # list() is newest first
        removed = await self.store.remove_many(doomed)
        if removed:
            logger.info("Pruned %d '%s' sessions (keeping %d)", removed, name_prefix, max_count)
        return removed

    async def prune_older_than(self, name_prefix: str, max_age: timedelta, now: datetime | None = None) -> int:
        """
        Remove snapshots whose name starts with `name_prefix` captured more than `max_age` ago.

        Returns:
            Number of snapshots removed
        """
        now = now or datetime.now().astimezone()
        cutoff_ms = int((now - max_age).timestamp() * 1000)
        doomed = [
            s.id for s in await self.store.list() if s.name.startswith(name_prefix) and s.timestamp < cutoff_ms
        ]
        removed = await self.store.remove_many(doomed)
        if removed:
            logger.info("Removed %d '%s' sessions older than %s", removed, name_prefix, max_age)
        return removed
