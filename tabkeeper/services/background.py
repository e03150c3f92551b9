"""
Background saves - auto-save on a timer and recovery snapshots on window close.

Both producers reuse SessionSaveService.save and then apply retention to their
own name prefix. Background work never propagates failures: they are logged and
the next tick tries again.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime

from tabkeeper.config import settings
from tabkeeper.environment.protocol import TabEnvironment
from tabkeeper.exceptions import InvalidSessionError, TabKeeperError
from tabkeeper.schemas.snapshot import AUTO_SAVE_PREFIX, RECOVERY_PREFIX, Snapshot
from tabkeeper.services.retention import RetentionService
from tabkeeper.services.save import SessionSaveService

__all__ = ['AutoSaveScheduler', 'BackgroundSaver', 'local_timestamp_label']

logger = logging.getLogger(__name__)


def local_timestamp_label(now: datetime | None = None) -> str:
    """Local date and time as shown in system snapshot names, e.g. '10/16/2026, 09:05:00 PM'."""
    return (now or datetime.now()).strftime('%m/%d/%Y, %I:%M:%S %p')


class BackgroundSaver:
    """Auto-save and crash-recovery producers."""

    def __init__(
        self,
        environment: TabEnvironment,
        save_service: SessionSaveService,
        retention: RetentionService,
        *,
        max_auto_save_sessions: int | None = None,
        max_recovery_sessions: int | None = None,
        crash_recovery_enabled: bool | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.environment = environment
        self.save_service = save_service
        self.retention = retention
        self.max_auto_save_sessions = (
            max_auto_save_sessions if max_auto_save_sessions is not None else settings.MAX_AUTO_SAVE_SESSIONS
        )
        self.max_recovery_sessions = (
            max_recovery_sessions if max_recovery_sessions is not None else settings.MAX_RECOVERY_SESSIONS
        )
        self.crash_recovery_enabled = (
            crash_recovery_enabled if crash_recovery_enabled is not None else settings.CRASH_RECOVERY_ENABLED
        )
        self.clock = clock

    async def auto_save(self) -> Snapshot | None:
        """Save an 'Auto-save (...)' snapshot and keep the newest few. Returns None if nothing was saved."""
        snapshot = await self._save(f'{AUTO_SAVE_PREFIX}{local_timestamp_label(self.clock())})')
        await self._prune(AUTO_SAVE_PREFIX, self.max_auto_save_sessions)
        return snapshot

    async def on_window_removed(self) -> Snapshot | None:
        """
        Save a 'Recovery (...)' snapshot after a window closes.

        Skipped when crash recovery is disabled or when no window is left
        (the whole environment is shutting down).
        """
        if not self.crash_recovery_enabled:
            return None

        try:
            windows = await self.environment.get_windows()
        except TabKeeperError as e:
            logger.error('Recovery save skipped, cannot read windows: %s', e)
            return None
        if not windows:
            logger.info('Last window closed, no recovery snapshot')
            return None

        snapshot = await self._save(f'{RECOVERY_PREFIX}{local_timestamp_label(self.clock())})')
        await self._prune(RECOVERY_PREFIX, self.max_recovery_sessions)
        return snapshot

    async def _save(self, name: str) -> Snapshot | None:
        try:
            return await self.save_service.save(name)
        except InvalidSessionError:
            logger.info('Nothing to save for %s', name)
        except TabKeeperError as e:
            logger.error('Background save failed: %s', e)
        return None

    async def _prune(self, prefix: str, max_count: int) -> None:
        try:
            await self.retention.prune(prefix, max_count)
        except TabKeeperError as e:
            logger.warning("Retention for '%s' failed: %s", prefix, e)


class AutoSaveScheduler:
    """Runs BackgroundSaver.auto_save periodically on an asyncio task."""

    def __init__(
        self,
        saver: BackgroundSaver,
        interval_seconds: float | None = None,
        enabled: bool | None = None,
    ) -> None:
        self.saver = saver
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.AUTO_SAVE_INTERVAL_MINUTES * 60
        )
        self.enabled = enabled if enabled is not None else settings.AUTO_SAVE_ENABLED
        self.ticks = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the timer (requires a running event loop). No-op when disabled or already running."""
        if not self.enabled:
            logger.info('Auto-save disabled')
            return
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info('Auto-save every %s seconds', self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def restart(self, interval_seconds: float | None = None, enabled: bool | None = None) -> None:
        """Apply changed settings: stop the current timer and start a new one."""
        await self.stop()
        if interval_seconds is not None:
            self.interval_seconds = interval_seconds
        if enabled is not None:
            self.enabled = enabled
        self.start()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.saver.auto_save()
            except Exception:
                # Keep the timer alive
                logger.exception('Auto-save tick failed')
            self.ticks += 1
