"""
Undo service - bounded undo of grouping actions.

Before an action mutates groups, record_before() captures the arrangement with
live ids and pushes it onto the persisted undo log. undo_last() pops the newest
entry and replays it against the same environment:

1. For every recorded window that still exists, ungroup all grouped tabs
2. Let the environment settle
3. Recreate each recorded group, resolving member tabs by recorded id first and
   by the recorded tab's URL when the id is gone

The entry is removed from the log before replay starts, so it is consumed even
if the replay fails part-way.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from tabkeeper.environment.protocol import TabEnvironment
from tabkeeper.exceptions import PartialEntityFailure
from tabkeeper.protocols import LoggerProtocol, NullLogger
from tabkeeper.repositories.undo import UndoHistoryRepository
from tabkeeper.schemas.live import LiveTab
from tabkeeper.schemas.operations import UndoResult
from tabkeeper.schemas.snapshot import current_timestamp
from tabkeeper.schemas.undo import UndoEntry, UndoState, UndoWindowState
from tabkeeper.services.capture import CaptureService
from tabkeeper.services.convergence import ConvergencePolicy, wait_for_convergence
from tabkeeper.services.reconcile import IdCorrelation

__all__ = ['SETTLE_POLICY', 'UndoService']

logger = logging.getLogger(__name__)

# Brief settle after ungrouping: 100 ms total, done as soon as nothing is grouped
SETTLE_POLICY = ConvergencePolicy(interval=0.05, timeout=0.1, stability_threshold=2)


class UndoService:
    """Records pre-action arrangements and replays the newest on demand."""

    def __init__(
        self,
        environment: TabEnvironment,
        capture: CaptureService,
        history: UndoHistoryRepository,
        settle_policy: ConvergencePolicy = SETTLE_POLICY,
    ) -> None:
        self.environment = environment
        self.capture = capture
        self.repository = history
        self.settle_policy = settle_policy
        self.last_result: UndoResult | None = None

    async def record_before(self, action_type: str) -> UndoEntry:
        """
        Push the current arrangement onto the undo log.

        Raises:
            AdapterUnavailableError: If the environment cannot be read
            StorageUnavailableError: If the log cannot be written
        """
        entry = UndoEntry(
            action_type=action_type,
            timestamp=current_timestamp(),
            previous_state=await self.capture.capture_arrangement(),
        )
        evicted = await self.repository.push(entry)
        if evicted:
            logger.info('Undo log full, evicted %d oldest entries', evicted)
        return entry

    async def undo_last(self, logger: LoggerProtocol | None = None) -> bool:
        """
        Replay the newest undo entry.

        Returns:
            False if the log is empty (the environment is not touched), True otherwise.
            Details of the replay are left in `last_result`.
        """
        operator = logger or NullLogger()
        self.last_result = None

        entry = await self.repository.pop()
        if entry is None:
            await operator.info('Nothing to undo')
            return False

        await operator.info(f"Undoing '{entry.action_type}'")
        self.last_result = await self._replay(entry.action_type, entry.previous_state, operator)
        return True

    async def history(self) -> list[UndoEntry]:
        """Undo entries, newest first."""
        return list(reversed(await self.repository.list()))

    async def clear(self) -> None:
        await self.repository.clear()

    async def _replay(self, action_type: str, state: UndoState, operator: LoggerProtocol) -> UndoResult:
        replayed = missing = recreated = skipped = 0

        for window_state in state.windows:
            try:
                window = await self.environment.get_window(window_state.id)
            except PartialEntityFailure as e:
                logger.warning('Could not read window %s: %s', window_state.id, e)
                window = None
            if window is None:
                missing += 1
                skipped += len(window_state.groups)
                continue

            try:
                await self._ungroup_all(window.tabs)
                await self._settle(window_state)
                done, failed = await self._recreate_groups(window_state)
            except PartialEntityFailure as e:
                logger.warning('Undo of window %s aborted: %s', window_state.id, e)
                await operator.warning(f'Window {window_state.id}: undo incomplete ({e.reason})')
                skipped += len(window_state.groups)
                continue

            replayed += 1
            recreated += done
            skipped += failed

        await operator.info(f'Recreated {recreated} groups in {replayed} windows')
        return UndoResult(
            action_type=action_type,
            windows_replayed=replayed,
            windows_missing=missing,
            groups_recreated=recreated,
            groups_skipped=skipped,
        )

    async def _ungroup_all(self, tabs: Sequence[LiveTab]) -> None:
        for tab in tabs:
            if tab.group_id is None:
                continue
            try:
                await self.environment.ungroup_tabs([tab.id])
            except PartialEntityFailure as e:
                logger.warning('Could not ungroup tab %s: %s', tab.id, e)

    async def _settle(self, window_state: UndoWindowState) -> None:
        await wait_for_convergence(
            lambda: self.environment.query_tabs(window_state.id),
            is_complete=lambda tabs: all(tab.group_id is None for tab in tabs),
            measure=len,
            policy=self.settle_policy,
        )

    async def _recreate_groups(self, window_state: UndoWindowState) -> tuple[int, int]:
        """Returns (groups recreated, groups skipped)."""
        correlation: IdCorrelation | None = None
        recreated = skipped = 0

        for group in window_state.groups:
            tabs = await self.environment.query_tabs(window_state.id)
            if correlation is None:
                correlation = IdCorrelation(tabs, window_state.tabs)
            else:
                correlation.refresh(tabs)

            tab_ids = []
            for recorded_id in group.tab_ids:
                tab = correlation.claim(recorded_id)
                if tab is not None:
                    tab_ids.append(tab.id)
            if not tab_ids:
                logger.info("Group '%s' has no surviving tabs", group.title)
                skipped += 1
                continue

            try:
                group_id = await self.environment.group_tabs(tab_ids, window_state.id)
                await self.environment.update_group(
                    group_id,
                    title=group.title,
                    color=group.color,
                    collapsed=group.collapsed,
                )
            except PartialEntityFailure as e:
                logger.warning("Could not recreate group '%s': %s", group.title, e)
                skipped += 1
                continue
            recreated += 1

        return recreated, skipped
