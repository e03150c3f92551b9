"""
Session restore service - rebuilds a stored snapshot in the live environment.

Every live entity created here gets a new id, so recorded structure is matched
back onto new tabs by URL (see services.reconcile). Tab creation completes
asynchronously; a convergence wait bounds how long we wait for new tabs to
appear before reconciling with whatever is present.

Per window:
1. Create the window with the first URL, the remaining tabs concurrently
2. Wait for the tab list to converge
3. Pin recorded pinned tabs, then re-query (pinning reorders)
4. Recreate groups from their tab_urls (pinned tabs excluded)
5. Activate the first recorded active tab that resolves

A failure inside one window is logged and recorded in its report; the other
windows still restore.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import UTC, datetime

import attrs

from tabkeeper.config import settings
from tabkeeper.environment.protocol import TabEnvironment
from tabkeeper.exceptions import PartialEntityFailure
from tabkeeper.protocols import LoggerProtocol, NullLogger
from tabkeeper.repositories.sessions import SessionStore
from tabkeeper.schemas.live import LiveTab
from tabkeeper.schemas.operations import RestoreResult, WindowRestoreReport
from tabkeeper.schemas.snapshot import GroupRecord, Snapshot, TabRecord, WindowRecord, validate_snapshot
from tabkeeper.services.convergence import ConvergencePolicy, wait_for_convergence
from tabkeeper.services.reconcile import UrlCorrelation
from tabkeeper.types import WindowId
from tabkeeper.urls import is_restorable_url

__all__ = ['GroupingOptions', 'SessionRestoreService', 'place_groups']

logger = logging.getLogger(__name__)

FALLBACK_GROUP_TITLE = 'Restored Group'
FALLBACK_GROUP_COLOR = 'grey'


@attrs.define(frozen=True)
class GroupingOptions:
    """Grouping preferences applied while recreating groups.

    Both default off so a restore reproduces the snapshot exactly.
    """

    skip_single_tab_groups: bool = False
    auto_collapse_groups: bool = False

    @classmethod
    def from_settings(cls) -> GroupingOptions:
        return cls(
            skip_single_tab_groups=settings.SKIP_SINGLE_TAB_GROUPS,
            auto_collapse_groups=settings.AUTO_COLLAPSE_GROUPS,
        )


def place_groups(snapshot: Snapshot) -> tuple[list[list[GroupRecord]], list[GroupRecord]]:
    """
    Decide which window each group is restored into.

    A group belongs to the window whose tabs carry its original id. Groups
    without that correlation (e.g. imported data) go to the first window
    holding any of their URLs.

    Returns:
        (groups per window index, groups that fit no window)
    """
    per_window: list[list[GroupRecord]] = [[] for _ in snapshot.windows]
    unplaced: list[GroupRecord] = []

    for group in snapshot.groups:
        index = _window_by_group_id(snapshot.windows, group)
        if index is None:
            index = _window_by_url(snapshot.windows, group)
        if index is None:
            unplaced.append(group)
        else:
            per_window[index].append(group)

    return per_window, unplaced


def _window_by_group_id(windows: Sequence[WindowRecord], group: GroupRecord) -> int | None:
    if group.original_id is None:
        return None
    for index, window in enumerate(windows):
        if any(tab.original_group_id == group.original_id for tab in window.tabs):
            return index
    return None


def _window_by_url(windows: Sequence[WindowRecord], group: GroupRecord) -> int | None:
    wanted = set(group.tab_urls)
    for index, window in enumerate(windows):
        if any(tab.url in wanted for tab in window.tabs):
            return index
    return None


class SessionRestoreService:
    """
    Service for restoring stored snapshots into the live environment.
    """

    def __init__(
        self,
        environment: TabEnvironment,
        store: SessionStore,
        policy: ConvergencePolicy | None = None,
    ) -> None:
        """
        Initialize restore service.

        Args:
            environment: Live environment to restore into
            store: Session store to resolve ids against
            policy: Convergence timing (default: from settings)
        """
        self.environment = environment
        self.store = store
        self.policy = policy or ConvergencePolicy.from_settings()

    async def restore(
        self,
        session_id: str,
        options: GroupingOptions | None = None,
        logger: LoggerProtocol | None = None,
    ) -> RestoreResult:
        """
        Restore a stored snapshot by id.

        Raises:
            SessionNotFoundError: If the id does not resolve (nothing is created)
            InvalidSessionError: If the snapshot is empty (nothing is created)
            AdapterUnavailableError: If the environment is unusable
        """
        snapshot = await self.store.get(session_id)
        return await self.restore_snapshot(snapshot, options=options, logger=logger)

    async def restore_snapshot(
        self,
        snapshot: Snapshot,
        options: GroupingOptions | None = None,
        logger: LoggerProtocol | None = None,
    ) -> RestoreResult:
        """
        Restore an in-hand snapshot.

        Args:
            snapshot: Snapshot to rebuild
            options: Grouping preferences (default: exact reproduction)
            logger: Optional progress logger

        Returns:
            RestoreResult with one report per recorded window

        Raises:
            InvalidSessionError: If the snapshot is empty (nothing is created)
            AdapterUnavailableError: If the environment is unusable
        """
        validate_snapshot(snapshot)
        options = options or GroupingOptions()
        logger = logger or NullLogger()

        await logger.info(f"Restoring '{snapshot.name}': {len(snapshot.windows)} windows, {len(snapshot.groups)} groups")

        groups_by_window, unplaced = place_groups(snapshot)
        for group in unplaced:
            await logger.warning(f"Group '{group.title}' matches no recorded window, skipping")

        reports: list[WindowRestoreReport] = []
        for index, window in enumerate(snapshot.windows):
            report = await self._restore_window(index, window, groups_by_window[index], options, logger)
            reports.append(report)

        result = RestoreResult(
            session_id=snapshot.id,
            session_name=snapshot.name,
            restored_at=datetime.now(UTC),
            windows=reports,
            unplaced_groups=[group.title for group in unplaced],
        )
        await logger.info(f'Restored {result.windows_restored} windows and {result.groups_restored} groups')
        return result

    async def _restore_window(
        self,
        index: int,
        window: WindowRecord,
        groups: Sequence[GroupRecord],
        options: GroupingOptions,
        operator: LoggerProtocol,
    ) -> WindowRestoreReport:
        records = [tab for tab in window.tabs if is_restorable_url(tab.url)]
        group_titles = [group.title for group in groups]

        if not records:
            await operator.info(f'Window {index + 1}: no restorable tabs, skipping')
            return _skipped_report(index, window, group_titles, 'no restorable tabs')

        try:
            live_window = await self.environment.create_window(records[0].url)
        except PartialEntityFailure as e:
            logger.warning('Could not create window %d: %s', index, e)
            await operator.warning(f'Window {index + 1}: could not be created ({e.reason})')
            return _skipped_report(index, window, group_titles, str(e))

        window_id = live_window.id
        failed = await self._create_tabs(window_id, records[1:])
        expected = len(records) - failed

        pinned_restored = 0
        restored: list[str] = []
        skipped: list[str] = []
        active_restored = False
        tabs: Sequence[LiveTab] = []
        reason = None

        try:
            tabs = await wait_for_convergence(
                lambda: self.environment.query_tabs(window_id),
                is_complete=lambda observed: (
                    len(observed) >= expected and all(tab.effective_url for tab in observed)
                ),
                measure=len,
                policy=self.policy,
            )
            await operator.info(f'Window {index + 1}: {len(tabs)}/{expected} tabs present')

            pinned_restored = await self._restore_pins(records, tabs)
            if pinned_restored:
                tabs = await self.environment.query_tabs(window_id)

            restored, skipped = await self._restore_groups(window_id, tabs, groups, options, operator)
            active_restored = await self._restore_active(records, tabs)
        except PartialEntityFailure as e:
            logger.warning('Window %d restored partially: %s', index, e)
            await operator.warning(f'Window {index + 1}: restored partially ({e.reason})')
            reason = str(e)
            handled = set(restored) | set(skipped)
            skipped = skipped + [title for title in group_titles if title not in handled]

        return WindowRestoreReport(
            window_index=index,
            new_window_id=window_id,
            tabs_expected=len(records),
            tabs_present=len(tabs),
            tabs_failed=failed,
            pinned_restored=pinned_restored,
            groups_restored=restored,
            groups_skipped=skipped,
            active_restored=active_restored,
            skipped_reason=reason,
        )

    async def _create_tabs(self, window_id: WindowId, records: Sequence[TabRecord]) -> int:
        """Create tabs concurrently. Returns how many creations failed."""
        results = await asyncio.gather(
            *(self.environment.create_tab(window_id, record.url) for record in records),
            return_exceptions=True,
        )
        failed = 0
        for record, result in zip(records, results):
            if isinstance(result, PartialEntityFailure):
                logger.warning('Could not create tab %s: %s', record.url, result)
                failed += 1
            elif isinstance(result, BaseException):
                raise result
        return failed

    async def _restore_pins(self, records: Sequence[TabRecord], tabs: Sequence[LiveTab]) -> int:
        correlation = UrlCorrelation(tabs)
        pinned = 0
        for record in records:
            if not record.pinned:
                continue
            tab = correlation.claim(record.url)
            if tab is None:
                logger.warning('Pinned tab not found: %s', record.url)
                continue
            try:
                await self.environment.update_tab(tab.id, pinned=True)
            except PartialEntityFailure as e:
                logger.warning('Could not pin tab %s: %s', tab.id, e)
                continue
            pinned += 1
        return pinned

    async def _restore_groups(
        self,
        window_id: WindowId,
        tabs: Sequence[LiveTab],
        groups: Sequence[GroupRecord],
        options: GroupingOptions,
        operator: LoggerProtocol,
    ) -> tuple[list[str], list[str]]:
        """Recreate groups; returns (restored titles, skipped titles)."""
        correlation = UrlCorrelation(tabs, include=lambda tab: not tab.pinned)
        restored: list[str] = []
        skipped: list[str] = []

        for group in groups:
            tab_ids = []
            for url in group.tab_urls:
                tab = correlation.claim(url)
                if tab is not None:
                    tab_ids.append(tab.id)

            if not tab_ids:
                await operator.warning(f"Group '{group.title}': none of its tabs were found, skipping")
                skipped.append(group.title)
                continue
            if options.skip_single_tab_groups and len(tab_ids) < 2:
                await operator.info(f"Group '{group.title}': single tab, skipping")
                skipped.append(group.title)
                continue

            try:
                group_id = await self.environment.group_tabs(tab_ids, window_id)
                await self.environment.update_group(
                    group_id,
                    title=group.title or FALLBACK_GROUP_TITLE,
                    color=group.color or FALLBACK_GROUP_COLOR,
                    collapsed=group.collapsed or options.auto_collapse_groups,
                )
            except PartialEntityFailure as e:
                logger.warning("Could not recreate group '%s': %s", group.title, e)
                skipped.append(group.title)
                continue

            if len(tab_ids) < len(group.tab_urls):
                await operator.info(f"Group '{group.title}': {len(tab_ids)}/{len(group.tab_urls)} tabs matched")
            restored.append(group.title)

        return restored, skipped

    async def _restore_active(self, records: Sequence[TabRecord], tabs: Sequence[LiveTab]) -> bool:
        correlation = UrlCorrelation(tabs)
        for record in records:
            if not record.active:
                continue
            tab = correlation.claim(record.url)
            if tab is None:
                continue
            try:
                await self.environment.update_tab(tab.id, active=True)
            except PartialEntityFailure as e:
                logger.warning('Could not activate tab %s: %s', tab.id, e)
                return False
            return True
        return False


def _skipped_report(index: int, window: WindowRecord, group_titles: list[str], reason: str) -> WindowRestoreReport:
    return WindowRestoreReport(
        window_index=index,
        new_window_id=None,
        tabs_expected=len(window.tabs),
        tabs_present=0,
        tabs_failed=0,
        pinned_restored=0,
        groups_restored=[],
        groups_skipped=group_titles,
        active_restored=False,
        skipped_reason=reason,
    )
