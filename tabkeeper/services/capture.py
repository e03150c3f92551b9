"""
Capture engine - turns the live environment into a Snapshot or an UndoState.

A capture walks every window and its tabs in index order. Entity-level failures
are logged and the entity skipped; only a failure to enumerate windows at all
aborts the capture.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import pydantic

from tabkeeper.environment.protocol import TabEnvironment
from tabkeeper.exceptions import PartialEntityFailure
from tabkeeper.schemas.live import LiveGroup, LiveTab, LiveWindow
from tabkeeper.schemas.snapshot import GroupRecord, Snapshot, TabRecord, WindowRecord
from tabkeeper.schemas.undo import UndoGroupState, UndoState, UndoTabState, UndoWindowState
from tabkeeper.types import GroupId
from tabkeeper.urls import is_restorable_url

__all__ = ['CaptureService']

logger = logging.getLogger(__name__)

# Errors that isolate one entity instead of aborting the capture
ENTITY_ERRORS = (PartialEntityFailure, pydantic.ValidationError)


class CaptureService:
    """Reads the live arrangement of windows, tabs and groups."""

    def __init__(self, environment: TabEnvironment) -> None:
        self.environment = environment

    async def capture(self, label: str) -> Snapshot:
        """
        Capture every window into a new Snapshot.

        Tabs without a URL or with an internal-page URL are excluded, and
        windows left with no eligible tab are omitted. Group metadata is fetched
        once per group; each member tab appends its URL to the group's tab_urls.

        Args:
            label: Snapshot name

        Returns:
            Snapshot (possibly empty; validation is the caller's decision)

        Raises:
            AdapterUnavailableError: If windows cannot be enumerated at all
        """
        windows = await self.environment.get_windows()

        window_records: list[WindowRecord] = []
        group_records: dict[GroupId, GroupRecord] = {}
        group_cache: dict[GroupId, LiveGroup | None] = {}

        for window in windows:
            tabs = await self._window_tabs(window)
            if tabs is None:
                continue

            tab_records: list[TabRecord] = []
            for tab in tabs:
                if not is_restorable_url(tab.url):
                    continue
                assert tab.url is not None
                try:
                    record = TabRecord(
                        url=tab.url,
                        title=tab.title or 'Untitled',
                        pinned=tab.pinned,
                        active=tab.active,
                        original_group_id=tab.group_id,
                    )
                except pydantic.ValidationError as e:
                    logger.warning('Skipping tab %s: %s', tab.id, e)
                    continue
                tab_records.append(record)

                if tab.group_id is None:
                    continue
                group = await self._lookup_group(tab.group_id, group_cache)
                if group is None:
                    continue
                existing = group_records.get(group.id)
                if existing is None:
                    group_records[group.id] = GroupRecord(
                        original_id=group.id,
                        title=group.title or 'Untitled Group',
                        color=group.color,
                        collapsed=group.collapsed,
                        tab_urls=[tab.url],
                    )
                else:
                    group_records[group.id] = existing.model_copy(
                        update={'tab_urls': [*existing.tab_urls, tab.url]}
                    )

            if tab_records:
                window_records.append(WindowRecord(id=window.id, tabs=tab_records))

        return Snapshot(name=label, windows=window_records, groups=list(group_records.values()))

    async def capture_arrangement(self) -> UndoState:
        """
        Capture the arrangement with live ids retained, for the undo log.

        Unlike capture(), every tab is kept: undo replays against this same
        environment, where internal pages still exist.

        Raises:
            AdapterUnavailableError: If windows cannot be enumerated at all
        """
        windows = await self.environment.get_windows()
        group_cache: dict[GroupId, LiveGroup | None] = {}

        window_states: list[UndoWindowState] = []
        for window in windows:
            tabs = await self._window_tabs(window)
            if tabs is None:
                continue

            tab_states: list[UndoTabState] = []
            members: dict[GroupId, list[int]] = {}
            for tab in tabs:
                try:
                    tab_states.append(
                        UndoTabState(
                            id=tab.id,
                            url=tab.url,
                            title=tab.title,
                            group_id=tab.group_id,
                            index=tab.index,
                            pinned=tab.pinned,
                        )
                    )
                except pydantic.ValidationError as e:
                    logger.warning('Skipping tab %s: %s', tab.id, e)
                    continue
                if tab.group_id is not None:
                    members.setdefault(tab.group_id, []).append(tab.id)

            group_states: list[UndoGroupState] = []
            for group_id, tab_ids in members.items():
                group = await self._lookup_group(group_id, group_cache)
                if group is None:
                    continue
                group_states.append(
                    UndoGroupState(
                        id=group.id,
                        title=group.title,
                        color=group.color,
                        collapsed=group.collapsed,
                        tab_ids=tab_ids,
                    )
                )

            window_states.append(UndoWindowState(id=window.id, tabs=tab_states, groups=group_states))

        return UndoState(windows=window_states)

    async def _window_tabs(self, window: LiveWindow) -> Sequence[LiveTab] | None:
        """Tabs of a window in index order, or None if the window cannot be read."""
        if window.tabs:
            return sorted(window.tabs, key=lambda t: t.index)
        try:
            return await self.environment.query_tabs(window.id)
        except PartialEntityFailure as e:
            logger.warning('Skipping window %s: %s', window.id, e)
            return None

    async def _lookup_group(self, group_id: GroupId, cache: dict[GroupId, LiveGroup | None]) -> LiveGroup | None:
        """Group metadata, fetched at most once per capture (failures are cached too)."""
        if group_id in cache:
            return cache[group_id]
        try:
            group: LiveGroup | None = await self.environment.get_group(group_id)
        except ENTITY_ERRORS as e:
            logger.warning('Skipping group %s: %s', group_id, e)
            group = None
        cache[group_id] = group
        return group
