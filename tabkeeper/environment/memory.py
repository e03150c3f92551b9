"""
In-memory tab environment.

A complete simulation of a live browser environment implementing the
TabEnvironment protocol. Used by the CLI (backed by a JSON layout file) and by
tests. It reproduces the behaviors the engines must cope with:

- Tab creation is asynchronous: new tabs first report only a pending URL and
  settle after a configurable number of polls.
- Navigations may redirect, so a settled URL can differ from the requested one.
- Pinning moves a tab into the pinned block at the front of its window and
  removes it from its group.
- Any call can be made to fail per entity, or the whole environment can be
  made unavailable.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from collections.abc import Mapping, Sequence
from pathlib import Path

import attrs

from tabkeeper.exceptions import AdapterUnavailableError, PartialEntityFailure
from tabkeeper.schemas.live import EnvironmentLayout, LiveGroup, LiveTab, LiveWindow
from tabkeeper.types import GroupColor, GroupId, TabId, WindowId

__all__ = ['InMemoryEnvironment']

# Operations whose failure makes the whole environment unusable
_FATAL_OPERATIONS = frozenset({'get_windows'})


@attrs.define
class _Tab:
    id: TabId
    window_id: WindowId
    url: str | None
    pending_url: str | None = None
    title: str | None = None
    pinned: bool = False
    active: bool = False
    group_id: GroupId | None = None
    polls_until_settled: int = 0


@attrs.define
class _Group:
    id: GroupId
    window_id: WindowId
    title: str = ''
    color: GroupColor = 'grey'
    collapsed: bool = False


@attrs.define
class _Window:
    id: WindowId
    focused: bool = False
    tab_ids: list[TabId] = attrs.Factory(list)


class InMemoryEnvironment:
    """Simulated live environment (implements TabEnvironment)."""

    def __init__(
        self,
        *,
        settle_after_polls: int = 0,
        creation_latency: float = 0.0,
        redirects: Mapping[str, str] | None = None,
        first_id: int = 1,
    ) -> None:
        """
        Initialize an empty environment.

        Args:
            settle_after_polls: Polls of query_tabs before a new tab's URL settles (0 = immediately)
            creation_latency: Seconds each create call suspends before the entity appears
            redirects: Requested URL -> URL the tab settles on
            first_id: First id handed out, so separate instances can issue disjoint ids
        """
        self.settle_after_polls = settle_after_polls
        self.creation_latency = creation_latency
        self.redirects = dict(redirects or {})

        self._tab_ids = itertools.count(first_id)
        self._window_ids = itertools.count(first_id)
        self._group_ids = itertools.count(first_id)

        self._windows: dict[WindowId, _Window] = {}
        self._tabs: dict[TabId, _Tab] = {}
        self._groups: dict[GroupId, _Group] = {}

        self._failures: dict[str, set[object]] = {}
        self.mutations: list[str] = []

    # ------------------------------------------------------------------
    # Failure injection
    # ------------------------------------------------------------------

    def fail(self, operation: str, key: object = None) -> None:
        """Make `operation` fail for `key` (a url or id), or for every call when key is None."""
        self._failures.setdefault(operation, set()).add(key)

    def clear_failures(self) -> None:
        self._failures.clear()

    def _check(self, operation: str, key: object = None) -> None:
        keys = self._failures.get(operation)
        if not keys or (None not in keys and key not in keys):
            return
        if operation in _FATAL_OPERATIONS:
            raise AdapterUnavailableError(f'{operation} unavailable (permission denied)')
        raise PartialEntityFailure(operation, key, 'injected failure')

    # ------------------------------------------------------------------
    # Building and inspecting state directly (not part of TabEnvironment)
    # ------------------------------------------------------------------

    def add_window(self, focused: bool = False) -> WindowId:
        window = _Window(id=next(self._window_ids), focused=focused)
        self._windows[window.id] = window
        return window.id

    def add_tab(
        self,
        window_id: WindowId,
        url: str | None,
        *,
        title: str | None = None,
        pinned: bool = False,
        active: bool = False,
    ) -> TabId:
        tab = _Tab(id=next(self._tab_ids), window_id=window_id, url=url, title=title, active=active)
        self._tabs[tab.id] = tab
        self._windows[window_id].tab_ids.append(tab.id)
        if active:
            self._activate(tab)
        if pinned:
            self._pin(tab)
        return tab.id

    def add_group(
        self,
        tab_ids: Sequence[TabId],
        *,
        title: str = '',
        color: GroupColor = 'grey',
        collapsed: bool = False,
    ) -> GroupId:
        group_id = self._group(list(tab_ids), None)
        group = self._groups[group_id]
        group.title = title
        group.color = color
        group.collapsed = collapsed
        return group_id

    def close_window(self, window_id: WindowId) -> None:
        window = self._windows.pop(window_id)
        for tab_id in window.tab_ids:
            del self._tabs[tab_id]
        for group_id in [g.id for g in self._groups.values() if g.window_id == window_id]:
            del self._groups[group_id]

    def close_tab(self, tab_id: TabId) -> None:
        tab = self._tabs.pop(tab_id)
        self._windows[tab.window_id].tab_ids.remove(tab_id)
        self._drop_empty_groups()

    @property
    def window_ids(self) -> list[WindowId]:
        return list(self._windows)

    def groups_in(self, window_id: WindowId) -> list[LiveGroup]:
        return [self._view_group(g) for g in self._groups.values() if g.window_id == window_id]

    def tabs_in(self, window_id: WindowId) -> list[LiveTab]:
        """Current tabs without advancing load progress."""
        return [self._view_tab(self._tabs[tab_id]) for tab_id in self._windows[window_id].tab_ids]

    # ------------------------------------------------------------------
    # Layout persistence
    # ------------------------------------------------------------------

    def to_layout(self) -> EnvironmentLayout:
        return EnvironmentLayout(
            windows=[self._view_window(w) for w in self._windows.values()],
            groups=[self._view_group(g) for g in self._groups.values()],
        )

    @classmethod
    def from_layout(cls, layout: EnvironmentLayout, **kwargs: object) -> InMemoryEnvironment:
        """Rebuild an environment, keeping the ids recorded in the layout."""
        highest = max(
            [w.id for w in layout.windows]
            + [t.id for w in layout.windows for t in w.tabs]
            + [g.id for g in layout.groups]
            + [0]
        )
        env = cls(first_id=highest + 1, **kwargs)  # type: ignore[arg-type]
        for live_window in layout.windows:
            window = _Window(id=live_window.id, focused=live_window.focused)
            env._windows[window.id] = window
            for live_tab in sorted(live_window.tabs, key=lambda t: t.index):
                tab = _Tab(
                    id=live_tab.id,
                    window_id=window.id,
                    url=live_tab.url,
                    pending_url=live_tab.pending_url,
                    title=live_tab.title,
                    pinned=live_tab.pinned,
                    active=live_tab.active,
                    group_id=live_tab.group_id,
                )
                env._tabs[tab.id] = tab
                window.tab_ids.append(tab.id)
        for live_group in layout.groups:
            env._groups[live_group.id] = _Group(
                id=live_group.id,
                window_id=live_group.window_id,
                title=live_group.title,
                color=live_group.color,
                collapsed=live_group.collapsed,
            )
        return env

    @classmethod
    def load(cls, path: Path, **kwargs: object) -> InMemoryEnvironment:
        """Load from a JSON layout file (a missing file yields an empty environment)."""
        if not path.exists():
            return cls(**kwargs)  # type: ignore[arg-type]
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
        return cls.from_layout(EnvironmentLayout.model_validate(data), **kwargs)

    def dump(self, path: Path) -> None:
        """Write the current layout to a JSON file."""
        data = self.to_layout().model_dump(mode='json', by_alias=True)
        path.write_text(json.dumps(data, indent=2), encoding='utf-8')

    # ------------------------------------------------------------------
    # TabEnvironment
    # ------------------------------------------------------------------

    async def get_windows(self) -> Sequence[LiveWindow]:
        self._check('get_windows')
        return [self._view_window(w) for w in self._windows.values()]

    async def get_window(self, window_id: WindowId) -> LiveWindow | None:
        self._check('get_window', window_id)
        window = self._windows.get(window_id)
        return self._view_window(window) if window else None

    async def query_tabs(self, window_id: WindowId) -> Sequence[LiveTab]:
        self._check('query_tabs', window_id)
        window = self._require_window(window_id, 'query_tabs')
        for tab_id in window.tab_ids:
            self._advance_loading(self._tabs[tab_id])
        return [self._view_tab(self._tabs[tab_id]) for tab_id in window.tab_ids]

    async def get_group(self, group_id: GroupId) -> LiveGroup:
        self._check('get_group', group_id)
        group = self._groups.get(group_id)
        if group is None:
            raise PartialEntityFailure('get_group', group_id, 'no such group')
        return self._view_group(group)

    async def create_window(self, url: str) -> LiveWindow:
        self._check('create_window', url)
        await asyncio.sleep(self.creation_latency)
        self.mutations.append('create_window')
        for other in self._windows.values():
            other.focused = False
        window_id = self.add_window(focused=True)
        tab = self._new_loading_tab(window_id, url)
        self._activate(tab)
        return self._view_window(self._windows[window_id])

    async def create_tab(self, window_id: WindowId, url: str, active: bool = False) -> LiveTab:
        self._check('create_tab', url)
        await asyncio.sleep(self.creation_latency)
        self._require_window(window_id, 'create_tab')
        self.mutations.append('create_tab')
        tab = self._new_loading_tab(window_id, url)
        if active:
            self._activate(tab)
        return self._view_tab(tab)

    async def update_tab(
        self,
        tab_id: TabId,
        *,
        pinned: bool | None = None,
        active: bool | None = None,
    ) -> LiveTab:
        self._check('update_tab', tab_id)
        tab = self._require_tab(tab_id, 'update_tab')
        self.mutations.append('update_tab')
        if pinned is True and not tab.pinned:
            self._pin(tab)
        elif pinned is False and tab.pinned:
            self._unpin(tab)
        if active:
            self._activate(tab)
        return self._view_tab(tab)

    async def group_tabs(self, tab_ids: Sequence[TabId], window_id: WindowId | None = None) -> GroupId:
        self._check('group_tabs', tuple(tab_ids))
        if not tab_ids:
            raise PartialEntityFailure('group_tabs', tab_ids, 'no tabs given')
        tabs = [self._require_tab(tab_id, 'group_tabs') for tab_id in tab_ids]
        if any(tab.pinned for tab in tabs):
            raise PartialEntityFailure('group_tabs', tab_ids, 'cannot group pinned tabs')
        self.mutations.append('group_tabs')
        return self._group(list(tab_ids), window_id)

    async def update_group(
        self,
        group_id: GroupId,
        *,
        title: str | None = None,
        color: GroupColor | None = None,
        collapsed: bool | None = None,
    ) -> LiveGroup:
        self._check('update_group', group_id)
        group = self._groups.get(group_id)
        if group is None:
            raise PartialEntityFailure('update_group', group_id, 'no such group')
        self.mutations.append('update_group')
        if title is not None:
            group.title = title
        if color is not None:
            group.color = color
        if collapsed is not None:
            group.collapsed = collapsed
        return self._view_group(group)

    async def ungroup_tabs(self, tab_ids: Sequence[TabId]) -> None:
        self._check('ungroup_tabs', tuple(tab_ids))
        tabs = [self._require_tab(tab_id, 'ungroup_tabs') for tab_id in tab_ids]
        self.mutations.append('ungroup_tabs')
        for tab in tabs:
            tab.group_id = None
        self._drop_empty_groups()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_window(self, window_id: WindowId, operation: str) -> _Window:
        window = self._windows.get(window_id)
        if window is None:
            raise PartialEntityFailure(operation, window_id, 'no such window')
        return window

    def _require_tab(self, tab_id: TabId, operation: str) -> _Tab:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise PartialEntityFailure(operation, tab_id, 'no such tab')
        return tab

    def _new_loading_tab(self, window_id: WindowId, url: str) -> _Tab:
        tab_id = self.add_tab(window_id, None)
        tab = self._tabs[tab_id]
        tab.pending_url = url
        tab.polls_until_settled = self.settle_after_polls
        if self.settle_after_polls == 0:
            self._settle(tab)
        return tab

    def _advance_loading(self, tab: _Tab) -> None:
        if tab.pending_url is None:
            return
        tab.polls_until_settled -= 1
        if tab.polls_until_settled <= 0:
            self._settle(tab)

    def _settle(self, tab: _Tab) -> None:
        assert tab.pending_url is not None
        tab.url = self.redirects.get(tab.pending_url, tab.pending_url)
        tab.pending_url = None
        tab.polls_until_settled = 0

    def _activate(self, tab: _Tab) -> None:
        for sibling_id in self._windows[tab.window_id].tab_ids:
            self._tabs[sibling_id].active = False
        tab.active = True

    def _pin(self, tab: _Tab) -> None:
        order = self._windows[tab.window_id].tab_ids
        order.remove(tab.id)
        pinned_count = sum(1 for tab_id in order if self._tabs[tab_id].pinned)
        order.insert(pinned_count, tab.id)
        tab.pinned = True
        tab.group_id = None
        self._drop_empty_groups()

    def _unpin(self, tab: _Tab) -> None:
        order = self._windows[tab.window_id].tab_ids
        order.remove(tab.id)
        pinned_count = sum(1 for tab_id in order if self._tabs[tab_id].pinned)
        order.insert(pinned_count, tab.id)
        tab.pinned = False

    def _group(self, tab_ids: list[TabId], window_id: WindowId | None) -> GroupId:
        first = self._tabs[tab_ids[0]]
        target = self._windows[window_id if window_id is not None else first.window_id]

        # Grouped tabs become contiguous, starting where the first member was
        anchor = target.tab_ids.index(first.id) if first.window_id == target.id else len(target.tab_ids)
        for tab_id in tab_ids:
            tab = self._tabs[tab_id]
            source = self._windows[tab.window_id]
            if source.tab_ids.index(tab_id) < anchor and source is target:
                anchor -= 1
            source.tab_ids.remove(tab_id)
            tab.window_id = target.id
        anchor = max(0, min(anchor, len(target.tab_ids)))
        target.tab_ids[anchor:anchor] = tab_ids

        group = _Group(id=next(self._group_ids), window_id=target.id)
        self._groups[group.id] = group
        for tab_id in tab_ids:
            self._tabs[tab_id].group_id = group.id
        self._drop_empty_groups()
        return group.id

    def _drop_empty_groups(self) -> None:
        used = {tab.group_id for tab in self._tabs.values()}
        for group_id in [gid for gid in self._groups if gid not in used]:
            del self._groups[group_id]

    def _view_tab(self, tab: _Tab) -> LiveTab:
        return LiveTab(
            id=tab.id,
            window_id=tab.window_id,
            index=self._windows[tab.window_id].tab_ids.index(tab.id),
            url=tab.url,
            pending_url=tab.pending_url,
            title=tab.title,
            pinned=tab.pinned,
            active=tab.active,
            group_id=tab.group_id,
        )

    def _view_group(self, group: _Group) -> LiveGroup:
        return LiveGroup(
            id=group.id,
            window_id=group.window_id,
            title=group.title,
            color=group.color,
            collapsed=group.collapsed,
        )

    def _view_window(self, window: _Window) -> LiveWindow:
        return LiveWindow(
            id=window.id,
            focused=window.focused,
            tabs=[self._view_tab(self._tabs[tab_id]) for tab_id in window.tab_ids],
        )
