"""
Environment adapter protocol.

The only seam through which tabkeeper touches the live window/tab/group
hierarchy. Every primitive is async and individually fallible; adapters do not
batch or retry internally.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from tabkeeper.schemas.live import LiveGroup, LiveTab, LiveWindow
from tabkeeper.types import GroupColor, GroupId, TabId, WindowId


@runtime_checkable
class TabEnvironment(Protocol):
    """Protocol for live tab environments.

    Failure contract:
        PartialEntityFailure: one entity-level call failed (isolate and continue)
        AdapterUnavailableError: the environment cannot be used at all
    """

    async def get_windows(self) -> Sequence[LiveWindow]:
        """All windows, each populated with its tabs in index order."""
        ...

    async def get_window(self, window_id: WindowId) -> LiveWindow | None:
        """One populated window, or None if it no longer exists."""
        ...

    async def query_tabs(self, window_id: WindowId) -> Sequence[LiveTab]:
        """Tabs of one window in index order."""
        ...

    async def get_group(self, group_id: GroupId) -> LiveGroup:
        """Metadata of one group."""
        ...

    async def create_window(self, url: str) -> LiveWindow:
        """Create a window seeded with one tab."""
        ...

    async def create_tab(self, window_id: WindowId, url: str, active: bool = False) -> LiveTab:
        """Create a tab at the end of a window."""
        ...

    async def update_tab(
        self,
        tab_id: TabId,
        *,
        pinned: bool | None = None,
        active: bool | None = None,
    ) -> LiveTab:
        """Set pinned and/or active state. Pinning may reorder the window."""
        ...

    async def group_tabs(self, tab_ids: Sequence[TabId], window_id: WindowId | None = None) -> GroupId:
        """Put tabs into a new group and return its id."""
        ...

    async def update_group(
        self,
        group_id: GroupId,
        *,
        title: str | None = None,
        color: GroupColor | None = None,
        collapsed: bool | None = None,
    ) -> LiveGroup:
        """Set group title, color and/or collapsed state."""
        ...

    async def ungroup_tabs(self, tab_ids: Sequence[TabId]) -> None:
        """Remove tabs from whatever group they are in."""
        ...
