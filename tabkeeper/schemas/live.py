"""
Live-environment schemas.

Read-only views of windows, tabs and groups as reported by a TabEnvironment.
Every id here is volatile: it is meaningful only inside the environment
instance that issued it.
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import Field

from tabkeeper.schemas.base import CamelModel
from tabkeeper.types import GroupColor, GroupId, TabId, WindowId


class LiveTab(CamelModel):
    """A tab as currently reported by the environment."""

    id: TabId
    window_id: WindowId
    index: int
    url: str | None = None  # None while the tab is still loading
    pending_url: str | None = None  # Target URL of an in-flight navigation
    title: str | None = None
    pinned: bool = False
    active: bool = False
    group_id: GroupId | None = None  # None = not grouped

    @property
    def effective_url(self) -> str | None:
        """Settled URL if known, otherwise the pending one."""
        return self.url or self.pending_url


class LiveGroup(CamelModel):
    """A tab group as currently reported by the environment."""

    id: GroupId
    window_id: WindowId
    title: str = ''
    color: GroupColor = 'grey'
    collapsed: bool = False


class LiveWindow(CamelModel):
    """A window with its tabs in index order."""

    id: WindowId
    focused: bool = False
    tabs: Sequence[LiveTab] = Field(default_factory=list)


class EnvironmentLayout(CamelModel):
    """Serialized form of a whole environment (used to load/dump InMemoryEnvironment)."""

    windows: Sequence[LiveWindow] = Field(default_factory=list)
    groups: Sequence[LiveGroup] = Field(default_factory=list)
