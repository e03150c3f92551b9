"""
Undo log schemas.

Unlike a Snapshot, an UndoState keeps live ids: it is replayed against the same
still-running environment it was captured from, so ids are tried first and
URLs are only a fallback.
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import Field

from tabkeeper.schemas.base import CamelModel
from tabkeeper.types import EpochMillis, GroupColor, GroupId, TabId, WindowId


class UndoTabState(CamelModel):
    """A tab at the moment before an action."""

    id: TabId
    url: str | None = None
    title: str | None = None
    group_id: GroupId | None = None
    index: int = 0
    pinned: bool = False


class UndoGroupState(CamelModel):
    """A group at the moment before an action, with member tab ids."""

    id: GroupId
    title: str = ''
    color: GroupColor = 'grey'
    collapsed: bool = False
    tab_ids: Sequence[TabId] = Field(default_factory=list)


class UndoWindowState(CamelModel):
    """A window's tabs and groups at the moment before an action."""

    id: WindowId
    tabs: Sequence[UndoTabState] = Field(default_factory=list)
    groups: Sequence[UndoGroupState] = Field(default_factory=list)

    def find_tab(self, tab_id: TabId) -> UndoTabState | None:
        return next((tab for tab in self.tabs if tab.id == tab_id), None)


class UndoState(CamelModel):
    """The full arrangement captured before an action."""

    windows: Sequence[UndoWindowState] = Field(default_factory=list)


class UndoEntry(CamelModel):
    """One entry of the bounded undo log."""

    action_type: str = Field(alias='type')
    timestamp: EpochMillis
    previous_state: UndoState = Field(alias='previousGroups')
