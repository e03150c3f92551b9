"""
Snapshot schemas - the serializable arrangement of windows, tabs and groups.

Pure data, no behavior beyond validation helpers. A Snapshot crosses a
capture/restore boundary, so group membership is recorded by URL (tab_urls):
live tab ids do not survive restore.

Architecture (top-down):
1. Snapshot - one saved session
2. WindowRecord - a captured window with its tabs in index order
3. TabRecord - one restorable tab
4. GroupRecord - group metadata plus member URLs (flattened across windows)
"""

from __future__ import annotations

import time
from collections.abc import Sequence

import uuid6
from pydantic import Field

from tabkeeper.exceptions import InvalidSessionError
from tabkeeper.schemas.base import CamelModel
from tabkeeper.types import EpochMillis, GroupColor, GroupId, WindowId

# Name prefixes marking system-generated snapshots subject to retention
RECOVERY_PREFIX = 'Recovery ('
AUTO_SAVE_PREFIX = 'Auto-save ('


def current_timestamp() -> EpochMillis:
    """Current instant in epoch milliseconds."""
    return int(time.time() * 1000)


def new_snapshot_id() -> str:
    """Opaque, unique, time-ordered snapshot id (UUIDv7)."""
    return str(uuid6.uuid7())


class TabRecord(CamelModel):
    """A captured tab. Internal pages never appear here."""

    url: str
    title: str = 'Untitled'
    pinned: bool = False
    active: bool = False
    original_group_id: GroupId | None = None  # Capture-window correlation only


class GroupRecord(CamelModel):
    """A captured group. Membership is by URL, not by volatile tab id."""

    original_id: GroupId | None = None  # Discarded on restore
    title: str = 'Untitled Group'
    color: GroupColor = 'grey'
    collapsed: bool = False
    tab_urls: Sequence[str] = Field(default_factory=list)


class WindowRecord(CamelModel):
    """A captured window with its tabs in index order."""

    id: WindowId | None = None  # Discarded on restore
    tabs: Sequence[TabRecord] = Field(default_factory=list)


class Snapshot(CamelModel):
    """One saved session."""

    id: str = Field(default_factory=new_snapshot_id)
    name: str
    timestamp: EpochMillis = Field(default_factory=current_timestamp)
    windows: Sequence[WindowRecord] = Field(default_factory=list)
    groups: Sequence[GroupRecord] = Field(default_factory=list)

    @property
    def tab_count(self) -> int:
        return sum(len(window.tabs) for window in self.windows)

    def is_restorable(self) -> bool:
        """A snapshot is valid only with at least one tab or at least one group."""
        return self.tab_count > 0 or len(self.groups) > 0

    def to_document(self) -> dict[str, object]:
        """Serialized form as stored in the backing medium."""
        return self.model_dump(mode='json', by_alias=True)


def validate_snapshot(snapshot: Snapshot) -> Snapshot:
    """
    Check the snapshot invariant.

    Raises:
        InvalidSessionError: If the snapshot has no tabs and no groups
    """
    if not snapshot.is_restorable():
        raise InvalidSessionError(f"Invalid or empty session: '{snapshot.name}' has no tabs or groups")
    return snapshot
