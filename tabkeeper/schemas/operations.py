"""
Operation schemas.

Models for results returned by services to the CLI and other callers.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Literal

from tabkeeper.schemas.base import StrictModel

ExportFormat = Literal['json', 'zst']


class StorageUsage(StrictModel):
    """Snapshot of backing-medium usage for display and decisions."""

    bytes_in_use: int
    quota_bytes: int
    available_bytes: int
    percent_used: float  # 0.0 - 1.0
    session_count: int
    near_quota: bool  # percent_used above the warning threshold


class WindowRestoreReport(StrictModel):
    """What happened to one recorded window during restore."""

    window_index: int  # Position in the snapshot's window list
    new_window_id: int | None  # None if the window was skipped
    tabs_expected: int
    tabs_present: int  # Tabs observed after the convergence wait
    tabs_failed: int  # Individual creation failures
    pinned_restored: int
    groups_restored: Sequence[str]
    groups_skipped: Sequence[str]
    active_restored: bool
    skipped_reason: str | None


class RestoreResult(StrictModel):
    """Result of a session restore operation."""

    session_id: str
    session_name: str
    restored_at: datetime
    windows: Sequence[WindowRestoreReport]
    unplaced_groups: Sequence[str]  # Groups whose URLs belong to no restored window

    @property
    def windows_restored(self) -> int:
        return sum(1 for w in self.windows if w.new_window_id is not None)

    @property
    def groups_restored(self) -> int:
        return sum(len(w.groups_restored) for w in self.windows)

    @property
    def groups_skipped(self) -> list[str]:
        return [title for w in self.windows for title in w.groups_skipped] + list(self.unplaced_groups)


class UndoResult(StrictModel):
    """Result of replaying one undo entry."""

    action_type: str
    windows_replayed: int
    windows_missing: int
    groups_recreated: int
    groups_skipped: int


class ExportResult(StrictModel):
    """Result of exporting stored sessions to a file."""

    file_path: str
    format: ExportFormat
    session_count: int
    size_bytes: int
    exported_at: datetime


class ImportResult(StrictModel):
    """Result of merging sessions from a file into the store."""

    source_path: str
    imported_count: int
    total_count: int
