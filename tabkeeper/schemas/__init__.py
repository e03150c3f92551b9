"""
Schemas for tabkeeper.

Snapshot and undo models are persisted; live models mirror the environment;
operation models are service results.
"""

from __future__ import annotations

from tabkeeper.schemas.live import EnvironmentLayout, LiveGroup, LiveTab, LiveWindow
from tabkeeper.schemas.operations import (
    ExportFormat,
    ExportResult,
    ImportResult,
    RestoreResult,
    StorageUsage,
    UndoResult,
    WindowRestoreReport,
)
from tabkeeper.schemas.snapshot import (
    AUTO_SAVE_PREFIX,
    RECOVERY_PREFIX,
    GroupRecord,
    Snapshot,
    TabRecord,
    WindowRecord,
    current_timestamp,
    validate_snapshot,
)
from tabkeeper.schemas.undo import UndoEntry, UndoGroupState, UndoState, UndoTabState, UndoWindowState

__all__ = [
    # Live
    'EnvironmentLayout',
    'LiveGroup',
    'LiveTab',
    'LiveWindow',
    # Snapshot
    'AUTO_SAVE_PREFIX',
    'RECOVERY_PREFIX',
    'GroupRecord',
    'Snapshot',
    'TabRecord',
    'WindowRecord',
    'current_timestamp',
    'validate_snapshot',
    # Undo
    'UndoEntry',
    'UndoGroupState',
    'UndoState',
    'UndoTabState',
    'UndoWindowState',
    # Operations
    'ExportFormat',
    'ExportResult',
    'ImportResult',
    'RestoreResult',
    'StorageUsage',
    'UndoResult',
    'WindowRestoreReport',
]
