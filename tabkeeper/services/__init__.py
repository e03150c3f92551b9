"""Service layer for capture, restore, undo and housekeeping operations."""

from tabkeeper.services.background import AutoSaveScheduler, BackgroundSaver
from tabkeeper.services.capture import CaptureService
from tabkeeper.services.convergence import ConvergencePolicy, wait_for_convergence
from tabkeeper.services.organize import OrganizeService
from tabkeeper.services.reconcile import IdCorrelation, UrlCorrelation
from tabkeeper.services.restore import GroupingOptions, SessionRestoreService
from tabkeeper.services.retention import RetentionService
from tabkeeper.services.save import SessionSaveService
from tabkeeper.services.transfer import FormatDetector, TransferService
from tabkeeper.services.undo import UndoService

__all__ = [
    'AutoSaveScheduler',
    'BackgroundSaver',
    'CaptureService',
    'ConvergencePolicy',
    'FormatDetector',
    'GroupingOptions',
    'IdCorrelation',
    'OrganizeService',
    'RetentionService',
    'SessionRestoreService',
    'SessionSaveService',
    'TransferService',
    'UndoService',
    'UrlCorrelation',
    'wait_for_convergence',
]
