"""Storage backends for persisted state and export files."""

from tabkeeper.storage.files import ExportDirectory
from tabkeeper.storage.local import LocalJsonBackend
from tabkeeper.storage.memory import MemoryBackend
from tabkeeper.storage.protocol import ExportStorage, KeyValueBackend
from tabkeeper.storage.sizing import estimate_bytes

__all__ = [
    'ExportDirectory',
    'ExportStorage',
    'KeyValueBackend',
    'LocalJsonBackend',
    'MemoryBackend',
    'estimate_bytes',
]
