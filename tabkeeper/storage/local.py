"""
Local filesystem key-value backend.

Stores one namespace as a single JSON document. Uses filelock for cross-process
safety and temp file + rename so a failed write never leaves a partial file.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

from filelock import FileLock

from tabkeeper.exceptions import StorageUnavailableError
from tabkeeper.storage.sizing import estimate_bytes


class LocalJsonBackend:
    """Filesystem backing medium (implements KeyValueBackend)."""

    def __init__(self, base_path: Path, namespace: str = 'local') -> None:
        """
        Initialize local storage.

        Args:
            base_path: Directory holding the namespace file (created if missing)
            namespace: Name of the JSON document (without extension)

        Raises:
            ValueError: If base_path exists but is not a directory
        """
        if base_path.exists() and not base_path.is_dir():
            raise ValueError(f'Storage path is not a directory: {base_path}')

        self.base_path = base_path
        self.data_file = base_path / f'{namespace}.json'
        self.lock_file = self.data_file.with_suffix('.lock')

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._update_sync, key, value)

    async def get_bytes_in_use(self) -> int:
        data = await asyncio.to_thread(self._read_locked)
        return sum(estimate_bytes(key) + estimate_bytes(value) for key, value in data.items())

    def _get_sync(self, key: str) -> Any | None:
        return self._read_locked().get(key)

    def _read_locked(self) -> dict[str, Any]:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            with FileLock(self.lock_file):
                return self._read_file()
        except OSError as e:
            raise StorageUnavailableError(f'Cannot read storage at {self.data_file}: {e}') from e

    def _update_sync(self, key: str, value: Any) -> None:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            # Acquire lock, read, modify, write atomically
            with FileLock(self.lock_file):
                data = self._read_file()
                data[key] = value
                self._write_file(data)
        except OSError as e:
            raise StorageUnavailableError(f'Cannot write storage at {self.data_file}: {e}') from e

    def _read_file(self) -> dict[str, Any]:
        """Read and parse the namespace file (empty if missing)."""
        if not self.data_file.exists():
            return {}
        with self.data_file.open(encoding='utf-8') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise StorageUnavailableError(f'Storage file is corrupted: {self.data_file}: {e}') from e
        if not isinstance(data, dict):
            raise StorageUnavailableError(f'Storage file is corrupted: {self.data_file}: expected an object')
        return data

    def _write_file(self, data: dict[str, Any]) -> None:
        """Write the namespace file atomically using temp file + rename."""
        tmp_file = self.data_file.with_suffix('.tmp.json')
        with tmp_file.open('w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        tmp_file.replace(self.data_file)
