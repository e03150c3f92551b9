"""
Export directory - standalone export files on the local filesystem.

Export files are written with exclusive creation, so an existing file is never
overwritten, and read back with a size limit checked before any bytes are
loaded.
"""

from __future__ import annotations

import asyncio
import pathlib

from tabkeeper.exceptions import TransferError


class ExportDirectory:
    """A directory holding export files (implements ExportStorage)."""

    def __init__(self, base_path: pathlib.Path) -> None:
        """
        Args:
            base_path: Existing directory for export files

        Raises:
            TransferError: If base_path is missing or not a directory (fail-fast)
        """
        if not base_path.exists():
            raise TransferError(f'Output directory does not exist: {base_path}. Please create it first.')

        if not base_path.is_dir():
            raise TransferError(f'Not a directory: {base_path}')

        self.base_path = base_path

    async def exists(self, filename: str) -> bool:
        return (self.base_path / filename).exists()

    async def save_new(self, filename: str, data: bytes) -> str:
        """
        Write a new export file.

        Returns:
            Absolute path of the written file

        Raises:
            TransferError: If the file already exists
        """
        file_path = self.base_path / filename
        try:
            await asyncio.to_thread(self._write_exclusive, file_path, data)
        except FileExistsError as e:
            raise TransferError(
                f'File already exists: {file_path}\nUse a different filename or delete the existing file first.'
            ) from e
        return str(file_path.absolute())

    async def read(self, filename: str, max_bytes: int) -> bytes:
        """
        Raises:
            TransferError: If the file is missing or larger than max_bytes
        """
        file_path = self.base_path / filename
        if not file_path.is_file():
            raise TransferError(f'Import file not found: {file_path}')

        size = file_path.stat().st_size
        if size > max_bytes:
            raise TransferError(f'File too large: {size:,} bytes. Maximum size is {max_bytes:,} bytes.')

        return await asyncio.to_thread(file_path.read_bytes)

    def size_of(self, filename: str) -> int:
        return (self.base_path / filename).stat().st_size

    @staticmethod
    def _write_exclusive(file_path: pathlib.Path, data: bytes) -> None:
        with open(file_path, 'xb') as f:
            f.write(data)
