"""
Storage protocols.

KeyValueBackend is the durable medium holding the 'sessions' and 'undoHistory'
keys. ExportStorage writes standalone export files.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class KeyValueBackend(Protocol):
    """Protocol for the namespace that holds persisted state."""

    async def get(self, key: str) -> Any | None:
        """
        Read a value.

        Args:
            key: Storage key

        Returns:
            The JSON-compatible value, or None if the key is unset

        Raises:
            StorageUnavailableError: If the medium cannot be read
        """
        ...

    async def set(self, key: str, value: Any) -> None:
        """
        Replace a value. Either the whole value is written or nothing is.

        Raises:
            StorageUnavailableError: If the medium cannot be written
        """
        ...

    async def get_bytes_in_use(self) -> int:
        """Estimated bytes used by every key in the namespace (see storage.sizing)."""
        ...


@runtime_checkable
class ExportStorage(Protocol):
    """Protocol for export file destinations."""

    async def exists(self, filename: str) -> bool:
        """Check if an export file exists."""
        ...

    async def save_new(self, filename: str, data: bytes) -> str:
        """
        Write a new export file (never overwrites).

        Args:
            filename: Name of export file
            data: Export data (JSON or compressed JSON)

        Returns:
            Final path where the export was saved

        Raises:
            TransferError: If the file already exists
        """
        ...

    async def read(self, filename: str, max_bytes: int) -> bytes:
        """
        Load export data.

        Raises:
            TransferError: If the file is missing or larger than max_bytes
        """
        ...
