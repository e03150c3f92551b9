"""
In-memory key-value backend.

Values are copied through JSON on every read and write, so callers can never
alias stored state.
"""

from __future__ import annotations

import json
from typing import Any

from tabkeeper.exceptions import StorageUnavailableError
from tabkeeper.storage.sizing import estimate_bytes


class MemoryBackend:
    """Process-local backing medium (implements KeyValueBackend)."""

    def __init__(self, initial: dict[str, Any] | None = None, reserved_bytes: int = 0) -> None:
        """
        Args:
            initial: Starting contents
            reserved_bytes: Bytes reported as used by data outside this namespace
        """
        self._data: dict[str, str] = {key: json.dumps(value) for key, value in (initial or {}).items()}
        self.reserved_bytes = reserved_bytes
        self.unavailable = False

    async def get(self, key: str) -> Any | None:
        self._ensure_available()
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._ensure_available()
        self._data[key] = json.dumps(value)

    async def get_bytes_in_use(self) -> int:
        self._ensure_available()
        return self.reserved_bytes + sum(
            estimate_bytes(key) + estimate_bytes(json.loads(raw)) for key, raw in self._data.items()
        )

    def raw(self, key: str) -> str | None:
        """Serialized value exactly as stored (for byte-for-byte comparisons)."""
        return self._data.get(key)

    def _ensure_available(self) -> None:
        if self.unavailable:
            raise StorageUnavailableError('Cannot access storage. Check permissions.')
