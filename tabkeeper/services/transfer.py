"""
Session transfer service - export and import of the stored snapshot list.

Exports are the stored list as indented JSON, optionally zstd-compressed.
Imports are validated entry by entry and merged after the existing sessions
in a single quota-checked write.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pydantic
import zstandard

from tabkeeper.config import settings
from tabkeeper.exceptions import TransferError
from tabkeeper.protocols import LoggerProtocol, NullLogger
from tabkeeper.repositories.sessions import SessionStore
from tabkeeper.schemas.operations import ExportFormat, ExportResult, ImportResult
from tabkeeper.schemas.snapshot import Snapshot, current_timestamp
from tabkeeper.storage.files import ExportDirectory

__all__ = ['FormatDetector', 'TransferService', 'parse_import']


# ==============================================================================
# Export Format Detection
# ==============================================================================


class FormatDetector:
    """Detects and validates export format from file extension and format parameter."""

    SUPPORTED_FORMATS = {'json', 'zst'}  # 'zst' = JSON with zstd compression

    # Extension to format mapping
    EXTENSION_MAP: dict[str, ExportFormat] = {
        '.json': 'json',
        '.json.zst': 'zst',
        '.zst': 'zst',
    }

    @classmethod
    def detect_format(cls, path: Path, format_param: ExportFormat | None) -> ExportFormat:
        """
        Detect export format from path and validate against format parameter.

        Handles multi-part extensions like '.json.zst'.

        Raises:
            TransferError: If format is ambiguous or conflicts
        """
        detected = cls.detect_from_extension(path)

        if detected:
            if format_param is None or format_param == detected:
                return detected
            raise TransferError(
                f"Format mismatch: extension indicates '{detected}' but format parameter is '{format_param}'"
            )

        if format_param:
            if format_param not in cls.SUPPORTED_FORMATS:
                raise TransferError(
                    f"Unsupported format: '{format_param}'. Supported: {sorted(cls.SUPPORTED_FORMATS)}"
                )
            return format_param

        raise TransferError(
            f"Cannot detect format from extension '{path.suffix}'. "
            f'Please specify format parameter. Supported: {sorted(cls.SUPPORTED_FORMATS)}'
        )

    @classmethod
    def detect_from_extension(cls, path: Path) -> ExportFormat | None:
        """Format from file extension (longest match first), or None."""
        name = path.name.lower()
        for ext, fmt in sorted(cls.EXTENSION_MAP.items(), key=lambda x: -len(x[0])):
            if name.endswith(ext):
                return fmt
        return None


# ==============================================================================
# Import Validation
# ==============================================================================


def parse_import(data: Any) -> list[Snapshot]:
    """
    Validate imported data: a JSON array of session objects.

    Each entry needs a string or numeric `id`, a string `name` and a numeric
    `timestamp`. Numeric ids are stored as strings.

    Raises:
        TransferError: If the data is not a valid session list
    """
    if not isinstance(data, list):
        raise TransferError('Invalid session data format: expected a list of sessions')

    snapshots = []
    for position, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise TransferError(f'Invalid session data format: entry {position} is not an object')

        session_id = entry.get('id')
        timestamp = entry.get('timestamp')
        if isinstance(session_id, bool) or not isinstance(session_id, (str, int, float)):
            raise TransferError(f'Invalid session data format: entry {position} has no valid id')
        if not isinstance(entry.get('name'), str):
            raise TransferError(f'Invalid session data format: entry {position} has no valid name')
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise TransferError(f'Invalid session data format: entry {position} has no valid timestamp')

        normalized = {**entry, 'id': str(session_id), 'timestamp': int(timestamp)}
        try:
            snapshots.append(Snapshot.model_validate(normalized))
        except pydantic.ValidationError as e:
            raise TransferError(f'Invalid session data format: entry {position}: {e.error_count()} errors') from e

    return snapshots


# ==============================================================================
# Transfer Service
# ==============================================================================


class TransferService:
    """Export and import of stored sessions."""

    def __init__(self, store: SessionStore, max_import_bytes: int | None = None) -> None:
        self.store = store
        self.max_import_bytes = max_import_bytes if max_import_bytes is not None else settings.MAX_IMPORT_FILE_BYTES

    async def export_sessions(
        self,
        output_path: Path | None,
        format_param: ExportFormat | None = None,
        logger: LoggerProtocol | None = None,
    ) -> ExportResult:
        """
        Write every stored session to a file.

        Args:
            output_path: Destination (None = timestamped file in the current directory)
            format_param: Optional explicit format
            logger: Optional progress logger

        Raises:
            TransferError: If there is nothing to export, the file exists, or the format is ambiguous
        """
        logger = logger or NullLogger()

        if output_path is None:
            suffix = '.json.zst' if format_param == 'zst' else '.json'
            output_path = Path.cwd() / f'tab-keeper-sessions-{current_timestamp()}{suffix}'

        directory = ExportDirectory(output_path.parent)
        if await directory.exists(output_path.name):
            raise TransferError(
                f'File already exists: {output_path}\nUse a different filename or delete the existing file first.'
            )

        export_format = FormatDetector.detect_format(output_path, format_param)
        await logger.info(f'Export format: {export_format}')

        snapshots = await self.store.list()
        if not snapshots:
            raise TransferError('No sessions to export')

        data = await self._serialize(snapshots, export_format, logger)
        final_path = await directory.save_new(output_path.name, data)
        await logger.info(f'Export saved: {len(data):,} bytes')

        return ExportResult(
            file_path=final_path,
            format=export_format,
            session_count=len(snapshots),
            size_bytes=directory.size_of(output_path.name),
            exported_at=datetime.now(UTC),
        )

    async def import_sessions(self, source_path: Path, logger: LoggerProtocol | None = None) -> ImportResult:
        """
        Merge sessions from an export file after the existing ones.

        Raises:
            TransferError: If the file is missing, too large, or not a valid session list
            QuotaExceededError: If the merged list would not fit (nothing written)
        """
        logger = logger or NullLogger()

        if not source_path.parent.is_dir():
            raise TransferError(f'Import file not found: {source_path}')
        raw = await ExportDirectory(source_path.parent).read(source_path.name, self.max_import_bytes)
        text = self._decode(raw, FormatDetector.detect_from_extension(source_path) or 'json')

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise TransferError(f'Invalid JSON file format: {e}') from e

        snapshots = parse_import(data)
        await logger.info(f'Validated {len(snapshots)} sessions from {source_path.name}')

        total = await self.store.extend(snapshots)
        await logger.info(f'Imported {len(snapshots)} sessions ({total} total)')

        return ImportResult(source_path=str(source_path), imported_count=len(snapshots), total_count=total)

    async def _serialize(self, snapshots: Sequence[Snapshot], export_format: ExportFormat, logger: LoggerProtocol) -> bytes:
        json_bytes = json.dumps([s.to_document() for s in snapshots], indent=2, ensure_ascii=False).encode('utf-8')
        if export_format == 'json':
            return json_bytes

        compressor = zstandard.ZstdCompressor(level=settings.COMPRESSION_LEVEL)
        compressed = compressor.compress(json_bytes)
        compression_ratio = len(json_bytes) / len(compressed)
        await logger.info(f'Compressed {len(json_bytes):,} → {len(compressed):,} bytes ({compression_ratio:.1f}x)')
        return compressed

    def _decode(self, raw: bytes, import_format: ExportFormat) -> str:
        if import_format == 'zst':
            try:
                raw = zstandard.ZstdDecompressor().decompress(raw)
            except zstandard.ZstdError as e:
                raise TransferError(f'Invalid compressed file: {e}') from e
            if len(raw) > self.max_import_bytes:
                raise TransferError(f'Decompressed data exceeds {self.max_import_bytes:,} bytes')
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise TransferError(f'Import file is not UTF-8 text: {e}') from e
