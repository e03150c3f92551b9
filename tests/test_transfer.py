"""Tests for session export and import."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
import zstandard

from tabkeeper.exceptions import QuotaExceededError, TransferError
from tabkeeper.repositories.sessions import SessionStore
from tabkeeper.schemas.snapshot import GroupRecord, Snapshot, TabRecord, WindowRecord
from tabkeeper.services.transfer import FormatDetector, TransferService, parse_import
from tabkeeper.storage.memory import MemoryBackend


def sample(name: str, timestamp: int) -> Snapshot:
    return Snapshot(
        name=name,
        timestamp=timestamp,
        windows=[WindowRecord(tabs=[TabRecord(url='https://mail.x.com', active=True)])],
        groups=[GroupRecord(title='Work', color='blue', tab_urls=['https://mail.x.com'])],
    )


@pytest.fixture
def filled_store(store: SessionStore) -> SessionStore:
    async def scenario() -> None:
        await store.put(sample('First', 1_000))
        await store.put(sample('Second', 2_000))

    asyncio.run(scenario())
    return store


# ==============================================================================
# Format detection
# ==============================================================================


@pytest.mark.parametrize(
    ('filename', 'expected'),
    [('out.json', 'json'), ('out.json.zst', 'zst'), ('out.zst', 'zst'), ('OUT.JSON', 'json')],
)
def test_detect_format_from_extension(filename: str, expected: str) -> None:
    assert FormatDetector.detect_format(Path(filename), None) == expected


def test_detect_format_conflict() -> None:
    with pytest.raises(TransferError, match='mismatch'):
        FormatDetector.detect_format(Path('out.json'), 'zst')


def test_detect_format_needs_parameter_without_extension() -> None:
    assert FormatDetector.detect_format(Path('out.backup'), 'zst') == 'zst'
    with pytest.raises(TransferError):
        FormatDetector.detect_format(Path('out.backup'), None)


# ==============================================================================
# Export
# ==============================================================================


def test_export_json(filled_store: SessionStore, tmp_path: Path) -> None:
    output = tmp_path / 'sessions.json'

    result = asyncio.run(TransferService(filled_store).export_sessions(output))

    assert result.format == 'json'
    assert result.session_count == 2
    assert result.size_bytes == output.stat().st_size
    data = json.loads(output.read_text(encoding='utf-8'))
    assert [entry['name'] for entry in data] == ['Second', 'First']
    assert data[0]['groups'][0]['tabUrls'] == ['https://mail.x.com']


def test_export_zst(filled_store: SessionStore, tmp_path: Path) -> None:
    output = tmp_path / 'sessions.json.zst'

    result = asyncio.run(TransferService(filled_store).export_sessions(output))

    assert result.format == 'zst'
    data = json.loads(zstandard.ZstdDecompressor().decompress(output.read_bytes()))
    assert len(data) == 2


def test_export_refuses_existing_file(filled_store: SessionStore, tmp_path: Path) -> None:
    output = tmp_path / 'sessions.json'
    output.write_text('keep me', encoding='utf-8')

    with pytest.raises(TransferError, match='already exists'):
        asyncio.run(TransferService(filled_store).export_sessions(output))

    assert output.read_text(encoding='utf-8') == 'keep me'


def test_export_requires_existing_directory(filled_store: SessionStore, tmp_path: Path) -> None:
    with pytest.raises(TransferError, match='does not exist'):
        asyncio.run(TransferService(filled_store).export_sessions(tmp_path / 'missing' / 'sessions.json'))


def test_export_empty_store(store: SessionStore, tmp_path: Path) -> None:
    with pytest.raises(TransferError, match='No sessions'):
        asyncio.run(TransferService(store).export_sessions(tmp_path / 'sessions.json'))


def test_export_default_path(filled_store: SessionStore, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    result = asyncio.run(TransferService(filled_store).export_sessions(None, 'zst'))

    path = Path(result.file_path)
    assert path.parent.resolve() == tmp_path.resolve()
    assert path.name.startswith('tab-keeper-sessions-')
    assert path.name.endswith('.json.zst')


# ==============================================================================
# Import
# ==============================================================================


@pytest.mark.parametrize('filename', ['sessions.json', 'sessions.json.zst'])
def test_export_then_import_into_another_store(filled_store: SessionStore, tmp_path: Path, filename: str) -> None:
    output = tmp_path / filename
    asyncio.run(TransferService(filled_store).export_sessions(output))
    target = SessionStore(MemoryBackend(), quota_bytes=filled_store.quota)
    asyncio.run(target.put(sample('Existing', 500)))

    result = asyncio.run(TransferService(target).import_sessions(output))

    assert result.imported_count == 2
    assert result.total_count == 3
    assert [s.name for s in asyncio.run(target.list())] == ['Second', 'First', 'Existing']
    originals = {s.id: s for s in asyncio.run(filled_store.list())}
    for snapshot in asyncio.run(target.list()):
        if snapshot.id in originals:
            assert snapshot == originals[snapshot.id]


def test_import_normalizes_numeric_ids(store: SessionStore, tmp_path: Path) -> None:
    source = tmp_path / 'legacy.json'
    source.write_text(
        json.dumps([{'id': 1700000000000, 'name': 'Legacy', 'timestamp': 1700000000000.0, 'windows': [], 'groups': []}]),
        encoding='utf-8',
    )

    asyncio.run(TransferService(store).import_sessions(source))

    snapshot = asyncio.run(store.get('1700000000000'))
    assert snapshot.name == 'Legacy'
    assert snapshot.timestamp == 1700000000000


@pytest.mark.parametrize(
    'payload',
    [
        {'id': 'x', 'name': 'not a list', 'timestamp': 1},
        [{'name': 'no id', 'timestamp': 1}],
        [{'id': True, 'name': 'bool id', 'timestamp': 1}],
        [{'id': 'x', 'name': 3, 'timestamp': 1}],
        [{'id': 'x', 'name': 'no timestamp'}],
        [{'id': 'x', 'name': 'bad windows', 'timestamp': 1, 'windows': 'nope'}],
        ['not an object'],
    ],
)
def test_parse_import_rejects_invalid_entries(payload: object) -> None:
    with pytest.raises(TransferError, match='Invalid session data format'):
        parse_import(payload)


def test_import_rejects_invalid_json(store: SessionStore, tmp_path: Path) -> None:
    source = tmp_path / 'broken.json'
    source.write_text('{not json', encoding='utf-8')

    with pytest.raises(TransferError, match='Invalid JSON'):
        asyncio.run(TransferService(store).import_sessions(source))


def test_import_rejects_oversized_file(store: SessionStore, tmp_path: Path) -> None:
    source = tmp_path / 'big.json'
    source.write_text('[]' + ' ' * 200, encoding='utf-8')

    with pytest.raises(TransferError, match='too large'):
        asyncio.run(TransferService(store, max_import_bytes=100).import_sessions(source))


def test_import_missing_file(store: SessionStore, tmp_path: Path) -> None:
    with pytest.raises(TransferError, match='not found'):
        asyncio.run(TransferService(store).import_sessions(tmp_path / 'absent.json'))


def test_import_over_quota_writes_nothing(filled_store: SessionStore, tmp_path: Path) -> None:
    output = tmp_path / 'sessions.json'
    asyncio.run(TransferService(filled_store).export_sessions(output))
    tight = SessionStore(MemoryBackend(), quota_bytes=200)

    with pytest.raises(QuotaExceededError):
        asyncio.run(TransferService(tight).import_sessions(output))

    assert asyncio.run(tight.list()) == []
