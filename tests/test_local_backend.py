"""Tests for the filesystem key-value backend."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from tabkeeper.exceptions import StorageUnavailableError
from tabkeeper.storage.local import LocalJsonBackend
from tabkeeper.storage.sizing import estimate_bytes


def test_set_replaces_one_key_and_keeps_others(tmp_path: Path) -> None:
    backend = LocalJsonBackend(tmp_path / 'data')

    async def scenario() -> tuple[object, object, object]:
        await backend.set('sessions', [{'id': 'a'}])
        await backend.set('undoHistory', [])
        await backend.set('sessions', [{'id': 'b'}])
        return await backend.get('sessions'), await backend.get('undoHistory'), await backend.get('missing')

    sessions, history, missing = asyncio.run(scenario())
    assert sessions == [{'id': 'b'}]
    assert history == []
    assert missing is None


def test_values_survive_a_new_instance(tmp_path: Path) -> None:
    asyncio.run(LocalJsonBackend(tmp_path).set('undoHistory', [1, 2, 3]))

    assert asyncio.run(LocalJsonBackend(tmp_path).get('undoHistory')) == [1, 2, 3]
    assert not list(tmp_path.glob('*.tmp.json'))


def test_bytes_in_use_uses_utf16_estimate(tmp_path: Path) -> None:
    backend = LocalJsonBackend(tmp_path)
    asyncio.run(backend.set('k', ['é']))

    expected = estimate_bytes('k') + estimate_bytes(['é'])
    assert asyncio.run(backend.get_bytes_in_use()) == expected


def test_corrupted_file_is_reported(tmp_path: Path) -> None:
    (tmp_path / 'local.json').write_text('{not json', encoding='utf-8')

    with pytest.raises(StorageUnavailableError):
        asyncio.run(LocalJsonBackend(tmp_path).get('sessions'))


def test_namespace_selects_file(tmp_path: Path) -> None:
    asyncio.run(LocalJsonBackend(tmp_path, namespace='other').set('k', 1))

    assert json.loads((tmp_path / 'other.json').read_text(encoding='utf-8')) == {'k': 1}


def test_base_path_must_be_directory(tmp_path: Path) -> None:
    not_a_dir = tmp_path / 'file'
    not_a_dir.write_text('x', encoding='utf-8')

    with pytest.raises(ValueError):
        LocalJsonBackend(not_a_dir)
