"""Tests for retention of system-generated snapshots."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from tabkeeper.repositories.sessions import SessionStore
from tabkeeper.schemas.snapshot import AUTO_SAVE_PREFIX, RECOVERY_PREFIX, Snapshot, TabRecord, WindowRecord
from tabkeeper.services.retention import RetentionService

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=UTC)


def stored(name: str, timestamp: int) -> Snapshot:
    return Snapshot(
        name=name,
        timestamp=timestamp,
        windows=[WindowRecord(tabs=[TabRecord(url='https://example.com')])],
    )


def fill(store: SessionStore, snapshots: list[Snapshot]) -> None:
    async def scenario() -> None:
        for snapshot in snapshots:
            await store.put(snapshot)

    asyncio.run(scenario())


def names(store: SessionStore) -> list[str]:
    return [s.name for s in asyncio.run(store.list())]


def test_prune_keeps_newest_matching(store: SessionStore) -> None:
    fill(store, [stored(f'{RECOVERY_PREFIX}{n})', timestamp=n) for n in range(6)] + [stored('Manual', timestamp=0)])

    removed = asyncio.run(RetentionService(store).prune(RECOVERY_PREFIX, 3))

    assert removed == 3
    assert names(store) == [f'{RECOVERY_PREFIX}5)', f'{RECOVERY_PREFIX}4)', f'{RECOVERY_PREFIX}3)', 'Manual']


def test_prune_is_idempotent(store: SessionStore) -> None:
    fill(store, [stored(f'{AUTO_SAVE_PREFIX}{n})', timestamp=n) for n in range(4)])
    retention = RetentionService(store)

    first = asyncio.run(retention.prune(AUTO_SAVE_PREFIX, 2))
    after_first = names(store)
    second = asyncio.run(retention.prune(AUTO_SAVE_PREFIX, 2))

    assert (first, second) == (2, 0)
    assert names(store) == after_first


def test_prune_leaves_other_prefixes_alone(store: SessionStore) -> None:
    fill(
        store,
        [
            stored(f'{AUTO_SAVE_PREFIX}a)', timestamp=1),
            stored(f'{RECOVERY_PREFIX}b)', timestamp=2),
            stored('Recovery notes', timestamp=3),
        ],
    )

    removed = asyncio.run(RetentionService(store).prune(RECOVERY_PREFIX, 0))

    assert removed == 1
    assert names(store) == ['Recovery notes', f'{AUTO_SAVE_PREFIX}a)']


def test_prune_on_empty_store(store: SessionStore) -> None:
    assert asyncio.run(RetentionService(store).prune(AUTO_SAVE_PREFIX, 5)) == 0


def test_negative_max_count_is_rejected(store: SessionStore) -> None:
    with pytest.raises(ValueError):
        asyncio.run(RetentionService(store).prune(AUTO_SAVE_PREFIX, -1))


def test_prune_older_than(store: SessionStore) -> None:
    day_ms = 24 * 60 * 60 * 1000
    now_ms = int(NOW.timestamp() * 1000)
    fill(
        store,
        [
            stored(f'{RECOVERY_PREFIX}old)', timestamp=now_ms - 10 * day_ms),
            stored(f'{RECOVERY_PREFIX}recent)', timestamp=now_ms - 2 * day_ms),
            stored('Manual old', timestamp=now_ms - 30 * day_ms),
        ],
    )

    removed = asyncio.run(RetentionService(store).prune_older_than(RECOVERY_PREFIX, timedelta(days=7), now=NOW))

    assert removed == 1
    assert names(store) == [f'{RECOVERY_PREFIX}recent)', 'Manual old']
