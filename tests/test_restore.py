"""Tests for the restore engine."""

from __future__ import annotations

import asyncio
import time

import pytest

from tabkeeper.environment.memory import InMemoryEnvironment
from tabkeeper.exceptions import InvalidSessionError, SessionNotFoundError
from tabkeeper.repositories.sessions import SessionStore
from tabkeeper.schemas.snapshot import GroupRecord, Snapshot, TabRecord, WindowRecord
from tabkeeper.services.capture import CaptureService
from tabkeeper.services.restore import GroupingOptions, SessionRestoreService, place_groups

from conftest import FAST_POLICY

MAIL = 'https://mail.x.com'
DOCS = 'https://docs.x.com'
NEWS = 'https://news.x.com'


def work_news_snapshot(active_url: str = MAIL) -> Snapshot:
    return Snapshot(
        name='Work and News',
        windows=[
            WindowRecord(
                tabs=[
                    TabRecord(url=MAIL, active=active_url == MAIL),
                    TabRecord(url=DOCS, active=active_url == DOCS),
                    TabRecord(url=NEWS, active=active_url == NEWS),
                ]
            )
        ],
        groups=[
            GroupRecord(title='Work', color='blue', tab_urls=[MAIL, DOCS]),
            GroupRecord(title='News', color='red', tab_urls=[NEWS]),
        ],
    )


def live_groups(env: InMemoryEnvironment, window_id: int) -> dict[str, set[str | None]]:
    tabs = env.tabs_in(window_id)
    return {g.title: {t.url for t in tabs if t.group_id == g.id} for g in env.groups_in(window_id)}


def arrangement(env: InMemoryEnvironment) -> tuple[set[tuple[str, bool]], set[tuple[str, str, bool, tuple[str, ...]]]]:
    """Order-independent view: (url, pinned) pairs and (title, color, collapsed, urls) groups."""
    for window_id in env.window_ids:
        # Polling lets tabs that are still loading settle on their URL
        for _ in range(3):
            asyncio.run(env.query_tabs(window_id))
    snapshot = asyncio.run(CaptureService(env).capture('arrangement'))
    tabs = {(t.url, t.pinned) for w in snapshot.windows for t in w.tabs}
    groups = {(g.title, g.color, g.collapsed, tuple(sorted(g.tab_urls))) for g in snapshot.groups}
    return tabs, groups


def test_work_news_scenario(target_env: InMemoryEnvironment, restorer: SessionRestoreService) -> None:
    result = asyncio.run(restorer.restore_snapshot(work_news_snapshot()))

    assert len(target_env.window_ids) == 1
    window_id = target_env.window_ids[0]
    assert live_groups(target_env, window_id) == {'Work': {MAIL, DOCS}, 'News': {NEWS}}
    active = [t for t in target_env.tabs_in(window_id) if t.active]
    assert [t.url for t in active] == [MAIL]
    assert result.windows_restored == 1
    assert result.groups_restored == 2
    assert result.groups_skipped == []


def test_active_tab_is_restored(target_env: InMemoryEnvironment, restorer: SessionRestoreService) -> None:
    result = asyncio.run(restorer.restore_snapshot(work_news_snapshot(active_url=DOCS)))

    window_id = target_env.window_ids[0]
    assert [t.url for t in target_env.tabs_in(window_id) if t.active] == [DOCS]
    assert result.windows[0].active_restored


def test_round_trip_reproduces_arrangement(
    env: InMemoryEnvironment,
    store: SessionStore,
) -> None:
    window = env.add_window(focused=True)
    env.add_tab(window, 'https://cal.x.com', title='Calendar', pinned=True)
    mail = env.add_tab(window, MAIL, active=True)
    docs = env.add_tab(window, DOCS)
    news = env.add_tab(window, NEWS)
    env.add_tab(window, 'https://loose.example')
    env.add_group([mail, docs], title='Work', color='blue')
    env.add_group([news], title='News', color='red', collapsed=True)
    other = env.add_window()
    env.add_tab(other, 'https://second.example/a')
    env.add_tab(other, 'https://second.example/b')

    snapshot = asyncio.run(CaptureService(env).capture('round trip'))
    asyncio.run(store.put(snapshot))

    # Tabs in the target load slowly, so early matches go through pending URLs
    target = InMemoryEnvironment(settle_after_polls=2, first_id=500)
    service = SessionRestoreService(target, store, policy=FAST_POLICY)
    asyncio.run(service.restore(snapshot.id))

    assert arrangement(target) == arrangement(env)
    assert len(target.window_ids) == 2


def test_pending_url_fallback_when_nothing_settled(store: SessionStore) -> None:
    target = InMemoryEnvironment(settle_after_polls=100, first_id=500)
    service = SessionRestoreService(target, store, policy=FAST_POLICY)

    asyncio.run(service.restore_snapshot(work_news_snapshot()))

    window_id = target.window_ids[0]
    tabs = target.tabs_in(window_id)
    assert all(t.url is None for t in tabs)
    members = {g.title: {t.pending_url for t in tabs if t.group_id == g.id} for g in target.groups_in(window_id)}
    assert members == {'Work': {MAIL, DOCS}, 'News': {NEWS}}


def test_normalized_match_after_redirect(store: SessionStore) -> None:
    target = InMemoryEnvironment(redirects={'http://example.com/a': 'https://example.com/a'}, first_id=500)
    service = SessionRestoreService(target, store, policy=FAST_POLICY)
    snapshot = Snapshot(
        name='redirect',
        windows=[WindowRecord(tabs=[TabRecord(url='https://start.example'), TabRecord(url='http://example.com/a')])],
        groups=[GroupRecord(title='Redirected', tab_urls=['http://example.com/a'])],
    )

    result = asyncio.run(service.restore_snapshot(snapshot))

    assert result.groups_restored == 1
    window_id = target.window_ids[0]
    assert live_groups(target, window_id) == {'Redirected': {'https://example.com/a'}}


def test_failed_tab_creation_is_isolated(target_env: InMemoryEnvironment, restorer: SessionRestoreService) -> None:
    target_env.fail('create_tab', DOCS)

    result = asyncio.run(restorer.restore_snapshot(work_news_snapshot()))

    report = result.windows[0]
    assert report.tabs_failed == 1
    assert report.tabs_present == 2
    assert live_groups(target_env, target_env.window_ids[0]) == {'Work': {MAIL}, 'News': {NEWS}}


def test_remaining_tabs_are_created_concurrently(store: SessionStore) -> None:
    target = InMemoryEnvironment(creation_latency=0.1, first_id=500)
    service = SessionRestoreService(target, store, policy=FAST_POLICY)
    urls = [f'https://site{n}.example/' for n in range(11)]
    snapshot = Snapshot(name='wide', windows=[WindowRecord(tabs=[TabRecord(url=url) for url in urls])])

    start = time.monotonic()
    result = asyncio.run(service.restore_snapshot(snapshot))
    elapsed = time.monotonic() - start

    # One-at-a-time creation would take at least 11 * 0.1s
    assert elapsed < 0.6
    assert result.windows_restored == 1
    assert sorted(t.url for t in target.tabs_in(target.window_ids[0])) == sorted(urls)


def test_failed_window_does_not_stop_other_windows(
    target_env: InMemoryEnvironment,
    restorer: SessionRestoreService,
) -> None:
    snapshot = Snapshot(
        name='two windows',
        windows=[
            WindowRecord(tabs=[TabRecord(url='https://broken.example')]),
            WindowRecord(tabs=[TabRecord(url='https://fine.example')]),
        ],
    )
    target_env.fail('create_window', 'https://broken.example')

    result = asyncio.run(restorer.restore_snapshot(snapshot))

    assert result.windows_restored == 1
    assert result.windows[0].new_window_id is None
    assert result.windows[0].skipped_reason
    assert len(target_env.window_ids) == 1


def test_failed_group_is_reported_as_skipped(target_env: InMemoryEnvironment, restorer: SessionRestoreService) -> None:
    target_env.fail('update_group')

    result = asyncio.run(restorer.restore_snapshot(work_news_snapshot()))

    assert result.groups_restored == 0
    assert sorted(result.groups_skipped) == ['News', 'Work']


def test_unknown_session_raises_before_mutation(
    target_env: InMemoryEnvironment,
    restorer: SessionRestoreService,
) -> None:
    with pytest.raises(SessionNotFoundError):
        asyncio.run(restorer.restore('does-not-exist'))

    assert target_env.mutations == []


def test_empty_session_raises_before_mutation(
    target_env: InMemoryEnvironment,
    store: SessionStore,
    restorer: SessionRestoreService,
) -> None:
    empty = Snapshot(name='empty')
    asyncio.run(store.put(empty))

    with pytest.raises(InvalidSessionError):
        asyncio.run(restorer.restore(empty.id))

    assert target_env.mutations == []


def test_failed_tab_listing_reports_partial_window(
    target_env: InMemoryEnvironment,
    restorer: SessionRestoreService,
) -> None:
    target_env.fail('query_tabs')

    result = asyncio.run(restorer.restore_snapshot(work_news_snapshot()))

    report = result.windows[0]
    assert report.new_window_id is not None
    assert report.skipped_reason is not None
    assert sorted(report.groups_skipped) == ['News', 'Work']
    assert result.groups_restored == 0


def test_grouping_options(target_env: InMemoryEnvironment, restorer: SessionRestoreService) -> None:
    options = GroupingOptions(skip_single_tab_groups=True, auto_collapse_groups=True)

    result = asyncio.run(restorer.restore_snapshot(work_news_snapshot(), options=options))

    groups = target_env.groups_in(target_env.window_ids[0])
    assert [g.title for g in groups] == ['Work']
    assert groups[0].collapsed
    assert result.groups_skipped == ['News']


def test_duplicate_urls_map_to_distinct_tabs(target_env: InMemoryEnvironment, restorer: SessionRestoreService) -> None:
    dup = 'https://dup.example'
    snapshot = Snapshot(
        name='dups',
        windows=[WindowRecord(tabs=[TabRecord(url=dup), TabRecord(url=dup)])],
        groups=[GroupRecord(title='First', tab_urls=[dup]), GroupRecord(title='Second', tab_urls=[dup])],
    )

    asyncio.run(restorer.restore_snapshot(snapshot))

    window_id = target_env.window_ids[0]
    tabs = target_env.tabs_in(window_id)
    groups = target_env.groups_in(window_id)
    assert sorted(g.title for g in groups) == ['First', 'Second']
    assert len({t.group_id for t in tabs}) == 2


def test_pinned_tabs_are_not_grouped(target_env: InMemoryEnvironment, restorer: SessionRestoreService) -> None:
    url = 'https://same.example'
    snapshot = Snapshot(
        name='pins',
        windows=[WindowRecord(tabs=[TabRecord(url=url, pinned=True), TabRecord(url=url)])],
        groups=[GroupRecord(title='Group', tab_urls=[url])],
    )

    result = asyncio.run(restorer.restore_snapshot(snapshot))

    tabs = target_env.tabs_in(target_env.window_ids[0])
    assert [t.pinned for t in tabs] == [True, False]
    assert tabs[0].group_id is None
    assert tabs[1].group_id is not None
    assert result.windows[0].pinned_restored == 1


def test_group_with_no_matching_window_is_unplaced(
    target_env: InMemoryEnvironment,
    restorer: SessionRestoreService,
) -> None:
    snapshot = work_news_snapshot().model_copy(
        update={'groups': [*work_news_snapshot().groups, GroupRecord(title='Ghost', tab_urls=['https://gone.example'])]}
    )

    result = asyncio.run(restorer.restore_snapshot(snapshot))

    assert list(result.unplaced_groups) == ['Ghost']
    assert 'Ghost' in result.groups_skipped


def test_groups_placed_by_original_group_id() -> None:
    shared = 'https://shared.example'
    snapshot = Snapshot(
        name='placement',
        windows=[
            WindowRecord(tabs=[TabRecord(url=shared)]),
            WindowRecord(tabs=[TabRecord(url=shared, original_group_id=7)]),
        ],
        groups=[GroupRecord(original_id=7, title='Second window', tab_urls=[shared])],
    )

    per_window, unplaced = place_groups(snapshot)

    assert per_window[0] == []
    assert [g.title for g in per_window[1]] == ['Second window']
    assert unplaced == []


def test_window_without_restorable_urls_is_skipped(
    target_env: InMemoryEnvironment,
    restorer: SessionRestoreService,
) -> None:
    snapshot = Snapshot(
        name='internal',
        windows=[
            WindowRecord(tabs=[TabRecord(url='chrome://settings')]),
            WindowRecord(tabs=[TabRecord(url='https://example.com')]),
        ],
    )

    result = asyncio.run(restorer.restore_snapshot(snapshot))

    assert result.windows[0].skipped_reason == 'no restorable tabs'
    assert result.windows_restored == 1
