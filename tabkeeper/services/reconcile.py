"""
Identity reconciliation between recorded and live tabs.

Two correlation strategies, one per boundary:

- UrlCorrelation: crossing a capture/restore boundary. Live ids are new, so
  recorded tabs are found by URL with a three-tier fallback: exact url, then
  pending_url (tab still loading), then normalized URL (scheme stripped, e.g.
  after an http -> https redirect).
- IdCorrelation: undo against the same running environment. Recorded ids are
  usually still valid and are tried first; the recorded tab's URL is the
  fallback when the tab was closed and reopened in between. Tabs still holding
  a recorded id are never taken by the URL fallback.

Both claim each live tab at most once per pass, so two records sharing a URL
map to two distinct live tabs in order instead of both hitting the first one.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence

from tabkeeper.schemas.live import LiveTab
from tabkeeper.schemas.undo import UndoTabState
from tabkeeper.types import TabId
from tabkeeper.urls import normalize_url

__all__ = ['IdCorrelation', 'UrlCorrelation', 'find_tab_by_url']


def find_tab_by_url(tabs: Iterable[LiveTab], target_url: str) -> LiveTab | None:
    """
    First tab matching `target_url` through the fallback chain.

    Tiers, in order: exact url, exact pending_url, normalized url/pending_url.
    """
    candidates = list(tabs)

    for tab in candidates:
        if tab.url == target_url:
            return tab

    for tab in candidates:
        if tab.pending_url == target_url:
            return tab

    normalized_target = normalize_url(target_url)
    for tab in candidates:
        if normalize_url(tab.effective_url or '') == normalized_target:
            return tab

    return None


class UrlCorrelation:
    """Matches recorded URLs to freshly created live tabs."""

    def __init__(self, tabs: Sequence[LiveTab], *, include: Callable[[LiveTab], bool] | None = None) -> None:
        """
        Args:
            tabs: Live tabs of one window
            include: Optional filter; tabs failing it are never matched (e.g. pinned tabs)
        """
        self._tabs = [tab for tab in tabs if include is None or include(tab)]
        self._claimed: set[TabId] = set()

    def claim(self, url: str) -> LiveTab | None:
        """Match `url` to an unclaimed tab and claim it."""
        tab = find_tab_by_url((t for t in self._tabs if t.id not in self._claimed), url)
        if tab is not None:
            self._claimed.add(tab.id)
        return tab


class IdCorrelation:
    """
    Matches recorded tab ids to tabs of the same live environment.

    A live tab that still carries a recorded id belongs to that record, so the
    URL fallback never hands it to another record, even one resolved earlier.
    """

    def __init__(self, live_tabs: Sequence[LiveTab], recorded_tabs: Sequence[UndoTabState]) -> None:
        self._recorded = {tab.id: tab for tab in recorded_tabs}
        self._claimed: set[TabId] = set()
        self.refresh(live_tabs)

    def refresh(self, live_tabs: Sequence[LiveTab]) -> None:
        """Swap in a re-queried tab list, keeping earlier claims."""
        self._live = {tab.id: tab for tab in live_tabs}
        self._live_order = list(live_tabs)

    def claim(self, recorded_id: TabId) -> LiveTab | None:
        """Resolve a recorded tab id: same id first, then the recorded URL (exact match)."""
        tab = self._live.get(recorded_id)
        if tab is not None and tab.id not in self._claimed:
            self._claimed.add(tab.id)
            return tab

        recorded = self._recorded.get(recorded_id)
        if recorded is None or not recorded.url:
            return None

        for candidate in self._live_order:
            if candidate.id in self._claimed or candidate.id in self._recorded:
                continue
            if candidate.url == recorded.url:
                self._claimed.add(candidate.id)
                return candidate
        return None
