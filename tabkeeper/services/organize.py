"""
Organize actions - grouping mutations that are recorded for undo.

Each action pushes an undo entry before touching the environment, so the
previous arrangement can be replayed with UndoService.undo_last().
"""

from __future__ import annotations

import logging

from tabkeeper.config import settings
from tabkeeper.environment.protocol import TabEnvironment
from tabkeeper.exceptions import OperationFailedError, PartialEntityFailure, TabKeeperError
from tabkeeper.protocols import LoggerProtocol, NullLogger
from tabkeeper.services.undo import UndoService
from tabkeeper.types import GroupColor, TabId, WindowId
from tabkeeper.urls import domain_of, is_restorable_url

__all__ = ['DOMAIN_GROUP_COLORS', 'OrganizeService']

logger = logging.getLogger(__name__)

# Colors cycled through for domain groups
DOMAIN_GROUP_COLORS: tuple[GroupColor, ...] = ('grey', 'blue', 'red', 'yellow', 'green', 'pink', 'purple', 'cyan')


class OrganizeService:
    def __init__(
        self,
        environment: TabEnvironment,
        undo: UndoService,
        auto_collapse_groups: bool | None = None,
    ) -> None:
        self.environment = environment
        self.undo = undo
        self.auto_collapse_groups = (
            auto_collapse_groups if auto_collapse_groups is not None else settings.AUTO_COLLAPSE_GROUPS
        )

    async def group_by_domain(self, window_id: WindowId, logger: LoggerProtocol | None = None) -> dict[str, int]:
        """
        Regroup a window's tabs by hostname.

        Existing groups are dissolved first. A domain gets a group only when
        more than one tab shares it; pinned tabs and internal pages are left
        alone.

        Returns:
            Domain -> number of tabs grouped, for the groups that were created

        Raises:
            OperationFailedError: If there were groups to create and all of them failed
        """
        operator = logger or NullLogger()
        await self._record('group-by-domain', operator)
        try:
            await self._ungroup(window_id)
            tabs = await self.environment.query_tabs(window_id)
        except PartialEntityFailure as e:
            raise OperationFailedError(f'Failed to group tabs: {e.reason}') from e

        by_domain: dict[str, list[TabId]] = {}
        for tab in tabs:
            if tab.pinned or not is_restorable_url(tab.url):
                continue
            domain = domain_of(tab.url)
            if domain is None:
                continue
            by_domain.setdefault(domain, []).append(tab.id)

        wanted = {domain: tab_ids for domain, tab_ids in by_domain.items() if len(tab_ids) > 1}
        created = await self._create_domain_groups(window_id, wanted)
        await operator.info(f'Created {len(created)} domain groups')
        return created

    async def ungroup_all(self, window_id: WindowId, logger: LoggerProtocol | None = None) -> int:
        """
        Ungroup every grouped tab in a window.

        Returns:
            Number of tabs ungrouped

        Raises:
            OperationFailedError: If the tabs could not be ungrouped
        """
        operator = logger or NullLogger()
        await self._record('ungroup-all', operator)
        try:
            count = await self._ungroup(window_id)
        except PartialEntityFailure as e:
            raise OperationFailedError(f'Failed to ungroup tabs: {e.reason}') from e
        await operator.info(f'Ungrouped {count} tabs')
        return count

    async def _create_domain_groups(self, window_id: WindowId, wanted: dict[str, list[TabId]]) -> dict[str, int]:
        created: dict[str, int] = {}
        last_error: PartialEntityFailure | None = None

        for domain, tab_ids in wanted.items():
            try:
                group_id = await self.environment.group_tabs(tab_ids, window_id)
                await self.environment.update_group(
                    group_id,
                    title=domain,
                    color=DOMAIN_GROUP_COLORS[len(created) % len(DOMAIN_GROUP_COLORS)],
                    collapsed=self.auto_collapse_groups,
                )
            except PartialEntityFailure as e:
                logger.warning('Could not group %s: %s', domain, e)
                last_error = e
                continue
            created[domain] = len(tab_ids)

        if wanted and not created:
            raise OperationFailedError(f'Failed to create groups: {len(wanted)} groups failed') from last_error
        return created

    async def _record(self, action_type: str, operator: LoggerProtocol) -> None:
        try:
            await self.undo.record_before(action_type)
        except TabKeeperError as e:
            # The action still runs; it just cannot be undone
            await operator.warning(f'Could not record undo state: {e}')

    async def _ungroup(self, window_id: WindowId) -> int:
        tabs = await self.environment.query_tabs(window_id)
        grouped = [tab.id for tab in tabs if tab.group_id is not None]
        if grouped:
            await self.environment.ungroup_tabs(grouped)
        return len(grouped)
