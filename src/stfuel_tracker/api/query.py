"""Query service - read-only views over committed projection state."""

from __future__ import annotations

import logging

from stfuel_tracker.interfaces.store import Store
from stfuel_tracker.models.config import TrackerConfig
from stfuel_tracker.models.records import RedemptionStatus
from stfuel_tracker.models.views import (
    EdgeNodeView,
    FlagView,
    RedemptionView,
    SnapshotView,
    SyncStatusView,
    UserView,
    cursor_view,
)
from stfuel_tracker.projection.lifecycle import state_of

log = logging.getLogger(__name__)


class QueryService:
    """Answers entity and rollup queries for API and CLI clients.

    Reads never observe a partially applied event.
    """

    def __init__(self, store: Store, cfg: TrackerConfig) -> None:
        self._store = store
        self._cfg = cfg

    # ── Edge nodes ─────────────────────────────────────────

    async def edge_node(self, address: str) -> EdgeNodeView | None:
        async with self._store.read() as session:
            node = await session.get_edge_node(address)
        if node is None:
            return None
        return EdgeNodeView.from_record(node, state_of(node).value)

    async def edge_nodes(
        self, active: bool | None = None, faulty: bool | None = None,
    ) -> list[EdgeNodeView]:
        async with self._store.read() as session:
            nodes = await session.list_edge_nodes(active=active, faulty=faulty)
        return [EdgeNodeView.from_record(n, state_of(n).value) for n in nodes]

    # ── Users and redemptions ──────────────────────────────

    async def user(self, address: str) -> UserView | None:
        async with self._store.read() as session:
            user = await session.get_user(address)
            if user is None:
                return None
            entries = await session.list_redemptions(address=address)
        return UserView.from_record(user, entries)

    async def redemptions(
        self, address: str | None = None, status: RedemptionStatus | str | None = None,
    ) -> list[RedemptionView]:
        if isinstance(status, str):
            status = RedemptionStatus(status.lower())
        async with self._store.read() as session:
            entries = await session.list_redemptions(address=address, status=status)
        return [RedemptionView.from_record(e) for e in entries]

    # ── Snapshots ──────────────────────────────────────────

    async def snapshots(
        self, start: int | None = None, end: int | None = None,
    ) -> list[SnapshotView]:
        async with self._store.read() as session:
            snaps = await session.snapshots_between(start, end)
        return [SnapshotView.from_record(s) for s in snaps]

    async def latest_snapshot(self) -> SnapshotView | None:
        async with self._store.read() as session:
            snap = await session.latest_snapshot()
        return SnapshotView.from_record(snap) if snap else None

    # ── Operations ─────────────────────────────────────────

    async def sync_status(self) -> SyncStatusView:
        async with self._store.read() as session:
            contracts = []
            for contract in self._cfg.contracts:
                cursor = await session.get_cursor(contract.role.value)
                count = await session.count_raw_events(contract.role)
                contracts.append(
                    cursor_view(contract.role.value, contract.address, cursor, count)
                )
            open_flags = await session.count_flags()
            latest = await session.latest_snapshot()
        return SyncStatusView(
            contracts=contracts,
            open_flags=open_flags,
            latest_snapshot=latest.snapshot_timestamp if latest else None,
        )

    async def flags(self, limit: int = 100) -> list[FlagView]:
        async with self._store.read() as session:
            flags = await session.list_flags(limit)
        return [FlagView.from_record(f) for f in flags]
