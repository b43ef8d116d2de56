"""Hourly snapshot aggregator - protocol-wide rollups of normalized state.

A snapshot describes the protocol as of its boundary: only events with a
block timestamp before the boundary count. When ingestion has already
moved past a boundary, the aggregator replays the raw log up to it inside
a savepoint that is discarded afterwards, so live state is never touched.
"""

from __future__ import annotations

import logging
from typing import Iterable

from stfuel_tracker.interfaces.store import Store
from stfuel_tracker.models.records import HourlySnapshotRecord
from stfuel_tracker.projection.engine import ProjectionEngine
from stfuel_tracker.storage.sqlite import StoreSession

log = logging.getLogger(__name__)

HOUR = 3600


def hour_floor(timestamp: int) -> int:
    """Most recent hour boundary at or before ``timestamp``."""
    return timestamp - timestamp % HOUR


class SnapshotAggregator:
    """Computes and persists one snapshot per hour boundary.

    Taking a snapshot for a boundary that already has one returns the
    stored row unchanged.
    """

    def __init__(self, store: Store, engine: ProjectionEngine) -> None:
        self._store = store
        self._engine = engine

    async def take_snapshot(self, boundary: int) -> HourlySnapshotRecord:
        (snap,) = await self.take_snapshots([boundary])
        return snap

    async def take_snapshots(self, boundaries: Iterable[int]) -> list[HourlySnapshotRecord]:
        """Snapshot every boundary, oldest first, in one transaction."""
        wanted = sorted(set(boundaries))
        for boundary in wanted:
            if boundary % HOUR:
                raise ValueError(f"{boundary} is not an hour boundary")

        async with self._store.transaction() as session:
            missing = [b for b in wanted if await session.get_snapshot(b) is None]
            if missing:
                for snap in await self._compute_as_of(session, missing):
                    await session.insert_snapshot(snap)
                    log.info(
                        "Snapshot %d: block=%d supply=%d staked=%d holders=%d nodes=%d",
                        snap.snapshot_timestamp, snap.block_number, snap.stfuel_total_supply,
                        snap.tfuel_staked_amount, snap.current_holders_count,
                        snap.edge_nodes_count,
                    )
            stored = [await session.get_snapshot(b) for b in wanted]

        return [snap for snap in stored if snap is not None]

    async def _compute_as_of(
        self, session: StoreSession, boundaries: list[int],
    ) -> list[HourlySnapshotRecord]:
        bounds = await session.raw_timestamp_range()
        if bounds is None or bounds[1] < boundaries[0]:
            # Nothing recorded at or after the first boundary: live state is as-of state
            return [await self._compute(session, b) for b in boundaries]

        snaps: list[HourlySnapshotRecord] = []
        pending = iter(boundaries)
        boundary = next(pending, None)
        async with session.scratch():
            await session.reset_projection()
            events = await session.ordered_raw_events(before_timestamp=boundaries[-1])
            for role, event in events:
                while boundary is not None and event.block_timestamp >= boundary:
                    snaps.append(await self._compute(session, boundary))
                    boundary = next(pending, None)
                await self._engine.project(session, role, event)
            while boundary is not None:
                snaps.append(await self._compute(session, boundary))
                boundary = next(pending, None)
        log.debug("Computed %d snapshots from %d replayed events", len(snaps), len(events))
        return snaps

    async def _compute(self, session: StoreSession, boundary: int) -> HourlySnapshotRecord:
        nodes = await session.list_edge_nodes()
        users = await session.list_users()

        return HourlySnapshotRecord(
            snapshot_timestamp=boundary,
            block_number=await session.last_block_before(boundary) or 0,
            tfuel_backing_amount=await session.latest_net_assets(boundary) or 0,
            tfuel_staked_amount=sum(n.net_staked for n in nodes),
            stfuel_total_supply=sum(u.balance for u in users),
            current_holders_count=sum(1 for u in users if u.balance > 0),
            historical_holders_count=sum(1 for u in users if u.has_held),
            total_referral_rewards=sum(u.total_referral_fees_earned for u in users),
            edge_nodes_count=sum(1 for n in nodes if n.net_staked > 0),
            total_keeper_tips_paid=sum(u.total_keeper_fees_earned for u in users),
        )
