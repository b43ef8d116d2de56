"""Hourly snapshot scheduler - snapshots each hour once ingestion has passed it."""

from __future__ import annotations

import asyncio
import logging

from stfuel_tracker.interfaces.store import Store
from stfuel_tracker.models.config import TrackerConfig
from stfuel_tracker.models.records import HourlySnapshotRecord
from stfuel_tracker.snapshots.aggregator import HOUR, SnapshotAggregator, hour_floor

log = logging.getLogger(__name__)

# One week of hours; a longer backlog continues on the next tick
MAX_BOUNDARIES_PER_TICK = 24 * 7


class HourlySnapshotScheduler:
    """Ticks on a timer and snapshots every hour boundary behind the frontier.

    The frontier is the lowest block timestamp every tracked contract has
    been ingested through. A tick that fires while the previous one is
    still running is skipped.
    """

    def __init__(
        self,
        store: Store,
        aggregator: SnapshotAggregator,
        cfg: TrackerConfig,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._cfg = cfg
        self._tick_lock = asyncio.Lock()
        self._running = False

    async def frontier(self) -> int | None:
        async with self._store.read() as session:
            timestamps = []
            for contract in self._cfg.contracts:
                cursor = await session.get_cursor(contract.role.value)
                if cursor is None or cursor.last_timestamp is None:
                    return None
                timestamps.append(cursor.last_timestamp)
        return min(timestamps) if timestamps else None

    async def pending_boundaries(self, frontier: int) -> list[int]:
        """Hour boundaries without a snapshot, oldest first, up to the frontier.

        Starts at the first boundary after the earliest recorded event.
        """
        last = hour_floor(frontier)
        async with self._store.read() as session:
            bounds = await session.raw_timestamp_range()
            first = hour_floor(bounds[0]) + HOUR if bounds is not None else last
            taken = {s.snapshot_timestamp for s in await session.snapshots_between(first, last)}
        missing = [b for b in range(first, last + 1, HOUR) if b not in taken]
        return missing[:MAX_BOUNDARIES_PER_TICK]

    async def tick(self) -> list[HourlySnapshotRecord]:
        """Snapshot every hour the frontier has passed. Returns the new rows."""
        if self._tick_lock.locked():
            log.debug("Snapshot tick still running, skipping")
            return []

        async with self._tick_lock:
            frontier = await self.frontier()
            if frontier is None:
                log.debug("No ingestion frontier yet")
                return []
            boundaries = await self.pending_boundaries(frontier)
            if not boundaries:
                return []
            if len(boundaries) > 1:
                log.info(
                    "Backfilling %d hourly snapshots (%d-%d)",
                    len(boundaries), boundaries[0], boundaries[-1],
                )
            return await self._aggregator.take_snapshots(boundaries)

    async def run_forever(self) -> None:
        self._running = True
        log.info("Snapshot scheduler started (tick=%ds)", self._cfg.snapshot_tick)
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                log.error("Snapshot tick failed: %s", exc, exc_info=True)
            await asyncio.sleep(self._cfg.snapshot_tick)

    def stop(self) -> None:
        self._running = False
