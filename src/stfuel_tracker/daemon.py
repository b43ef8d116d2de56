"""Main daemon loop - wires the ingestion worker and the snapshot scheduler."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections import Counter

from stfuel_tracker.chain.rpc import JsonRpcLogSource
from stfuel_tracker.interfaces.source import LogSource
from stfuel_tracker.interfaces.store import Store
from stfuel_tracker.models.config import ContractConfig, TrackerConfig
from stfuel_tracker.models.events import ContractRole, RawEvent
from stfuel_tracker.projection.engine import ProjectionEngine
from stfuel_tracker.snapshots.aggregator import SnapshotAggregator
from stfuel_tracker.snapshots.scheduler import HourlySnapshotScheduler
from stfuel_tracker.storage.sqlite import SQLiteStore

log = logging.getLogger(__name__)


class TrackerDaemon:
    """Event ingestion daemon for the sTFuel protocol contracts.

    Runs one ingestion worker that walks every contract over the same
    block ranges, plus the hourly snapshot scheduler. Both share one
    store; its transactions are serialized.
    """

    def __init__(
        self,
        cfg: TrackerConfig,
        store: Store | None = None,
        sources: dict[ContractRole, LogSource] | None = None,
    ) -> None:
        self._cfg = cfg
        self._running = False
        self._stop_requested = False

        self.store: Store = store or SQLiteStore(cfg.db_path)
        self.engine = ProjectionEngine(self.store, cfg)
        self.aggregator = SnapshotAggregator(self.store, self.engine)
        self.scheduler = HourlySnapshotScheduler(self.store, self.aggregator, cfg)
        self.sources: dict[ContractRole, LogSource] = sources or {
            c.role: JsonRpcLogSource(cfg.rpc_url, c.address, cfg.rpc_timeout, cfg.rpc_retries)
            for c in cfg.contracts
        }

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Initialize the store and run until stopped."""
        log.info("Starting stfuel_tracker daemon")
        log.info("  RPC: %s", self._cfg.rpc_url)
        for contract in self._cfg.contracts:
            log.info("  %s: %s (from block %d)",
                     contract.role.value, contract.address, contract.start_block)
        log.info("  DB: %s", self._cfg.db_path)

        await self.store.initialize()
        self._running = True

        tasks = [asyncio.create_task(self._worker(), name="ingest")]
        if self._cfg.snapshots_enabled:
            tasks.append(asyncio.create_task(self.scheduler.run_forever(), name="snapshots"))

        try:
            while self._running:
                await asyncio.sleep(0.5)
        finally:
            self.scheduler.stop()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for source in self.sources.values():
                await source.close()
            await self.store.close()
            log.info("Daemon shut down cleanly")

    async def stop(self) -> None:
        """Signal the daemon to stop gracefully."""
        log.info("Stop requested")
        self._running = False
        self._stop_requested = True

    async def _worker(self) -> None:
        """Ingestion loop over every tracked contract."""
        log.info("Ingestion worker started")
        while self._running:
            try:
                advanced = await self.sync_once()
                if not advanced:
                    await asyncio.sleep(self._cfg.poll_interval)
            except asyncio.CancelledError:
                log.info("Ingestion worker cancelled")
                break
            except Exception as exc:
                log.error("Ingestion worker error: %s", exc, exc_info=True)
                await asyncio.sleep(self._cfg.error_backoff)

    async def _cursors(self) -> dict[str, int]:
        """Last ingested block per contract, creating missing cursors."""
        cursors: dict[str, int] = {}
        async with self.store.transaction() as session:
            for contract in self._cfg.contracts:
                key = contract.role.value
                cursor = await session.get_cursor(key)
                if cursor is None:
                    cursors[key] = contract.start_block - 1
                    await session.set_cursor(key, cursors[key])
                else:
                    cursors[key] = cursor.last_block
        return cursors

    async def sync_once(self) -> int:
        """Fetch and ingest the next block range across all contracts.

        Logs from every contract in the range are merged into chain order
        before ingestion. Returns the number of blocks the slowest cursor
        advanced (0 when caught up, interrupted, or rewound by a reorg).
        """
        cursors = await self._cursors()
        if not cursors:
            return 0
        low = min(cursors.values())

        head = min([
            await self.sources[c.role].latest_block() for c in self._cfg.contracts
        ]) - self._cfg.confirmations
        if head <= low:
            return 0
        to_block = min(low + self._cfg.batch_size, head)

        fetched: list[ContractConfig] = []
        events: list[RawEvent] = []
        for contract in self._cfg.contracts:
            last_block = cursors[contract.role.value]
            if last_block >= to_block:
                continue
            events.extend(await self.sources[contract.role].fetch(last_block + 1, to_block))
            fetched.append(contract)
        events.sort(key=lambda e: e.coordinate)

        epoch = self.engine.reorg_epoch
        outcomes: Counter[str] = Counter()
        for event in events:
            if self._stop_requested:
                log.info("Stopping mid-batch; cursors stay before block %d", low + 1)
                return 0
            outcome = await self.engine.ingest(event)
            outcomes[outcome.value] += 1

        if self.engine.reorg_epoch != epoch and (self.engine.last_fork_block or 0) <= to_block:
            log.info("Rollback into batch %d-%d, refetching", low + 1, to_block)
            return 0

        block_ts = await self.sources[fetched[0].role].block_timestamp(to_block)
        rewound = []
        async with self.store.transaction() as session:
            for contract in fetched:
                key = contract.role.value
                if not await session.set_cursor(
                    key, to_block, block_ts, expected_block=cursors[key],
                ):
                    rewound.append(key)
        if rewound:
            log.info("Cursor for %s was rewound during batch, refetching", ", ".join(rewound))
            return 0

        if events:
            log.info("Blocks %d-%d: %s", low + 1, to_block, dict(outcomes))
        return to_block - low


async def run_daemon(cfg: TrackerConfig) -> None:
    """Entry point for running the daemon."""
    daemon = TrackerDaemon(cfg)

    loop = asyncio.get_running_loop()

    def _signal_handler():
        asyncio.ensure_future(daemon.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    await daemon.start()
