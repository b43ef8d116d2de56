"""Projection engine - records raw events and keeps normalized state in step.

Every ingest is one transaction: the raw row and all derived mutations
commit together or not at all.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3

from stfuel_tracker.errors import (
    DuplicateEvent,
    InvariantViolation,
    ReorgDetected,
    StorageFailure,
    TransitionRejected,
)
from stfuel_tracker.interfaces.store import Store
from stfuel_tracker.models.config import TrackerConfig
from stfuel_tracker.models.events import ContractRole, RawEvent
from stfuel_tracker.models.records import IngestOutcome
from stfuel_tracker.projection.dispatch import Dispatcher
from stfuel_tracker.storage.sqlite import RAW_TABLES, StoreSession

log = logging.getLogger(__name__)


class ProjectionEngine:
    """Ingests decoded events into the raw log and the normalized tables.

    Handles duplicates, conflicting payloads (reorgs), late arrivals and
    invariant violations. Safe to call from several workers: the store
    serializes transactions.
    """

    def __init__(self, store: Store, cfg: TrackerConfig) -> None:
        self._store = store
        self._cfg = cfg
        self._dispatcher = Dispatcher(cfg.unbonding_blocks)
        # Bumped on every rollback so in-flight batches can tell they were cut
        self.reorg_epoch = 0
        self.last_fork_block: int | None = None

    # ── Public API ─────────────────────────────────────────

    async def ingest(self, event: RawEvent) -> IngestOutcome:
        """Record one event and apply it. Returns what happened."""
        role = self._cfg.role_for(event.contract_address)
        if role is None:
            log.warning(
                "Ignoring event %s from untracked contract %s",
                event.event_name, event.contract_address,
            )
            return IngestOutcome.IGNORED

        return await self._with_retries(
            lambda: self._ingest_once(role, event),
            f"ingest {event.event_name} at block {event.block_number}",
        )

    async def rollback(self, fork_block: int) -> int:
        """Discard everything at or after ``fork_block`` and re-derive.

        Returns the number of raw events removed.
        """
        async def _run() -> int:
            async with self._store.transaction() as session:
                return await self._rollback(session, fork_block)

        return await self._with_retries(_run, f"rollback from block {fork_block}")

    async def rebuild(self) -> int:
        """Re-derive the whole projection from the raw log.

        Returns the number of events replayed.
        """
        async def _run() -> int:
            async with self._store.transaction() as session:
                return await self._replay(session)

        return await self._with_retries(_run, "rebuild")

    # ── Internals ──────────────────────────────────────────

    async def _with_retries(self, op, what: str):
        attempts = self._cfg.storage_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await op()
            except sqlite3.Error as exc:
                log.warning("Storage error during %s (attempt %d/%d): %s",
                            what, attempt, attempts, exc)
                if attempt < attempts:
                    await asyncio.sleep(self._cfg.retry_backoff * attempt)
        raise StorageFailure(f"{what} failed after {attempts} attempts")

    async def _ingest_once(self, role: ContractRole, event: RawEvent) -> IngestOutcome:
        async with self._store.transaction() as session:
            try:
                return await self._record_and_apply(session, role, event)
            except ReorgDetected as exc:
                log.warning("Reorg detected: %s", exc)
                await self._rollback(session, exc.fork_block, event.block_timestamp)
                if not event.removed:
                    await session.insert_raw_event(role, event)
                    await self.project(session, role, event)
                return IngestOutcome.REORGED

    async def _record_and_apply(
        self, session: StoreSession, role: ContractRole, event: RawEvent,
    ) -> IngestOutcome:
        if event.removed:
            raise ReorgDetected(event.block_number, f"log {event.key} removed by source")

        for other_role in RAW_TABLES:
            conflict = await session.find_coordinate_conflict(other_role, event)
            if conflict is not None:
                raise ReorgDetected(
                    event.block_number,
                    f"block {event.block_number} log {event.log_index} was "
                    f"{conflict.transaction_hash}, now {event.transaction_hash}",
                )

        # Both contracts feed one projection, so lateness is judged globally
        heads = [
            h for r in RAW_TABLES
            if (h := await session.head_coordinate(r)) is not None
        ]
        head = max(heads, default=None)
        try:
            await session.insert_raw_event(role, event)
        except DuplicateEvent:
            existing = await session.get_raw_event(role, *event.key)
            if existing is not None and not existing.same_payload(event):
                raise ReorgDetected(
                    event.block_number, f"payload changed for log {event.key}",
                )
            log.debug("Duplicate event %s %s", event.event_name, event.key)
            return IngestOutcome.DUPLICATE

        if head is not None and event.coordinate < head:
            log.info(
                "Late event %s at %s behind head %s, re-deriving projection",
                event.event_name, event.coordinate, head,
            )
            dropped = await session.delete_snapshots_from(event.block_number, event.block_timestamp)
            if dropped:
                log.info("Discarded %d snapshots past the late event", dropped)
            await self._replay(session)
            return IngestOutcome.RESEQUENCED

        return await self.project(session, role, event)

    async def project(
        self, session: StoreSession, role: ContractRole, event: RawEvent,
    ) -> IngestOutcome:
        """Apply one recorded event to the normalized tables."""
        released = await session.release_unlocked(event.block_number, event.block_timestamp)
        if released:
            log.debug("Released %d redemptions at block %d", released, event.block_number)

        try:
            async with session.savepoint():
                await self._dispatcher.dispatch(session, event)
        except InvariantViolation as exc:
            log.warning(
                "Invariant violation [%s] on %s at block %d: %s",
                exc.code, event.event_name, event.block_number, exc.message,
            )
            await session.record_flag(role, event, exc.code, exc.message)
            return IngestOutcome.FLAGGED
        except TransitionRejected as exc:
            log.warning(
                "Consistency warning on %s at block %d: %s",
                event.event_name, event.block_number, exc,
            )
        return IngestOutcome.APPLIED

    async def _rollback(
        self, session: StoreSession, fork_block: int, fork_timestamp: int | None = None,
    ) -> int:
        self.reorg_epoch += 1
        self.last_fork_block = fork_block
        if fork_timestamp is None:
            # Lower bound for the fork block's time: the last event that survives
            fork_timestamp = await session.last_timestamp_before(fork_block) or 0
        removed = await session.delete_raw_events_from(fork_block)
        await session.delete_snapshots_from(fork_block, fork_timestamp)
        await session.rewind_cursors(fork_block)
        replayed = await self._replay(session)
        log.info(
            "Rolled back from block %d: %d raw events removed, %d replayed",
            fork_block, removed, replayed,
        )
        return removed

    async def _replay(self, session: StoreSession) -> int:
        await session.reset_projection()
        events = await session.ordered_raw_events()
        for role, event in events:
            await self.project(session, role, event)
        log.debug("Replayed %d raw events", len(events))
        return len(events)
