"""Ingestion worker: batching, merged ordering, cursors, stop and errors."""

from __future__ import annotations

import asyncio

import pytest

from stfuel_tracker.daemon import TrackerDaemon
from stfuel_tracker.models.events import ContractRole
from stfuel_tracker.models.records import RedemptionStatus
from stfuel_tracker.storage.sqlite import SQLiteStore

from tests.conftest import make_test_config
from tests.factories import (
    ALICE,
    NODE_1,
    block_ts,
    burn_queued,
    credit_assigned,
    make_event,
    mint_transfer,
    redemption_unlocked,
    registered,
    staked,
)
from tests.mocks import MockLogSource


@pytest.fixture
def sources():
    return {
        ContractRole.NODE_MANAGER: MockLogSource(),
        ContractRole.TOKEN: MockLogSource(),
    }


@pytest.fixture
def daemon(test_config, store, sources):
    return TrackerDaemon(test_config, store=store, sources=sources)


def _set_head(sources, head: int) -> None:
    for source in sources.values():
        source.head = head


async def _cursor(store, role: ContractRole):
    async with store.read() as session:
        return await session.get_cursor(role.value)


async def _wait_for(predicate, attempts: int = 200):
    for _ in range(attempts):
        if await predicate():
            return True
        await asyncio.sleep(0.01)
    return False


# ── Test 1: batching and cursor advance ────────────────────────────


async def test_sync_once_batches_to_head(daemon, store, sources):
    sources[ContractRole.NODE_MANAGER].enqueue(registered(block=3), staked(block=14))
    _set_head(sources, 15)

    assert await daemon.sync_once() == 10
    assert await daemon.sync_once() == 6
    assert await daemon.sync_once() == 0
    for source in sources.values():
        assert source.fetch_calls == [(0, 9), (10, 15)]

    for role in ContractRole:
        cursor = await _cursor(store, role)
        assert cursor.last_block == 15
        assert cursor.last_timestamp == block_ts(15)

    async with store.read() as session:
        node = await session.get_edge_node(NODE_1)
    assert node.total_staked == 10_000


async def test_start_block_and_confirmations(store, sources):
    cfg = make_test_config(start_block=100, confirmations=5)
    daemon = TrackerDaemon(cfg, store=store, sources=sources)
    token = sources[ContractRole.TOKEN]

    _set_head(sources, 104)
    assert await daemon.sync_once() == 0
    assert token.fetch_calls == []
    assert (await _cursor(store, ContractRole.TOKEN)).last_block == 99

    token.enqueue(mint_transfer(ALICE, 10, block=100), mint_transfer(ALICE, 10, block=116))
    _set_head(sources, 120)
    assert await daemon.sync_once() == 10
    assert token.fetch_calls == [(100, 109)]
    assert await daemon.sync_once() == 6
    # Block 116 is not yet confirmed
    assert token.fetch_calls[-1] == (110, 115)

    async with store.read() as session:
        assert (await session.get_user(ALICE)).balance == 10


async def test_head_is_slowest_source(daemon, sources):
    sources[ContractRole.NODE_MANAGER].head = 50
    sources[ContractRole.TOKEN].head = 4

    assert await daemon.sync_once() == 5
    assert sources[ContractRole.NODE_MANAGER].fetch_calls == [(0, 4)]


# ── Test 2: one range across contracts, in chain order ─────────────


async def test_batch_merges_contracts_in_chain_order(daemon, store, sources):
    # The credit on the node manager depends on the request on the token
    sources[ContractRole.TOKEN].enqueue(burn_queued(ALICE, queue_index=1, block=2))
    sources[ContractRole.NODE_MANAGER].enqueue(
        redemption_unlocked(ALICE, queue_index=1, block=3),
        credit_assigned(ALICE, amount=100, queue_index=1, block=4),
    )
    _set_head(sources, 9)

    assert await daemon.sync_once() == 10

    async with store.read() as session:
        entry = await session.get_redemption(1)
        alice = await session.get_user(ALICE)
        assert await session.count_flags() == 0
    assert entry.status is RedemptionStatus.CREDITED
    assert alice.credits_available == 100


async def test_lagging_contract_catches_up_alone(daemon, store, sources):
    async with store.transaction() as session:
        await session.set_cursor(ContractRole.TOKEN.value, 20, block_ts(20))
    _set_head(sources, 30)

    assert await daemon.sync_once() == 10
    assert sources[ContractRole.NODE_MANAGER].fetch_calls == [(0, 9)]
    assert sources[ContractRole.TOKEN].fetch_calls == []
    assert (await _cursor(store, ContractRole.TOKEN)).last_block == 20


# ── Test 3: interrupted and rewound batches ────────────────────────


async def test_stop_mid_batch_keeps_cursor(daemon, store, sources):
    sources[ContractRole.NODE_MANAGER].enqueue(registered(block=2), staked(block=3))
    _set_head(sources, 3)

    await daemon.stop()
    assert await daemon.sync_once() == 0
    assert (await _cursor(store, ContractRole.NODE_MANAGER)).last_block == -1


async def test_rollback_inside_batch_holds_cursor(daemon, store, sources):
    original = registered(block=3, log_index=0)
    removed = make_event(
        "NodeRegistered", NODE_1, 1, block=3, log_index=0, removed=True,
    )
    sources[ContractRole.NODE_MANAGER].enqueue(original, removed)
    _set_head(sources, 3)

    assert await daemon.sync_once() == 0
    assert (await _cursor(store, ContractRole.NODE_MANAGER)).last_block == -1
    async with store.read() as session:
        assert await session.get_edge_node(NODE_1) is None
        assert await session.count_raw_events(ContractRole.NODE_MANAGER) == 0


class RewindingSource(MockLogSource):
    """Moves the stored cursor while a batch is in flight."""

    def __init__(self, store: SQLiteStore, **kwargs) -> None:
        super().__init__(**kwargs)
        self.store = store

    async def fetch(self, from_block, to_block):
        async with self.store.transaction() as session:
            await session.set_cursor(ContractRole.NODE_MANAGER.value, 3)
        return await super().fetch(from_block, to_block)


async def test_cursor_compare_and_set(test_config, store, sources):
    sources[ContractRole.NODE_MANAGER] = RewindingSource(store, head=20)
    sources[ContractRole.TOKEN].head = 20
    daemon = TrackerDaemon(test_config, store=store, sources=sources)

    assert await daemon.sync_once() == 0
    assert (await _cursor(store, ContractRole.NODE_MANAGER)).last_block == 3


# ── Test 4: worker loop ────────────────────────────────────────────


async def test_worker_recovers_from_source_errors(daemon, store, sources):
    token = sources[ContractRole.TOKEN]
    token.fail_times = 2
    token.enqueue(mint_transfer(ALICE, 25, block=4))
    sources[ContractRole.NODE_MANAGER].head = 4

    daemon._running = True
    task = asyncio.create_task(daemon._worker())

    async def caught_up():
        cursor = await _cursor(store, ContractRole.TOKEN)
        return cursor is not None and cursor.last_block == 4

    try:
        assert await _wait_for(caught_up)
    finally:
        daemon._running = False
        await asyncio.wait_for(task, timeout=5)

    assert token.fail_times == 0
    async with store.read() as session:
        assert (await session.get_user(ALICE)).balance == 25


async def test_start_and_stop(sources):
    cfg = make_test_config(snapshot_tick=60)
    daemon = TrackerDaemon(cfg, store=SQLiteStore(":memory:"), sources=sources)
    sources[ContractRole.NODE_MANAGER].enqueue(registered(block=5))
    sources[ContractRole.TOKEN].head = 5

    task = asyncio.create_task(daemon.start())

    async def synced():
        if not daemon.running:
            return False
        cursor = await _cursor(daemon.store, ContractRole.NODE_MANAGER)
        return cursor is not None and cursor.last_block == 5

    assert await _wait_for(synced)
    await daemon.stop()
    await asyncio.wait_for(task, timeout=5)

    assert not daemon.running
    assert all(s.closed for s in sources.values())
