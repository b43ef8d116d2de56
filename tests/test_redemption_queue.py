"""Redemption queue: ordering, unlocks, credits, cancellation."""

from __future__ import annotations

import pytest

from stfuel_tracker.errors import InvariantViolation
from stfuel_tracker.models.records import IngestOutcome, RedemptionStatus
from stfuel_tracker.projection import redemption

from tests.conftest import UNBONDING, ingest_all
from tests.factories import (
    ALICE,
    BOB,
    burn_queued,
    credit_assigned,
    net_assets,
    redemption_cancelled,
    redemption_unlocked,
)


async def _entry(store, queue_index):
    async with store.read() as session:
        return await session.get_redemption(queue_index)


async def _queue_three(engine):
    await ingest_all(
        engine,
        burn_queued(ALICE, shares=100, tfuel_out=101, tip=1, queue_index=1, block=10),
        burn_queued(BOB, shares=200, tfuel_out=202, tip=2, queue_index=2, block=11),
        burn_queued(ALICE, shares=300, tfuel_out=303, tip=3, queue_index=3, block=12),
    )


# ── Test 1: requests enter Pending with an unbonding unlock block ──


async def test_request_creates_pending_entry(engine, store):
    await _queue_three(engine)

    entry = await _entry(store, 1)
    assert entry.status is RedemptionStatus.PENDING
    assert entry.address == ALICE
    assert entry.unlock_block_number == 10 + UNBONDING
    assert entry.stfuel_amount_burned == 100
    assert entry.tfuel_amount_expected == 101
    assert entry.keepers_tip_fee == 1

    async with store.read() as session:
        alice = await session.get_user(ALICE)
    assert alice.total_burned == 400
    assert alice.total_exit_fees_paid == 4


async def test_duplicate_request_creates_one_entry(engine, store):
    request = burn_queued(ALICE, queue_index=5, block=20, name="RedemptionRequested")
    outcomes = await ingest_all(engine, request, request)
    assert outcomes == [IngestOutcome.APPLIED, IngestOutcome.DUPLICATE]

    async with store.read() as session:
        entries = await session.list_redemptions()
    assert [e.queue_index for e in entries] == [5]


async def test_non_increasing_index_is_flagged(engine, store):
    await engine.ingest(burn_queued(ALICE, queue_index=5, block=20))
    outcome = await engine.ingest(burn_queued(BOB, queue_index=4, block=21))
    assert outcome is IngestOutcome.FLAGGED
    assert await _entry(store, 4) is None

    async with store.read() as session:
        flags = await session.list_flags()
        bob = await session.get_user(BOB)
    assert flags[0].code == "queue_index_not_increasing"
    assert bob is None


# ── Test 2: unlock by block height or explicit event ───────────────


async def test_entries_release_when_unlock_block_passes(engine, store):
    await _queue_three(engine)
    await engine.ingest(net_assets(10_000, block=11 + UNBONDING))

    assert (await _entry(store, 1)).status is RedemptionStatus.CLAIMABLE
    assert (await _entry(store, 2)).status is RedemptionStatus.CLAIMABLE
    assert (await _entry(store, 3)).status is RedemptionStatus.PENDING
    assert (await _entry(store, 1)).unlock_timestamp is not None


async def test_explicit_unlock_and_repeat(engine, store):
    await _queue_three(engine)
    outcomes = await ingest_all(
        engine,
        redemption_unlocked(ALICE, queue_index=1, block=20),
        redemption_unlocked(ALICE, queue_index=1, block=21),
    )
    assert outcomes == [IngestOutcome.APPLIED, IngestOutcome.APPLIED]
    assert (await _entry(store, 1)).status is RedemptionStatus.CLAIMABLE


# ── Test 3: credits follow queue order ─────────────────────────────


async def test_credit_out_of_order_is_flagged(engine, store):
    await _queue_three(engine)
    await engine.ingest(net_assets(10_000, block=200))

    outcome = await engine.ingest(credit_assigned(ALICE, amount=303, queue_index=3, block=201))
    assert outcome is IngestOutcome.FLAGGED
    assert (await _entry(store, 3)).status is RedemptionStatus.CLAIMABLE

    async with store.read() as session:
        alice = await session.get_user(ALICE)
        flags = await session.list_flags()
    assert alice.credits_available == 0
    assert flags[0].code == "credit_out_of_order"


async def test_credit_in_order(engine, store):
    await _queue_three(engine)
    outcomes = await ingest_all(
        engine,
        net_assets(10_000, block=200),
        credit_assigned(ALICE, amount=101, queue_index=1, block=201),
        credit_assigned(BOB, amount=202, queue_index=2, block=202),
    )
    assert outcomes[1:] == [IngestOutcome.APPLIED, IngestOutcome.APPLIED]

    entry = await _entry(store, 1)
    assert entry.status is RedemptionStatus.CREDITED
    assert entry.credited_block == 201

    async with store.read() as session:
        assert (await session.get_user(ALICE)).credits_available == 101
        assert (await session.get_user(BOB)).credits_available == 202
        assert await session.oldest_claimable_index() == 3


async def test_credit_on_pending_is_flagged(engine, store):
    await _queue_three(engine)
    outcome = await engine.ingest(credit_assigned(ALICE, amount=101, queue_index=1, block=30))
    assert outcome is IngestOutcome.FLAGGED
    assert (await _entry(store, 1)).status is RedemptionStatus.PENDING


async def test_credit_for_unknown_index_is_flagged(engine):
    outcome = await engine.ingest(credit_assigned(ALICE, queue_index=42, block=30))
    assert outcome is IngestOutcome.FLAGGED


async def test_credit_for_another_owner_is_flagged(engine, store):
    await _queue_three(engine)
    await engine.ingest(net_assets(10_000, block=200))

    outcome = await engine.ingest(credit_assigned(BOB, amount=101, queue_index=1, block=201))
    assert outcome is IngestOutcome.FLAGGED
    assert (await _entry(store, 1)).status is RedemptionStatus.CLAIMABLE

    async with store.read() as session:
        flags = await session.list_flags()
        assert (await session.get_user(ALICE)).credits_available == 0
        assert (await session.get_user(BOB)).credits_available == 0
    assert flags[0].code == "credit_owner_mismatch"


async def _queue_state(store):
    async with store.read() as session:
        entries = await session.list_redemptions()
        alice = await session.get_user(ALICE)
        return (
            [(e.queue_index, e.status) for e in entries],
            alice.credits_available if alice else None,
            await session.count_flags(),
        )


async def test_late_request_from_other_contract_resequences(engine, store):
    # The credit (node manager) is delivered before the request it pays (token)
    assert await engine.ingest(
        credit_assigned(ALICE, amount=100, queue_index=1, block=200)
    ) is IngestOutcome.FLAGGED
    outcome = await engine.ingest(burn_queued(ALICE, queue_index=1, block=10))
    assert outcome is IngestOutcome.RESEQUENCED

    live = await _queue_state(store)
    assert live == ([(1, RedemptionStatus.CREDITED)], 100, 0)

    await engine.rebuild()
    assert await _queue_state(store) == live


# ── Test 4: cancellation ───────────────────────────────────────────


async def test_cancel_pending(engine, store):
    await _queue_three(engine)
    assert await engine.ingest(redemption_cancelled(BOB, queue_index=2, block=30)) is IngestOutcome.APPLIED
    assert (await _entry(store, 2)).status is RedemptionStatus.CANCELLED

    # Cancelled entries never become claimable
    await engine.ingest(net_assets(1, block=500))
    assert (await _entry(store, 2)).status is RedemptionStatus.CANCELLED


async def test_cancel_claimable_is_flagged(engine, store):
    await _queue_three(engine)
    await engine.ingest(net_assets(1, block=500))
    outcome = await engine.ingest(redemption_cancelled(ALICE, queue_index=1, block=501))
    assert outcome is IngestOutcome.FLAGGED


# ── Test 5: transition functions ───────────────────────────────────


def test_request_rejects_stale_index():
    with pytest.raises(InvariantViolation):
        redemption.request(
            address_id=1, queue_index=3, shares_burned=1, tfuel_expected=1, tip=0,
            block=10, timestamp=0, unbonding_blocks=UNBONDING, max_index=3,
        )


def test_request_first_entry():
    entry = redemption.request(
        address_id=1, queue_index=0, shares_burned=1, tfuel_expected=1, tip=0,
        block=10, timestamp=0, unbonding_blocks=UNBONDING, max_index=None,
    )
    assert entry.status is RedemptionStatus.PENDING
    assert entry.unlock_block_number >= entry.request_block
