"""Query service views."""

from __future__ import annotations

import json

from stfuel_tracker.models.records import RedemptionStatus

from tests.conftest import ingest_all
from tests.factories import (
    ALICE,
    BASE_TS,
    BOB,
    NODE_1,
    NODE_2,
    burn_queued,
    marked_faulty,
    mint_transfer,
    net_assets,
    registered,
    staked,
    transfer,
)


async def test_edge_node_view(engine, query):
    await ingest_all(
        engine,
        registered(NODE_1, node_type=2, block=10),
        staked(NODE_1, amount=2**100, block=11),
        registered(NODE_2, block=12),
        marked_faulty(NODE_2, block=13),
    )

    view = await query.edge_node(NODE_1.upper().replace("0X", "0x"))
    assert view.address == NODE_1
    assert view.state == "active"
    assert view.node_type == "Fiftyk"
    assert view.net_staked == str(2**100)

    data = view.to_dict()
    assert data["total_staked"] == str(2**100)
    json.dumps(data)

    assert await query.edge_node(BOB) is None


async def test_edge_node_filters(engine, query):
    await ingest_all(
        engine,
        registered(NODE_1, block=10),
        registered(NODE_2, block=11),
        marked_faulty(NODE_2, block=12),
    )
    assert [v.address for v in await query.edge_nodes()] == [NODE_1, NODE_2]
    assert [v.address for v in await query.edge_nodes(faulty=True)] == [NODE_2]
    assert [v.address for v in await query.edge_nodes(faulty=False)] == [NODE_1]
    faulty = await query.edge_nodes(faulty=True)
    assert faulty[0].state == "faulty"
    assert await query.edge_nodes(active=False) == []


async def test_user_view_includes_redemptions(engine, query):
    await ingest_all(
        engine,
        mint_transfer(ALICE, 1_000, block=10),
        burn_queued(ALICE, shares=100, queue_index=1, block=11),
        burn_queued(ALICE, shares=200, queue_index=2, block=12),
    )
    view = await query.user(ALICE)
    assert view.balance == "1000"
    assert view.total_burned == "300"
    assert [r.queue_index for r in view.redemptions] == [1, 2]
    assert all(r.status == "pending" for r in view.redemptions)

    data = view.to_dict()
    assert data["redemptions"][0]["stfuel_amount_burned"] == "100"
    json.dumps(data)

    assert await query.user(BOB) is None


async def test_redemption_filters(engine, query):
    await ingest_all(
        engine,
        burn_queued(ALICE, queue_index=1, block=10),
        burn_queued(BOB, queue_index=2, block=50),
        net_assets(1, block=115),
    )
    assert [r.queue_index for r in await query.redemptions()] == [1, 2]
    assert [r.user for r in await query.redemptions(address=BOB)] == [BOB]

    claimable = await query.redemptions(status=RedemptionStatus.CLAIMABLE)
    assert [r.queue_index for r in claimable] == [1]
    assert claimable[0].unlock_timestamp is not None

    pending = await query.redemptions(status="PENDING")
    assert [r.queue_index for r in pending] == [2]


async def test_snapshot_views(engine, aggregator, query):
    await ingest_all(engine, mint_transfer(ALICE, 10, block=1))
    assert await query.latest_snapshot() is None

    await aggregator.take_snapshot(BASE_TS + 3600)
    await aggregator.take_snapshot(BASE_TS + 7200)

    views = await query.snapshots()
    assert [v.snapshot_timestamp for v in views] == [BASE_TS + 3600, BASE_TS + 7200]
    assert views[0].stfuel_total_supply == "10"
    assert [v.snapshot_timestamp for v in await query.snapshots(start=BASE_TS + 7200)] == [
        BASE_TS + 7200,
    ]
    assert (await query.latest_snapshot()).snapshot_timestamp == BASE_TS + 7200


async def test_sync_status_and_flags(engine, store, query):
    await ingest_all(
        engine,
        registered(NODE_1, block=10),
        transfer(ALICE, BOB, 5, block=11),
    )
    async with store.transaction() as session:
        await session.set_cursor("node_manager", 20, BASE_TS + 60)

    status = await query.sync_status()
    by_contract = {c.contract: c for c in status.contracts}
    assert by_contract["node_manager"].last_block == 20
    assert by_contract["node_manager"].raw_events == 1
    assert by_contract["token"].last_block is None
    assert by_contract["token"].raw_events == 1
    assert status.open_flags == 1
    assert status.latest_snapshot is None
    json.dumps(status.to_dict())

    flags = await query.flags()
    assert len(flags) == 1
    assert flags[0].code == "negative_balance"
    assert flags[0].event_name == "Transfer"
    assert flags[0].contract == "token"
