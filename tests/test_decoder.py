"""Decoder: raw EVM logs and inbound records into RawEvent."""

from __future__ import annotations

import pytest
from eth_abi import encode

from stfuel_tracker.chain.abi import ABI_BY_NAME, abi_for, arg_index
from stfuel_tracker.chain.decoder import UNKNOWN_EVENT, decode_log, event_from_dict
from stfuel_tracker.errors import DecodeError, UnknownEventType
from stfuel_tracker.models.events import EventKind
from stfuel_tracker.models.records import NodeType

from tests.factories import ALICE, BOB, NODE_1, NODE_MANAGER, TOKEN

ERC20_TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def _topic(type_: str, value) -> str:
    return "0x" + encode([type_], [value]).hex()


def _log(address: str, topics: list[str], data: bytes, block: int = 0x10, log_index: int = 2):
    return {
        "address": address.upper().replace("0X", "0x"),
        "topics": topics,
        "data": "0x" + data.hex(),
        "blockNumber": hex(block),
        "transactionHash": "0x" + "AB" * 32,
        "transactionIndex": "0x1",
        "logIndex": hex(log_index),
        "removed": False,
    }


# ── Test 1: topic0 matches the standard ERC-20 Transfer topic ──────


def test_transfer_topic_is_keccak_of_signature():
    assert ABI_BY_NAME["Transfer"].signature == "Transfer(address,address,uint256)"
    assert ABI_BY_NAME["Transfer"].topic0 == ERC20_TRANSFER_TOPIC


# ── Test 2: indexed and data args decode in ABI order ──────────────


def test_decode_transfer_log():
    entry = _log(
        TOKEN,
        [ERC20_TRANSFER_TOPIC, _topic("address", ALICE), _topic("address", BOB)],
        encode(["uint256"], [10**24]),
    )
    event = decode_log(entry, block_timestamp=1_700_000_000)

    assert event.event_name == "Transfer"
    assert event.contract_address == TOKEN
    assert event.args == (ALICE, BOB, 10**24)
    assert event.block_number == 16
    assert event.transaction_index == 1
    assert event.log_index == 2
    assert event.transaction_hash == "0x" + "ab" * 32
    assert event.block_timestamp == 1_700_000_000
    assert event.arg("value") == 10**24


def test_decode_mixed_types():
    abi = ABI_BY_NAME["NodeRegistered"]
    entry = _log(
        NODE_MANAGER, [abi.topic0, _topic("address", NODE_1)], encode(["uint8"], [3]),
    )
    event = decode_log(entry, block_timestamp=0)
    assert event.args == (NODE_1, 3)

    abi = ABI_BY_NAME["CurrentNetAssets"]
    entry = _log(NODE_MANAGER, [abi.topic0], encode(["uint256", "bool"], [5_000, True]))
    event = decode_log(entry, block_timestamp=0)
    assert event.arg("netAssets") == 5_000
    assert event.arg("isExact") is True


# ── Test 3: unknown topic keeps the log, malformed data raises ─────


def test_unknown_topic_is_kept_as_unknown():
    entry = _log(NODE_MANAGER, ["0x" + "00" * 32], b"")
    event = decode_log(entry, block_timestamp=0)
    assert event.event_name == UNKNOWN_EVENT
    assert event.args == ()


def test_malformed_data_raises_decode_error():
    entry = _log(
        TOKEN,
        [ERC20_TRANSFER_TOPIC, _topic("address", ALICE), _topic("address", BOB)],
        b"\x12\x34",
    )
    with pytest.raises(DecodeError):
        decode_log(entry, block_timestamp=0)


def test_missing_indexed_topic_raises_decode_error():
    entry = _log(TOKEN, [ERC20_TRANSFER_TOPIC, _topic("address", ALICE)], b"")
    with pytest.raises(DecodeError):
        decode_log(entry, block_timestamp=0)


# ── Test 4: inbound decoded records ────────────────────────────────


def test_event_from_dict_normalizes():
    event = event_from_dict({
        "contractAddress": TOKEN.upper().replace("0X", "0x"),
        "eventName": "Transfer",
        "args": [ALICE.upper().replace("0X", "0x"), BOB, 42],
        "blockNumber": "0x20",
        "transactionHash": "0x" + "CD" * 32,
        "transactionIndex": 0,
        "logIndex": "3",
        "blockTimestamp": 1_700_000_000,
    })
    assert event.contract_address == TOKEN
    assert event.args == (ALICE, BOB, 42)
    assert event.block_number == 32
    assert event.log_index == 3
    assert event.transaction_hash == "0x" + "cd" * 32
    assert event.removed is False


# ── Test 5: event kinds and aliases ────────────────────────────────


def test_event_kind_aliases():
    assert EventKind.parse("NodeMarkedAsFaulty") is EventKind.NODE_MARKED_FAULTY
    assert EventKind.parse("NodeMarkedFaulty") is EventKind.NODE_MARKED_FAULTY
    assert EventKind.parse("RedemptionRequested") is EventKind.REDEMPTION_REQUESTED
    assert EventKind.parse("RedemptionCredited") is EventKind.REDEMPTION_CREDITED
    with pytest.raises(UnknownEventType):
        EventKind.parse("SomethingElse")


def test_alias_shares_argument_layout():
    assert abi_for("RedemptionRequested") is ABI_BY_NAME["BurnQueued"]
    assert arg_index("RedemptionRequested", "queueIndex") == 5
    assert arg_index("Transfer", "nope") is None
    assert arg_index("Unknown", "value") is None


def test_node_type_codes():
    assert NodeType.from_code(0) is None
    assert NodeType.from_code(1) is NodeType.TENK
    assert NodeType.from_code(5) is NodeType.FIVEHUNDREDK
    assert NodeType.from_code(9) is None
    assert NodeType.from_code(None) is None
