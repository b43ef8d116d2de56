"""Event decoder - maps raw EVM logs to typed RawEvent records."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from stfuel_tracker.chain.abi import ABI_BY_TOPIC, EventAbi
from stfuel_tracker.errors import DecodeError
from stfuel_tracker.models.events import RawEvent

log = logging.getLogger(__name__)

UNKNOWN_EVENT = "Unknown"


def to_int(value: Any) -> int:
    """JSON-RPC quantities arrive as hex strings; fixtures use plain ints."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise DecodeError(f"not a quantity: {value!r}")


def _hex_bytes(value: str | bytes) -> bytes:
    if isinstance(value, bytes):
        return value
    if value.startswith("0x"):
        value = value[2:]
    return bytes.fromhex(value)


def _normalize(type_: str, value: Any) -> Any:
    if type_ == "address":
        return str(value).lower()
    return value


def normalize_address(address: str) -> str:
    return address.strip().lower()


def _decode_args(abi: EventAbi, topics: list[str], data: str | bytes) -> tuple[Any, ...]:
    indexed = [i for i in abi.inputs if i.indexed]
    plain = [i for i in abi.inputs if not i.indexed]

    if len(topics) - 1 < len(indexed):
        raise DecodeError(
            f"{abi.name}: expected {len(indexed)} indexed topics, got {len(topics) - 1}"
        )

    values: dict[str, Any] = {}
    try:
        for inp, topic in zip(indexed, topics[1:]):
            (val,) = abi_decode([inp.type], _hex_bytes(topic))
            values[inp.name] = _normalize(inp.type, val)

        raw_data = _hex_bytes(data or "0x")
        if plain:
            decoded = abi_decode([i.type for i in plain], raw_data)
            for inp, val in zip(plain, decoded):
                values[inp.name] = _normalize(inp.type, val)
    except (DecodingError, ValueError) as exc:
        raise DecodeError(f"{abi.name}: {exc}") from exc

    return tuple(values[i.name] for i in abi.inputs)


def decode_log(log_entry: Mapping[str, Any], block_timestamp: int) -> RawEvent:
    """Decode one eth_getLogs entry into a RawEvent.

    Logs with an unrecognized topic0 are kept under the name ``Unknown``
    so the raw log stays complete; dispatch skips them.
    """
    topics = [t if isinstance(t, str) else "0x" + t.hex() for t in log_entry.get("topics", [])]
    if not topics:
        raise DecodeError("log has no topics")

    abi = ABI_BY_TOPIC.get(topics[0].lower())
    if abi is None:
        log.debug("Unrecognized topic0 %s at block %s", topics[0], log_entry.get("blockNumber"))
        return unknown_event(log_entry, block_timestamp)
    return _raw_event(
        log_entry, block_timestamp,
        abi.name, _decode_args(abi, topics, log_entry.get("data", "0x")),
    )


def unknown_event(log_entry: Mapping[str, Any], block_timestamp: int) -> RawEvent:
    """Keep a log we cannot decode: its coordinates, no arguments."""
    return _raw_event(log_entry, block_timestamp, UNKNOWN_EVENT, ())


def _raw_event(
    log_entry: Mapping[str, Any], block_timestamp: int, name: str, args: tuple[Any, ...],
) -> RawEvent:
    return RawEvent(
        contract_address=normalize_address(log_entry["address"]),
        event_name=name,
        args=args,
        block_number=to_int(log_entry["blockNumber"]),
        transaction_hash=str(log_entry["transactionHash"]).lower(),
        transaction_index=to_int(log_entry.get("transactionIndex", 0)),
        log_index=to_int(log_entry.get("logIndex", 0)),
        block_timestamp=int(block_timestamp),
        removed=bool(log_entry.get("removed", False)),
    )


def event_from_dict(raw: Mapping[str, Any]) -> RawEvent:
    """Build a RawEvent from an already-decoded record.

    Accepts the inbound interface shape: contractAddress, eventName, args,
    blockNumber, transactionHash, transactionIndex, logIndex, blockTimestamp.
    """
    args = tuple(
        a.lower() if isinstance(a, str) and a.startswith("0x") and len(a) == 42 else a
        for a in raw.get("args", [])
    )
    return RawEvent(
        contract_address=normalize_address(raw["contractAddress"]),
        event_name=str(raw["eventName"]),
        args=args,
        block_number=to_int(raw["blockNumber"]),
        transaction_hash=str(raw["transactionHash"]).lower(),
        transaction_index=to_int(raw.get("transactionIndex", 0)),
        log_index=to_int(raw.get("logIndex", 0)),
        block_timestamp=to_int(raw.get("blockTimestamp", 0)),
        removed=bool(raw.get("removed", False)),
    )
