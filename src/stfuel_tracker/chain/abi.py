"""Event ABI table for the node manager and sTFuel token contracts."""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property

from eth_utils import keccak


@dataclass(frozen=True)
class AbiInput:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventAbi:
    name: str
    contract: str  # "node_manager" | "token"
    inputs: tuple[AbiInput, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(i.type for i in self.inputs)})"

    @cached_property
    def topic0(self) -> str:
        return "0x" + keccak(text=self.signature).hex()

    @property
    def arg_names(self) -> tuple[str, ...]:
        return tuple(i.name for i in self.inputs)


def _ev(name: str, contract: str, *inputs: AbiInput) -> EventAbi:
    return EventAbi(name=name, contract=contract, inputs=tuple(inputs))


def _idx(name: str, type_: str = "address") -> AbiInput:
    return AbiInput(name, type_, indexed=True)


def _val(name: str, type_: str = "uint256") -> AbiInput:
    return AbiInput(name, type_)


EVENT_ABIS: tuple[EventAbi, ...] = (
    # ── Node manager ───────────────────────────────────────
    _ev("NodeRegistered", "node_manager", _idx("node"), _val("nodeType", "uint8")),
    _ev("TFuelStaked", "node_manager", _idx("node"), _val("amount")),
    _ev("TFuelUnstaked", "node_manager", _idx("node"), _val("amount")),
    _ev("NodeUnstakeRequested", "node_manager", _idx("node")),
    _ev("NodeMarkedAsFaulty", "node_manager", _idx("node")),
    _ev("FaultyNodeRecovered", "node_manager", _idx("node")),
    _ev("NodeDeactivated", "node_manager", _idx("node")),
    _ev("KeeperPaid", "node_manager", _idx("keeper"), _val("tipPaid")),
    _ev(
        "KeeperCredited", "node_manager",
        _idx("keeper"), _val("tipPaid"), _val("tipTotalProcessed"),
    ),
    _ev("CreditAssigned", "node_manager", _idx("user"), _val("amount"), _val("queueIndex")),
    _ev("RedemptionUnlocked", "node_manager", _idx("user"), _val("queueIndex")),
    _ev("RedemptionCancelled", "node_manager", _idx("user"), _val("queueIndex")),
    _ev("CurrentNetAssets", "node_manager", _val("netAssets"), _val("isExact", "bool")),
    # ── sTFuel token ───────────────────────────────────────
    _ev("Transfer", "token", _idx("from"), _idx("to"), _val("value")),
    _ev(
        "Minted", "token",
        _idx("user"), _val("tfuelIn"), _val("sharesOut"), _val("feeShares"),
    ),
    _ev(
        "BurnQueued", "token",
        _idx("user"), _val("sharesBurned"), _val("tfuelOut"), _val("readyAt"),
        _val("tip"), _val("queueIndex"),
    ),
    _ev(
        "BurnAndDirectRedeemed", "token",
        _idx("user"), _val("sharesBurned"), _val("tfuelAmount"), _val("fee"),
    ),
    _ev("Claimed", "token", _idx("user"), _val("amount"), _val("unlockTime")),
    _ev("CreditsClaimed", "token", _idx("user"), _val("amount")),
    _ev(
        "ReferralRewarded", "token",
        _idx("referrer"), _val("rewardShares"), _val("fromReferralId"),
    ),
    _ev("ReferralAddressSet", "token", _idx("user"), _val("referrer", "address")),
)

ABI_BY_NAME: dict[str, EventAbi] = {abi.name: abi for abi in EVENT_ABIS}
ABI_BY_TOPIC: dict[str, EventAbi] = {abi.topic0: abi for abi in EVENT_ABIS}

# Protocol-level aliases share the argument layout of their on-chain event
_ALIAS_LAYOUT = {
    "NodeStaked": "TFuelStaked",
    "NodeUnstaked": "TFuelUnstaked",
    "NodeMarkedFaulty": "NodeMarkedAsFaulty",
    "NodeRecovered": "FaultyNodeRecovered",
    "RedemptionRequested": "BurnQueued",
    "RedemptionCredited": "CreditAssigned",
}


def abi_for(event_name: str) -> EventAbi | None:
    return ABI_BY_NAME.get(_ALIAS_LAYOUT.get(event_name, event_name))


def arg_index(event_name: str, arg_name: str) -> int | None:
    """Position of a named input in an event's argument tuple."""
    abi = abi_for(event_name)
    if abi is None:
        return None
    try:
        return abi.arg_names.index(arg_name)
    except ValueError:
        return None
