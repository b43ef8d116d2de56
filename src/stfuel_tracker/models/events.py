"""Raw contract events and the closed set of projected event kinds."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from stfuel_tracker.chain.abi import arg_index
from stfuel_tracker.errors import UnknownEventType

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ContractRole(str, Enum):
    """Which protocol contract emitted an event."""

    NODE_MANAGER = "node_manager"
    TOKEN = "token"


class EventKind(str, Enum):
    """Every event the projection engine knows how to apply.

    Values are the on-chain event names.
    """

    # Node manager
    NODE_REGISTERED = "NodeRegistered"
    NODE_STAKED = "TFuelStaked"
    NODE_UNSTAKED = "TFuelUnstaked"
    NODE_UNSTAKE_REQUESTED = "NodeUnstakeRequested"
    NODE_MARKED_FAULTY = "NodeMarkedAsFaulty"
    NODE_RECOVERED = "FaultyNodeRecovered"
    NODE_DEACTIVATED = "NodeDeactivated"
    KEEPER_PAID = "KeeperPaid"
    KEEPER_CREDITED = "KeeperCredited"
    REDEMPTION_CREDITED = "CreditAssigned"
    REDEMPTION_UNLOCKED = "RedemptionUnlocked"
    REDEMPTION_CANCELLED = "RedemptionCancelled"
    CURRENT_NET_ASSETS = "CurrentNetAssets"

    # sTFuel token
    TRANSFER = "Transfer"
    MINTED = "Minted"
    REDEMPTION_REQUESTED = "BurnQueued"
    BURN_AND_DIRECT_REDEEMED = "BurnAndDirectRedeemed"
    CLAIMED = "Claimed"
    CREDITS_CLAIMED = "CreditsClaimed"
    REFERRAL_REWARDED = "ReferralRewarded"
    REFERRAL_ADDRESS_SET = "ReferralAddressSet"

    @classmethod
    def parse(cls, event_name: str) -> EventKind:
        """Resolve an event name (on-chain or alias) to its kind."""
        try:
            return cls(event_name)
        except ValueError:
            pass
        if kind := EVENT_ALIASES.get(event_name):
            return kind
        raise UnknownEventType(event_name)


# Protocol-level names used by operators and documentation
EVENT_ALIASES: dict[str, EventKind] = {
    "NodeStaked": EventKind.NODE_STAKED,
    "NodeUnstaked": EventKind.NODE_UNSTAKED,
    "NodeMarkedFaulty": EventKind.NODE_MARKED_FAULTY,
    "NodeRecovered": EventKind.NODE_RECOVERED,
    "RedemptionRequested": EventKind.REDEMPTION_REQUESTED,
    "RedemptionCredited": EventKind.REDEMPTION_CREDITED,
}


@dataclass(frozen=True)
class RawEvent:
    """One decoded on-chain log with its full coordinates."""

    contract_address: str
    event_name: str
    args: tuple[Any, ...]
    block_number: int
    transaction_hash: str
    transaction_index: int
    log_index: int
    block_timestamp: int  # unix seconds
    removed: bool = field(default=False, compare=False)

    @property
    def coordinate(self) -> tuple[int, int, int]:
        """Ordering key within the chain."""
        return (self.block_number, self.transaction_index, self.log_index)

    @property
    def key(self) -> tuple[int, str, int]:
        """Deduplication key."""
        return (self.block_number, self.transaction_hash, self.log_index)

    def arg(self, name: str) -> Any:
        """Look up a positional argument by its ABI input name."""
        idx = arg_index(self.event_name, name)
        if idx is None or idx >= len(self.args):
            return None
        return self.args[idx]

    def same_payload(self, other: RawEvent) -> bool:
        return (
            self.event_name == other.event_name
            and list(self.args) == list(other.args)
            and self.contract_address == other.contract_address
        )
