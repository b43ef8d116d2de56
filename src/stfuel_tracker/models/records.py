"""Normalized entity records and ingestion results."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NodeType(str, Enum):
    """Edge node stake tier, as emitted by NodeRegistered."""

    TENK = "Tenk"
    FIFTYK = "Fiftyk"
    HUNDREDK = "Hundredk"
    TWOHUNDREDK = "TwoHundredk"
    FIVEHUNDREDK = "FiveHundredk"

    @classmethod
    def from_code(cls, code: int | None) -> NodeType | None:
        """0 means no tier; unknown codes also map to None."""
        return _NODE_TYPE_CODES.get(code) if code is not None else None


_NODE_TYPE_CODES = {
    1: NodeType.TENK,
    2: NodeType.FIFTYK,
    3: NodeType.HUNDREDK,
    4: NodeType.TWOHUNDREDK,
    5: NodeType.FIVEHUNDREDK,
}


class RedemptionStatus(str, Enum):
    PENDING = "pending"
    CLAIMABLE = "claimable"
    CREDITED = "credited"
    CANCELLED = "cancelled"


class IngestOutcome(str, Enum):
    """Result of ingesting one raw event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    FLAGGED = "flagged"  # recorded in the raw log, mutation rejected
    REORGED = "reorged"  # applied after rolling back a fork
    RESEQUENCED = "resequenced"  # late event, projection re-derived
    IGNORED = "ignored"  # contract not tracked


@dataclass
class AddressRecord:
    id: int
    address: str


@dataclass
class EdgeNodeRecord:
    """Projected state of one registered edge node."""

    address_id: int
    registration_block: int
    registration_timestamp: int
    is_active: bool = True
    deactivation_block: int | None = None
    deactivation_timestamp: int | None = None
    is_faulty: bool = False
    faulty_block: int | None = None
    faulty_timestamp: int | None = None
    recovery_block: int | None = None
    recovery_timestamp: int | None = None
    unstake_block: int | None = None
    total_staked: int = 0
    total_unstaked: int = 0
    node_type: NodeType | None = None
    is_live: bool = True
    id: int | None = None
    address: str = ""

    @property
    def net_staked(self) -> int:
        return self.total_staked - self.total_unstaked


@dataclass
class UserRecord:
    """Projected ledger of one token holder."""

    address_id: int
    balance: int = 0
    total_deposited: int = 0  # TFuel in
    total_withdrawn: int = 0  # TFuel out
    total_minted: int = 0  # sTFuel shares
    total_burned: int = 0
    total_keeper_fees_earned: int = 0
    total_referral_fees_earned: int = 0
    total_entering_fees_paid: int = 0
    total_exit_fees_paid: int = 0
    credits_available: int = 0
    has_held: bool = False
    first_activity_block: int | None = None
    first_activity_timestamp: int | None = None
    last_activity_block: int | None = None
    last_activity_timestamp: int | None = None
    id: int | None = None
    address: str = ""


@dataclass
class RedemptionRecord:
    """One entry of the time-locked redemption queue."""

    address_id: int
    request_block: int
    request_timestamp: int
    stfuel_amount_burned: int
    tfuel_amount_expected: int
    keepers_tip_fee: int
    unlock_block_number: int
    queue_index: int
    status: RedemptionStatus = RedemptionStatus.PENDING
    unlock_timestamp: int | None = None
    credited_block: int | None = None
    credited_timestamp: int | None = None
    id: int | None = None
    address: str = ""


@dataclass
class HourlySnapshotRecord:
    """Cumulative protocol totals at an hour boundary."""

    snapshot_timestamp: int
    block_number: int
    tfuel_backing_amount: int = 0
    tfuel_staked_amount: int = 0
    stfuel_total_supply: int = 0
    current_holders_count: int = 0
    historical_holders_count: int = 0
    total_referral_rewards: int = 0
    edge_nodes_count: int = 0
    total_keeper_tips_paid: int = 0
    created_at: str = ""


@dataclass
class InvariantFlagRecord:
    """A rejected mutation awaiting operator review."""

    id: int
    contract: str
    event_name: str
    block_number: int
    transaction_hash: str
    log_index: int
    code: str
    message: str
    created_at: str


@dataclass
class SyncCursor:
    contract: str
    last_block: int
    last_timestamp: int | None = None
    updated_at: str = ""
