"""JSON-serializable read models for the query interface."""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any

from stfuel_tracker.models.records import (
    EdgeNodeRecord,
    HourlySnapshotRecord,
    InvariantFlagRecord,
    RedemptionRecord,
    SyncCursor,
    UserRecord,
)


def _to_dict(obj: Any) -> dict:
    """Recursively convert a dataclass to a plain dict."""
    return asdict(obj)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

# Amounts are rendered as decimal strings: uint256 overflows JSON numbers.


@dataclass
class EdgeNodeView:
    address: str
    node_type: str | None
    state: str
    is_active: bool
    is_faulty: bool
    is_live: bool
    registration_block: int
    registration_timestamp: int
    deactivation_block: int | None
    faulty_block: int | None
    recovery_block: int | None
    unstake_block: int | None
    total_staked: str
    total_unstaked: str
    net_staked: str

    @classmethod
    def from_record(cls, node: EdgeNodeRecord, state: str) -> EdgeNodeView:
        return cls(
            address=node.address,
            node_type=node.node_type.value if node.node_type else None,
            state=state,
            is_active=node.is_active,
            is_faulty=node.is_faulty,
            is_live=node.is_live,
            registration_block=node.registration_block,
            registration_timestamp=node.registration_timestamp,
            deactivation_block=node.deactivation_block,
            faulty_block=node.faulty_block,
            recovery_block=node.recovery_block,
            unstake_block=node.unstake_block,
            total_staked=str(node.total_staked),
            total_unstaked=str(node.total_unstaked),
            net_staked=str(node.net_staked),
        )

    def to_dict(self) -> dict:
        return _to_dict(self)


@dataclass
class RedemptionView:
    queue_index: int
    user: str
    status: str
    request_block: int
    request_timestamp: int
    unlock_block_number: int
    unlock_timestamp: int | None
    stfuel_amount_burned: str
    tfuel_amount_expected: str
    keepers_tip_fee: str
    credited_block: int | None

    @classmethod
    def from_record(cls, entry: RedemptionRecord) -> RedemptionView:
        return cls(
            queue_index=entry.queue_index,
            user=entry.address,
            status=entry.status.value,
            request_block=entry.request_block,
            request_timestamp=entry.request_timestamp,
            unlock_block_number=entry.unlock_block_number,
            unlock_timestamp=entry.unlock_timestamp,
            stfuel_amount_burned=str(entry.stfuel_amount_burned),
            tfuel_amount_expected=str(entry.tfuel_amount_expected),
            keepers_tip_fee=str(entry.keepers_tip_fee),
            credited_block=entry.credited_block,
        )

    def to_dict(self) -> dict:
        return _to_dict(self)


@dataclass
class UserView:
    address: str
    balance: str
    total_deposited: str
    total_withdrawn: str
    total_minted: str
    total_burned: str
    total_keeper_fees_earned: str
    total_referral_fees_earned: str
    total_entering_fees_paid: str
    total_exit_fees_paid: str
    credits_available: str
    has_held: bool
    first_activity_block: int | None
    last_activity_block: int | None
    redemptions: list[RedemptionView]

    @classmethod
    def from_record(
        cls, user: UserRecord, redemptions: list[RedemptionRecord],
    ) -> UserView:
        return cls(
            address=user.address,
            balance=str(user.balance),
            total_deposited=str(user.total_deposited),
            total_withdrawn=str(user.total_withdrawn),
            total_minted=str(user.total_minted),
            total_burned=str(user.total_burned),
            total_keeper_fees_earned=str(user.total_keeper_fees_earned),
            total_referral_fees_earned=str(user.total_referral_fees_earned),
            total_entering_fees_paid=str(user.total_entering_fees_paid),
            total_exit_fees_paid=str(user.total_exit_fees_paid),
            credits_available=str(user.credits_available),
            has_held=user.has_held,
            first_activity_block=user.first_activity_block,
            last_activity_block=user.last_activity_block,
            redemptions=[RedemptionView.from_record(r) for r in redemptions],
        )

    def to_dict(self) -> dict:
        return _to_dict(self)


# ---------------------------------------------------------------------------
# Protocol rollups and operations
# ---------------------------------------------------------------------------


@dataclass
class SnapshotView:
    snapshot_timestamp: int
    block_number: int
    tfuel_backing_amount: str
    tfuel_staked_amount: str
    stfuel_total_supply: str
    current_holders_count: int
    historical_holders_count: int
    total_referral_rewards: str
    edge_nodes_count: int
    total_keeper_tips_paid: str

    @classmethod
    def from_record(cls, snap: HourlySnapshotRecord) -> SnapshotView:
        return cls(
            snapshot_timestamp=snap.snapshot_timestamp,
            block_number=snap.block_number,
            tfuel_backing_amount=str(snap.tfuel_backing_amount),
            tfuel_staked_amount=str(snap.tfuel_staked_amount),
            stfuel_total_supply=str(snap.stfuel_total_supply),
            current_holders_count=snap.current_holders_count,
            historical_holders_count=snap.historical_holders_count,
            total_referral_rewards=str(snap.total_referral_rewards),
            edge_nodes_count=snap.edge_nodes_count,
            total_keeper_tips_paid=str(snap.total_keeper_tips_paid),
        )

    def to_dict(self) -> dict:
        return _to_dict(self)


@dataclass
class ContractSyncView:
    contract: str
    address: str
    last_block: int | None
    last_timestamp: int | None
    raw_events: int
    updated_at: str | None = None

    def to_dict(self) -> dict:
        return _to_dict(self)


@dataclass
class SyncStatusView:
    contracts: list[ContractSyncView]
    open_flags: int
    latest_snapshot: int | None  # hour boundary, unix seconds

    def to_dict(self) -> dict:
        return _to_dict(self)


@dataclass
class FlagView:
    contract: str
    event_name: str
    block_number: int
    transaction_hash: str
    log_index: int
    code: str
    message: str
    created_at: str

    @classmethod
    def from_record(cls, flag: InvariantFlagRecord) -> FlagView:
        return cls(
            contract=flag.contract,
            event_name=flag.event_name,
            block_number=flag.block_number,
            transaction_hash=flag.transaction_hash,
            log_index=flag.log_index,
            code=flag.code,
            message=flag.message,
            created_at=flag.created_at,
        )

    def to_dict(self) -> dict:
        return _to_dict(self)


def cursor_view(
    contract: str, address: str, cursor: SyncCursor | None, raw_events: int,
) -> ContractSyncView:
    return ContractSyncView(
        contract=contract,
        address=address,
        last_block=cursor.last_block if cursor else None,
        last_timestamp=cursor.last_timestamp if cursor else None,
        raw_events=raw_events,
        updated_at=cursor.updated_at if cursor else None,
    )
