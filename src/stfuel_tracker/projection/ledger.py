"""Per-user token ledger.

Every function returns an updated copy of the user with its activity
coordinates bumped. Balances move only on Transfer; the other entry points
accumulate lifetime totals.
"""

from __future__ import annotations

from dataclasses import replace

from stfuel_tracker.errors import InvariantViolation
from stfuel_tracker.models.records import UserRecord


def new_user(address_id: int, address: str = "") -> UserRecord:
    return UserRecord(address_id=address_id, address=address)


def _touch(user: UserRecord, block: int, timestamp: int, **changes) -> UserRecord:
    if user.first_activity_block is None:
        changes.setdefault("first_activity_block", block)
        changes.setdefault("first_activity_timestamp", timestamp)
    return replace(
        user, last_activity_block=block, last_activity_timestamp=timestamp, **changes,
    )


# ── Balance ────────────────────────────────────────────


def credit_balance(user: UserRecord, amount: int, block: int, timestamp: int) -> UserRecord:
    balance = user.balance + amount
    return _touch(
        user, block, timestamp, balance=balance, has_held=user.has_held or balance > 0,
    )


def debit_balance(user: UserRecord, amount: int, block: int, timestamp: int) -> UserRecord:
    if amount > user.balance:
        raise InvariantViolation(
            "negative_balance",
            f"transfer of {amount} from {user.address} exceeds balance {user.balance}",
        )
    return _touch(user, block, timestamp, balance=user.balance - amount)


# ── Deposits and redemptions ───────────────────────────


def record_mint(
    user: UserRecord, tfuel_in: int, shares_out: int, fee_shares: int,
    block: int, timestamp: int,
) -> UserRecord:
    return _touch(
        user, block, timestamp,
        total_deposited=user.total_deposited + tfuel_in,
        total_minted=user.total_minted + shares_out,
        total_entering_fees_paid=user.total_entering_fees_paid + fee_shares,
    )


def record_queued_burn(
    user: UserRecord, shares_burned: int, tip: int, block: int, timestamp: int,
) -> UserRecord:
    return _touch(
        user, block, timestamp,
        total_burned=user.total_burned + shares_burned,
        total_exit_fees_paid=user.total_exit_fees_paid + tip,
    )


def record_direct_redeem(
    user: UserRecord, shares_burned: int, tfuel_amount: int, fee: int,
    block: int, timestamp: int,
) -> UserRecord:
    return _touch(
        user, block, timestamp,
        total_burned=user.total_burned + shares_burned,
        total_exit_fees_paid=user.total_exit_fees_paid + fee,
        total_withdrawn=user.total_withdrawn + tfuel_amount,
    )


def record_claim(user: UserRecord, amount: int, block: int, timestamp: int) -> UserRecord:
    return _touch(user, block, timestamp, total_withdrawn=user.total_withdrawn + amount)


# ── Credits ────────────────────────────────────────────


def assign_credits(user: UserRecord, amount: int, block: int, timestamp: int) -> UserRecord:
    return _touch(
        user, block, timestamp, credits_available=user.credits_available + amount,
    )


def claim_credits(user: UserRecord, amount: int, block: int, timestamp: int) -> UserRecord:
    if amount > user.credits_available:
        raise InvariantViolation(
            "negative_credits",
            f"claim of {amount} credits by {user.address} exceeds available "
            f"{user.credits_available}",
        )
    return _touch(
        user, block, timestamp,
        credits_available=user.credits_available - amount,
        total_withdrawn=user.total_withdrawn + amount,
    )


# ── Fees earned ────────────────────────────────────────


def earn_keeper_fee(user: UserRecord, tip: int, block: int, timestamp: int) -> UserRecord:
    return _touch(
        user, block, timestamp,
        total_keeper_fees_earned=user.total_keeper_fees_earned + tip,
    )


def earn_referral_fee(user: UserRecord, shares: int, block: int, timestamp: int) -> UserRecord:
    return _touch(
        user, block, timestamp,
        total_referral_fees_earned=user.total_referral_fees_earned + shares,
    )
