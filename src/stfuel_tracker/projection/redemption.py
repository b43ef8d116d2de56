"""Redemption queue transitions.

    Pending --unlock--> Claimable --credit--> Credited
    Pending --cancel--> Cancelled

Credits are assigned strictly in queue order: only the oldest outstanding
Claimable entry may be credited.
"""

from __future__ import annotations

from dataclasses import replace

from stfuel_tracker.errors import InvariantViolation
from stfuel_tracker.models.records import RedemptionRecord, RedemptionStatus


def request(
    address_id: int,
    queue_index: int,
    shares_burned: int,
    tfuel_expected: int,
    tip: int,
    block: int,
    timestamp: int,
    unbonding_blocks: int,
    max_index: int | None,
) -> RedemptionRecord:
    """New Pending entry; the queue index is taken from the event as-is."""
    if max_index is not None and queue_index <= max_index:
        raise InvariantViolation(
            "queue_index_not_increasing",
            f"queue index {queue_index} does not exceed highest seen {max_index}",
        )
    return RedemptionRecord(
        address_id=address_id,
        request_block=block,
        request_timestamp=timestamp,
        stfuel_amount_burned=shares_burned,
        tfuel_amount_expected=tfuel_expected,
        keepers_tip_fee=tip,
        unlock_block_number=block + unbonding_blocks,
        queue_index=queue_index,
    )


def _require(entry: RedemptionRecord | None, queue_index: int) -> RedemptionRecord:
    if entry is None:
        raise InvariantViolation(
            "unknown_queue_index", f"no redemption with queue index {queue_index}",
        )
    return entry


def unlock(entry: RedemptionRecord | None, queue_index: int, timestamp: int) -> RedemptionRecord:
    entry = _require(entry, queue_index)
    if entry.status == RedemptionStatus.CLAIMABLE:
        return entry
    if entry.status != RedemptionStatus.PENDING:
        raise InvariantViolation(
            "invalid_redemption_transition",
            f"cannot unlock queue index {queue_index}: status is {entry.status.value}",
        )
    return replace(entry, status=RedemptionStatus.CLAIMABLE, unlock_timestamp=timestamp)


def credit(
    entry: RedemptionRecord | None,
    queue_index: int,
    oldest_claimable: int | None,
    block: int,
    timestamp: int,
) -> RedemptionRecord:
    entry = _require(entry, queue_index)
    if entry.status != RedemptionStatus.CLAIMABLE:
        raise InvariantViolation(
            "invalid_redemption_transition",
            f"cannot credit queue index {queue_index}: status is {entry.status.value}",
        )
    if oldest_claimable is not None and queue_index != oldest_claimable:
        raise InvariantViolation(
            "credit_out_of_order",
            f"credit for queue index {queue_index} while {oldest_claimable} "
            "is still outstanding",
        )
    return replace(
        entry,
        status=RedemptionStatus.CREDITED,
        credited_block=block,
        credited_timestamp=timestamp,
    )


def cancel(entry: RedemptionRecord | None, queue_index: int) -> RedemptionRecord:
    entry = _require(entry, queue_index)
    if entry.status != RedemptionStatus.PENDING:
        raise InvariantViolation(
            "invalid_redemption_transition",
            f"cannot cancel queue index {queue_index}: status is {entry.status.value}",
        )
    return replace(entry, status=RedemptionStatus.CANCELLED)
