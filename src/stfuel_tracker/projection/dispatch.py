"""Event dispatcher - routes each event kind to its normalized-state handler."""

from __future__ import annotations

import logging
from typing import assert_never

from stfuel_tracker.errors import InvariantViolation, UnknownEventType
from stfuel_tracker.models.events import ZERO_ADDRESS, EventKind, RawEvent
from stfuel_tracker.models.records import NodeType, UserRecord
from stfuel_tracker.projection import ledger, lifecycle, redemption
from stfuel_tracker.storage.sqlite import StoreSession

log = logging.getLogger(__name__)


def _amount(event: RawEvent, name: str) -> int:
    value = event.arg(name)
    return int(value) if value is not None else 0


def _address(event: RawEvent, name: str) -> str:
    value = event.arg(name)
    return str(value).lower() if value else ""


class Dispatcher:
    """Applies one raw event to the normalized tables.

    Handlers run inside the caller's savepoint: any exception they raise
    leaves no partial mutation behind.
    """

    def __init__(self, unbonding_blocks: int) -> None:
        self._unbonding = unbonding_blocks

    async def dispatch(self, session: StoreSession, event: RawEvent) -> None:
        try:
            kind = EventKind.parse(event.event_name)
        except UnknownEventType:
            log.warning(
                "Skipping unknown event %s at block %d log %d",
                event.event_name, event.block_number, event.log_index,
            )
            return

        match kind:
            case EventKind.NODE_REGISTERED:
                await self._node_registered(session, event)
            case (
                EventKind.NODE_STAKED
                | EventKind.NODE_UNSTAKED
                | EventKind.NODE_UNSTAKE_REQUESTED
                | EventKind.NODE_MARKED_FAULTY
                | EventKind.NODE_RECOVERED
                | EventKind.NODE_DEACTIVATED
            ):
                await self._node_transition(session, kind, event)
            case EventKind.KEEPER_PAID | EventKind.KEEPER_CREDITED:
                await self._keeper_fee(session, event)
            case EventKind.REDEMPTION_REQUESTED:
                await self._redemption_requested(session, event)
            case EventKind.REDEMPTION_UNLOCKED:
                await self._redemption_unlocked(session, event)
            case EventKind.REDEMPTION_CREDITED:
                await self._redemption_credited(session, event)
            case EventKind.REDEMPTION_CANCELLED:
                await self._redemption_cancelled(session, event)
            case EventKind.TRANSFER:
                await self._transfer(session, event)
            case (
                EventKind.MINTED
                | EventKind.BURN_AND_DIRECT_REDEEMED
                | EventKind.CLAIMED
                | EventKind.CREDITS_CLAIMED
                | EventKind.REFERRAL_REWARDED
            ):
                await self._user_totals(session, kind, event)
            case EventKind.CURRENT_NET_ASSETS | EventKind.REFERRAL_ADDRESS_SET:
                # Raw log only; snapshots read net assets from the raw table
                log.debug("%s at block %d recorded", kind.value, event.block_number)
            case _:
                assert_never(kind)

    # ── Edge nodes ─────────────────────────────────────────

    async def _node_registered(self, session: StoreSession, event: RawEvent) -> None:
        address = _address(event, "node")
        addr = await session.get_or_create_address(address)
        node = await session.get_edge_node(address)
        code = event.arg("nodeType")
        node = lifecycle.register(
            node, addr.id, event.block_number, event.block_timestamp,
            NodeType.from_code(int(code) if code is not None else None),
        )
        await session.save_edge_node(node)
        log.info("Edge node registered: %s at block %d", address, event.block_number)

    async def _node_transition(
        self, session: StoreSession, kind: EventKind, event: RawEvent,
    ) -> None:
        address = _address(event, "node")
        node = await session.get_edge_node(address)
        block, ts = event.block_number, event.block_timestamp

        if kind == EventKind.NODE_STAKED:
            node = lifecycle.stake(node, _amount(event, "amount"))
        elif kind == EventKind.NODE_UNSTAKED:
            node = lifecycle.unstake(node, _amount(event, "amount"), block, self._unbonding)
        elif kind == EventKind.NODE_UNSTAKE_REQUESTED:
            node = lifecycle.request_unstake(node, block, self._unbonding)
        elif kind == EventKind.NODE_MARKED_FAULTY:
            node = lifecycle.mark_faulty(node, block, ts)
        elif kind == EventKind.NODE_RECOVERED:
            node = lifecycle.recover(node, block, ts)
        else:
            node = lifecycle.deactivate(node, block, ts)

        await session.save_edge_node(node)
        log.debug("Edge node %s: %s at block %d", address, kind.value, block)

    # ── Users ──────────────────────────────────────────────

    async def _load_user(self, session: StoreSession, address: str) -> UserRecord:
        user = await session.get_user(address)
        if user is None:
            addr = await session.get_or_create_address(address)
            user = ledger.new_user(addr.id, addr.address)
        return user

    async def _keeper_fee(self, session: StoreSession, event: RawEvent) -> None:
        user = await self._load_user(session, _address(event, "keeper"))
        user = ledger.earn_keeper_fee(
            user, _amount(event, "tipPaid"), event.block_number, event.block_timestamp,
        )
        await session.save_user(user)

    async def _transfer(self, session: StoreSession, event: RawEvent) -> None:
        sender, recipient = _address(event, "from"), _address(event, "to")
        value = _amount(event, "value")
        block, ts = event.block_number, event.block_timestamp

        if sender and sender != ZERO_ADDRESS:
            user = await self._load_user(session, sender)
            await session.save_user(ledger.debit_balance(user, value, block, ts))
        if recipient and recipient != ZERO_ADDRESS:
            user = await self._load_user(session, recipient)
            await session.save_user(ledger.credit_balance(user, value, block, ts))

    async def _user_totals(
        self, session: StoreSession, kind: EventKind, event: RawEvent,
    ) -> None:
        holder = "referrer" if kind == EventKind.REFERRAL_REWARDED else "user"
        user = await self._load_user(session, _address(event, holder))
        block, ts = event.block_number, event.block_timestamp

        if kind == EventKind.MINTED:
            user = ledger.record_mint(
                user, _amount(event, "tfuelIn"), _amount(event, "sharesOut"),
                _amount(event, "feeShares"), block, ts,
            )
        elif kind == EventKind.BURN_AND_DIRECT_REDEEMED:
            user = ledger.record_direct_redeem(
                user, _amount(event, "sharesBurned"), _amount(event, "tfuelAmount"),
                _amount(event, "fee"), block, ts,
            )
        elif kind == EventKind.CLAIMED:
            user = ledger.record_claim(user, _amount(event, "amount"), block, ts)
        elif kind == EventKind.CREDITS_CLAIMED:
            user = ledger.claim_credits(user, _amount(event, "amount"), block, ts)
        else:
            user = ledger.earn_referral_fee(user, _amount(event, "rewardShares"), block, ts)

        await session.save_user(user)

    # ── Redemption queue ───────────────────────────────────

    async def _redemption_requested(self, session: StoreSession, event: RawEvent) -> None:
        user = await self._load_user(session, _address(event, "user"))
        queue_index = _amount(event, "queueIndex")
        entry = redemption.request(
            address_id=user.address_id,
            queue_index=queue_index,
            shares_burned=_amount(event, "sharesBurned"),
            tfuel_expected=_amount(event, "tfuelOut"),
            tip=_amount(event, "tip"),
            block=event.block_number,
            timestamp=event.block_timestamp,
            unbonding_blocks=self._unbonding,
            max_index=await session.max_queue_index(),
        )
        await session.insert_redemption(entry)

        user = ledger.record_queued_burn(
            user, entry.stfuel_amount_burned, entry.keepers_tip_fee,
            event.block_number, event.block_timestamp,
        )
        await session.save_user(user)
        log.info(
            "Redemption queued: index=%d user=%s unlock_block=%d",
            queue_index, user.address, entry.unlock_block_number,
        )

    async def _redemption_unlocked(self, session: StoreSession, event: RawEvent) -> None:
        queue_index = _amount(event, "queueIndex")
        entry = await session.get_redemption(queue_index)
        entry = redemption.unlock(entry, queue_index, event.block_timestamp)
        await session.update_redemption(entry)

    async def _redemption_credited(self, session: StoreSession, event: RawEvent) -> None:
        queue_index = _amount(event, "queueIndex")
        entry = redemption.credit(
            await session.get_redemption(queue_index),
            queue_index,
            await session.oldest_claimable_index(),
            event.block_number,
            event.block_timestamp,
        )
        recipient = _address(event, "user")
        if recipient and entry.address and recipient != entry.address:
            raise InvariantViolation(
                "credit_owner_mismatch",
                f"queue index {queue_index} belongs to {entry.address}, credit names {recipient}",
            )
        await session.update_redemption(entry)
        user = await self._load_user(session, recipient or entry.address)
        user = ledger.assign_credits(
            user, _amount(event, "amount"), event.block_number, event.block_timestamp,
        )
        await session.save_user(user)

    async def _redemption_cancelled(self, session: StoreSession, event: RawEvent) -> None:
        queue_index = _amount(event, "queueIndex")
        entry = await session.get_redemption(queue_index)
        await session.update_redemption(redemption.cancel(entry, queue_index))
