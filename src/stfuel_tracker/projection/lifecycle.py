"""Edge node lifecycle state machine.

States are derived from the record, never stored:

    Unregistered --register--> Active
    Active --mark_faulty--> Faulty --recover--> Active
    Active --request_unstake / unstake--> Unstaking --stake--> Active
    any registered --deactivate--> Deactivated (terminal)

Transitions return an updated copy and raise ``TransitionRejected`` when the
event does not fit the current state.
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum

from stfuel_tracker.errors import InvariantViolation, TransitionRejected
from stfuel_tracker.models.records import EdgeNodeRecord, NodeType


class NodeState(str, Enum):
    UNREGISTERED = "unregistered"
    ACTIVE = "active"
    FAULTY = "faulty"
    UNSTAKING = "unstaking"
    DEACTIVATED = "deactivated"


def state_of(node: EdgeNodeRecord | None) -> NodeState:
    if node is None:
        return NodeState.UNREGISTERED
    if node.deactivation_block is not None or not node.is_active:
        return NodeState.DEACTIVATED
    if node.is_faulty:
        return NodeState.FAULTY
    if node.unstake_block is not None:
        return NodeState.UNSTAKING
    return NodeState.ACTIVE


def _require_live(node: EdgeNodeRecord | None, action: str) -> EdgeNodeRecord:
    state = state_of(node)
    if state in (NodeState.UNREGISTERED, NodeState.DEACTIVATED):
        raise TransitionRejected(f"cannot {action}: node is {state.value}")
    assert node is not None
    return node


def register(
    node: EdgeNodeRecord | None,
    address_id: int,
    block: int,
    timestamp: int,
    node_type: NodeType | None = None,
) -> EdgeNodeRecord:
    if node is not None:
        raise TransitionRejected(f"cannot register: node is {state_of(node).value}")
    return EdgeNodeRecord(
        address_id=address_id,
        registration_block=block,
        registration_timestamp=timestamp,
        node_type=node_type,
    )


def stake(node: EdgeNodeRecord | None, amount: int) -> EdgeNodeRecord:
    node = _require_live(node, "stake")
    return replace(node, total_staked=node.total_staked + amount, unstake_block=None)


def unstake(
    node: EdgeNodeRecord | None, amount: int, block: int, unbonding_blocks: int,
) -> EdgeNodeRecord:
    node = _require_live(node, "unstake")
    unstake_block = node.unstake_block
    if unstake_block is None:
        unstake_block = block + unbonding_blocks
    return replace(
        node,
        total_unstaked=node.total_unstaked + amount,
        unstake_block=unstake_block,
    )


def request_unstake(
    node: EdgeNodeRecord | None, block: int, unbonding_blocks: int,
) -> EdgeNodeRecord:
    node = _require_live(node, "request unstake")
    return replace(node, unstake_block=block + unbonding_blocks)


def mark_faulty(node: EdgeNodeRecord | None, block: int, timestamp: int) -> EdgeNodeRecord:
    node = _require_live(node, "mark faulty")
    if node.is_faulty:
        raise TransitionRejected("cannot mark faulty: node is already faulty")
    return replace(node, is_faulty=True, faulty_block=block, faulty_timestamp=timestamp)


def recover(node: EdgeNodeRecord | None, block: int, timestamp: int) -> EdgeNodeRecord:
    node = _require_live(node, "recover")
    if not node.is_faulty:
        raise TransitionRejected("cannot recover: node is not faulty")
    return replace(
        node, is_faulty=False, recovery_block=block, recovery_timestamp=timestamp,
    )


def deactivate(node: EdgeNodeRecord | None, block: int, timestamp: int) -> EdgeNodeRecord:
    node = _require_live(node, "deactivate")
    if block < node.registration_block:
        raise InvariantViolation(
            "deactivation_before_registration",
            f"deactivation block {block} precedes registration block "
            f"{node.registration_block}",
        )
    return replace(
        node,
        is_active=False,
        is_live=False,
        deactivation_block=block,
        deactivation_timestamp=timestamp,
    )
