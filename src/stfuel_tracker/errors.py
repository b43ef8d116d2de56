"""Error taxonomy for ingestion and projection."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all stfuel_tracker errors."""


class DecodeError(TrackerError):
    """A raw log could not be decoded against the known ABI."""


class DuplicateEvent(TrackerError):
    """The event's (block, tx hash, log index) triple is already recorded."""


class UnknownEventType(TrackerError):
    """No projection handler exists for the event name."""

    def __init__(self, event_name: str) -> None:
        super().__init__(f"unknown event type: {event_name}")
        self.event_name = event_name


class InvariantViolation(TrackerError):
    """A mutation would break a financial or ordering invariant.

    The raw event stays in the log; the normalized mutation is rejected
    and a flag is recorded for operator review.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class TransitionRejected(TrackerError):
    """A lifecycle event does not fit the entity's current state.

    Local state may be stale after a gap, so this is a consistency
    warning, not a flagged violation.
    """


class ReorgDetected(TrackerError):
    """The source reported a different event at a recorded coordinate."""

    def __init__(self, fork_block: int, reason: str) -> None:
        super().__init__(f"reorg at block {fork_block}: {reason}")
        self.fork_block = fork_block
        self.reason = reason


class StorageFailure(TrackerError):
    """A transaction could not be committed after all retries."""
