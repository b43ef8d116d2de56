"""LogSource protocol - supplies decoded contract events from a chain."""

from __future__ import annotations

from typing import Protocol

from stfuel_tracker.models.events import RawEvent


class LogSource(Protocol):
    """Fetches decoded events for one contract address."""

    async def latest_block(self) -> int:
        """Height of the current chain head."""
        ...

    async def fetch(self, from_block: int, to_block: int) -> list[RawEvent]:
        """Events in the inclusive block range, ordered by coordinate."""
        ...

    async def block_timestamp(self, block_number: int) -> int:
        """Unix timestamp of a block."""
        ...

    async def close(self) -> None:
        ...
