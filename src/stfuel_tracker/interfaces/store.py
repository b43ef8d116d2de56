"""Store protocol - transactional access to the raw log and projection."""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Protocol

from stfuel_tracker.storage.sqlite import StoreSession


class Store(Protocol):
    """Serialized unit-of-work access to persisted state."""

    # ── Lifecycle ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Create tables if they don't exist."""
        ...

    async def close(self) -> None:
        """Close the database connection."""
        ...

    # ── Sessions ───────────────────────────────────────────

    def transaction(self) -> AbstractAsyncContextManager[StoreSession]:
        """Atomic unit of work; all or nothing."""
        ...

    def read(self) -> AbstractAsyncContextManager[StoreSession]:
        """Read-only view of committed state."""
        ...
