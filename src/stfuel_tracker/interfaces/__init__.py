"""Protocol interfaces for stfuel_tracker components."""

from stfuel_tracker.interfaces.source import LogSource
from stfuel_tracker.interfaces.store import Store

__all__ = ["LogSource", "Store"]
