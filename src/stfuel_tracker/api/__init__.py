"""Read-side API over the projected state."""

from stfuel_tracker.api.query import QueryService

__all__ = ["QueryService"]
