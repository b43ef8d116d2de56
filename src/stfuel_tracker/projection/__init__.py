"""Projection of raw events onto normalized protocol state."""

from stfuel_tracker.projection.dispatch import Dispatcher
from stfuel_tracker.projection.engine import ProjectionEngine
from stfuel_tracker.projection.lifecycle import NodeState, state_of

__all__ = ["Dispatcher", "ProjectionEngine", "NodeState", "state_of"]
