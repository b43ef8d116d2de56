"""Hourly protocol snapshots."""

from stfuel_tracker.snapshots.aggregator import HOUR, SnapshotAggregator, hour_floor
from stfuel_tracker.snapshots.scheduler import HourlySnapshotScheduler

__all__ = ["HOUR", "SnapshotAggregator", "hour_floor", "HourlySnapshotScheduler"]
