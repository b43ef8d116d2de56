"""Data models for the stfuel_tracker engine."""

from stfuel_tracker.models.events import (
    EVENT_ALIASES,
    ZERO_ADDRESS,
    ContractRole,
    EventKind,
    RawEvent,
)
from stfuel_tracker.models.records import (
    AddressRecord,
    EdgeNodeRecord,
    HourlySnapshotRecord,
    IngestOutcome,
    InvariantFlagRecord,
    NodeType,
    RedemptionRecord,
    RedemptionStatus,
    SyncCursor,
    UserRecord,
)
from stfuel_tracker.models.config import ContractConfig, TrackerConfig
from stfuel_tracker.models.views import (
    ContractSyncView,
    EdgeNodeView,
    FlagView,
    RedemptionView,
    SnapshotView,
    SyncStatusView,
    UserView,
)

__all__ = [
    "EVENT_ALIASES", "ZERO_ADDRESS", "ContractRole", "EventKind", "RawEvent",
    "AddressRecord", "EdgeNodeRecord", "HourlySnapshotRecord", "IngestOutcome",
    "InvariantFlagRecord", "NodeType", "RedemptionRecord", "RedemptionStatus",
    "SyncCursor", "UserRecord",
    "ContractConfig", "TrackerConfig",
    "ContractSyncView", "EdgeNodeView", "FlagView", "RedemptionView",
    "SnapshotView", "SyncStatusView", "UserView",
]
