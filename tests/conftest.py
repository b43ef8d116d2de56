"""Shared fixtures for stfuel_tracker tests."""

from __future__ import annotations

import pytest

from stfuel_tracker.api.query import QueryService
from stfuel_tracker.models.config import TrackerConfig
from stfuel_tracker.projection.engine import ProjectionEngine
from stfuel_tracker.snapshots.aggregator import SnapshotAggregator
from stfuel_tracker.storage.sqlite import SQLiteStore

from tests.factories import NODE_MANAGER, TOKEN

UNBONDING = 100


def make_test_config(**overrides) -> TrackerConfig:
    """Build a TrackerConfig suitable for testing."""
    defaults = dict(
        poll_interval=0,
        error_backoff=0,
        rpc_url="http://127.0.0.1:8545",
        node_manager_address=NODE_MANAGER,
        stfuel_address=TOKEN,
        start_block=0,
        batch_size=10,
        unbonding_blocks=UNBONDING,
        storage_retries=1,
        retry_backoff=0,
        snapshot_tick=1,
        db_path=":memory:",
    )
    defaults.update(overrides)
    return TrackerConfig(**defaults)


@pytest.fixture
def test_config():
    """Default TrackerConfig for tests."""
    return make_test_config()


@pytest.fixture
async def store():
    """Initialized in-memory SQLiteStore."""
    s = SQLiteStore(":memory:")
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def engine(store, test_config):
    return ProjectionEngine(store, test_config)


@pytest.fixture
def aggregator(store, engine):
    return SnapshotAggregator(store, engine)


@pytest.fixture
def query(store, test_config):
    return QueryService(store, test_config)


async def ingest_all(engine: ProjectionEngine, *events):
    """Ingest events in order and return their outcomes."""
    return [await engine.ingest(e) for e in events]
