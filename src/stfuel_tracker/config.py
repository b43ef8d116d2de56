"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path

from stfuel_tracker.models.config import TrackerConfig


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "STFUEL_TRACKER_",
) -> TrackerConfig:
    """Load tracker configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (STFUEL_TRACKER_RPC_URL, etc.)
        2. TOML config file
        3. Defaults from TrackerConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = TrackerConfig()

    # ── Tracker section ────────────────────────────────────
    tracker = raw.get("tracker", {})
    if v := tracker.get("poll_interval"):
        cfg.poll_interval = int(v)
    if v := tracker.get("error_backoff"):
        cfg.error_backoff = int(v)
    if v := tracker.get("log_level"):
        cfg.log_level = str(v)

    # ── Chain section ──────────────────────────────────────
    chain = raw.get("chain", {})
    if v := chain.get("rpc_url"):
        cfg.rpc_url = str(v)
    if v := chain.get("node_manager_address"):
        cfg.node_manager_address = str(v)
    if v := chain.get("stfuel_address"):
        cfg.stfuel_address = str(v)
    if v := chain.get("start_block"):
        cfg.start_block = int(v)
    if v := chain.get("batch_size"):
        cfg.batch_size = int(v)
    if v := chain.get("confirmations"):
        cfg.confirmations = int(v)
    if v := chain.get("rpc_timeout"):
        cfg.rpc_timeout = int(v)
    if v := chain.get("rpc_retries"):
        cfg.rpc_retries = int(v)

    # ── Projection section ─────────────────────────────────
    projection = raw.get("projection", {})
    if v := projection.get("unbonding_blocks"):
        cfg.unbonding_blocks = int(v)
    if v := projection.get("storage_retries"):
        cfg.storage_retries = int(v)
    if v := projection.get("retry_backoff"):
        cfg.retry_backoff = float(v)

    # ── Snapshots section ──────────────────────────────────
    snapshots = raw.get("snapshots", {})
    if "enabled" in snapshots:
        cfg.snapshots_enabled = bool(snapshots["enabled"])
    if v := snapshots.get("tick"):
        cfg.snapshot_tick = int(v)

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)

    # ── Environment variable overrides (highest priority) ──
    if rpc := os.environ.get(f"{env_prefix}RPC_URL"):
        cfg.rpc_url = rpc
    if addr := os.environ.get(f"{env_prefix}NODE_MANAGER_ADDRESS"):
        cfg.node_manager_address = addr
    if addr := os.environ.get(f"{env_prefix}STFUEL_ADDRESS"):
        cfg.stfuel_address = addr
    if start := os.environ.get(f"{env_prefix}START_BLOCK"):
        cfg.start_block = int(start)
    if db := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = db
    if level := os.environ.get(f"{env_prefix}LOG_LEVEL"):
        cfg.log_level = level

    # Addresses and start block may have changed after construction
    cfg.node_manager_address = cfg.node_manager_address.lower()
    cfg.stfuel_address = cfg.stfuel_address.lower()
    cfg.contracts = cfg.build_contracts()

    # Expand ~ in paths
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg
