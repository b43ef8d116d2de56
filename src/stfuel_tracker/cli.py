"""CLI entry point for the stfuel_tracker daemon."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from contextlib import asynccontextmanager

import click

from stfuel_tracker.api.query import QueryService
from stfuel_tracker.chain.decoder import event_from_dict
from stfuel_tracker.config import load_config
from stfuel_tracker.daemon import TrackerDaemon, run_daemon
from stfuel_tracker.errors import DecodeError
from stfuel_tracker.models.config import TrackerConfig
from stfuel_tracker.models.records import RedemptionStatus
from stfuel_tracker.projection.engine import ProjectionEngine
from stfuel_tracker.snapshots.aggregator import SnapshotAggregator, hour_floor
from stfuel_tracker.storage.sqlite import SQLiteStore


def _echo_json(obj) -> None:
    click.echo(json.dumps(obj, indent=2))


def _require_contracts(cfg: TrackerConfig) -> None:
    """Exit with error if no contract address is configured."""
    if not cfg.contracts:
        click.echo("Error: No contract addresses configured.", err=True)
        click.echo(
            "Set STFUEL_TRACKER_NODE_MANAGER_ADDRESS / STFUEL_TRACKER_STFUEL_ADDRESS "
            "or [chain] in the config file.", err=True,
        )
        sys.exit(1)


@asynccontextmanager
async def _open_store(cfg: TrackerConfig):
    store = SQLiteStore(cfg.db_path)
    await store.initialize()
    try:
        yield store
    finally:
        await store.close()


def _run_query(cfg: TrackerConfig, fn):
    async def _go():
        async with _open_store(cfg) as store:
            return await fn(QueryService(store, cfg))

    return asyncio.run(_go())


@click.group()
@click.option("-c", "--config", "config_path", default=None, help="Path to config TOML file")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """stfuel_tracker - sTFuel protocol event ingestion and state projection."""
    ctx.ensure_object(dict)
    cfg = load_config(config_path)
    ctx.obj["cfg"] = cfg

    level = logging.DEBUG if verbose else getattr(logging, cfg.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Daemon ─────────────────────────────────────────────


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Start the ingestion daemon."""
    cfg = ctx.obj["cfg"]
    _require_contracts(cfg)

    click.echo(f"Starting stfuel_tracker daemon ({len(cfg.contracts)} contracts)")
    asyncio.run(run_daemon(cfg))


@cli.command()
@click.pass_context
def sync(ctx: click.Context) -> None:
    """Ingest every contract up to the current head, then exit."""
    cfg = ctx.obj["cfg"]
    _require_contracts(cfg)

    async def _sync():
        daemon = TrackerDaemon(cfg)
        await daemon.store.initialize()
        try:
            total = 0
            while advanced := await daemon.sync_once():
                total += advanced
            click.echo(f"Advanced {total} blocks")
            if cfg.snapshots_enabled:
                for snap in await daemon.scheduler.tick():
                    click.echo(f"Snapshot: {snap.snapshot_timestamp}")
        finally:
            for source in daemon.sources.values():
                await source.close()
            await daemon.store.close()

    asyncio.run(_sync())


@cli.command()
@click.argument("file", type=click.File("r"))
@click.pass_context
def ingest(ctx: click.Context, file) -> None:
    """Ingest decoded events from a JSON-lines FILE ('-' for stdin)."""
    cfg = ctx.obj["cfg"]

    async def _ingest():
        async with _open_store(cfg) as store:
            engine = ProjectionEngine(store, cfg)
            counts: dict[str, int] = {}
            for lineno, line in enumerate(file, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    event = event_from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, DecodeError) as exc:
                    click.echo(f"Line {lineno}: skipped ({exc})", err=True)
                    continue
                outcome = await engine.ingest(event)
                counts[outcome.value] = counts.get(outcome.value, 0) + 1
            return counts

    _echo_json(asyncio.run(_ingest()))


@cli.command()
@click.pass_context
def rebuild(ctx: click.Context) -> None:
    """Re-derive all normalized state from the raw event log."""
    cfg = ctx.obj["cfg"]

    async def _rebuild():
        async with _open_store(cfg) as store:
            return await ProjectionEngine(store, cfg).rebuild()

    click.echo(f"Replayed {asyncio.run(_rebuild())} events")


@cli.command()
@click.option("--at", "at_ts", type=int, default=None,
              help="Unix timestamp; snapshots the hour boundary at or before it")
@click.pass_context
def snapshot(ctx: click.Context, at_ts: int | None) -> None:
    """Take (or show) the hourly snapshot for a boundary."""
    cfg = ctx.obj["cfg"]
    boundary = hour_floor(at_ts if at_ts is not None else int(time.time()))

    async def _snapshot():
        async with _open_store(cfg) as store:
            engine = ProjectionEngine(store, cfg)
            await SnapshotAggregator(store, engine).take_snapshot(boundary)
            return await QueryService(store, cfg).snapshots(boundary, boundary)

    _echo_json([s.to_dict() for s in asyncio.run(_snapshot())])


# ── Info ───────────────────────────────────────────────


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show configuration and ingestion progress."""
    cfg = ctx.obj["cfg"]
    click.echo(f"RPC URL:       {cfg.rpc_url}")
    click.echo(f"Node manager:  {cfg.node_manager_address or '(not set)'}")
    click.echo(f"sTFuel token:  {cfg.stfuel_address or '(not set)'}")
    click.echo(f"Start block:   {cfg.start_block}")
    click.echo(f"Unbonding:     {cfg.unbonding_blocks} blocks")
    click.echo(f"DB path:       {cfg.db_path}")

    view = _run_query(cfg, lambda q: q.sync_status())
    click.echo("")
    for contract in view.contracts:
        click.echo(
            f"{contract.contract:<13} last_block={contract.last_block} "
            f"raw_events={contract.raw_events}"
        )
    click.echo(f"Open flags:    {view.open_flags}")
    click.echo(f"Last snapshot: {view.latest_snapshot}")


@cli.command()
@click.argument("address")
@click.pass_context
def node(ctx: click.Context, address: str) -> None:
    """Show one edge node."""
    view = _run_query(ctx.obj["cfg"], lambda q: q.edge_node(address))
    if view is None:
        click.echo(f"Edge node {address} not found", err=True)
        sys.exit(1)
    _echo_json(view.to_dict())


@cli.command()
@click.option("--active/--inactive", default=None, help="Filter by active flag")
@click.option("--faulty/--healthy", default=None, help="Filter by faulty flag")
@click.pass_context
def nodes(ctx: click.Context, active: bool | None, faulty: bool | None) -> None:
    """List edge nodes."""
    views = _run_query(ctx.obj["cfg"], lambda q: q.edge_nodes(active=active, faulty=faulty))
    _echo_json([v.to_dict() for v in views])


@cli.command()
@click.argument("address")
@click.pass_context
def user(ctx: click.Context, address: str) -> None:
    """Show one user's ledger and redemptions."""
    view = _run_query(ctx.obj["cfg"], lambda q: q.user(address))
    if view is None:
        click.echo(f"User {address} not found", err=True)
        sys.exit(1)
    _echo_json(view.to_dict())


@cli.command()
@click.option("--address", default=None, help="Only this user's entries")
@click.option("--status", "status_", default=None,
              type=click.Choice([s.value for s in RedemptionStatus]),
              help="Only entries in this status")
@click.pass_context
def queue(ctx: click.Context, address: str | None, status_: str | None) -> None:
    """List redemption queue entries."""
    views = _run_query(
        ctx.obj["cfg"], lambda q: q.redemptions(address=address, status=status_),
    )
    _echo_json([v.to_dict() for v in views])


@cli.command()
@click.option("--start", type=int, default=None, help="First hour boundary (unix)")
@click.option("--end", type=int, default=None, help="Last hour boundary (unix)")
@click.pass_context
def snapshots(ctx: click.Context, start: int | None, end: int | None) -> None:
    """List hourly snapshots."""
    views = _run_query(ctx.obj["cfg"], lambda q: q.snapshots(start, end))
    _echo_json([v.to_dict() for v in views])


@cli.command()
@click.option("--limit", type=int, default=100)
@click.pass_context
def flags(ctx: click.Context, limit: int) -> None:
    """List invariant violations awaiting review."""
    views = _run_query(ctx.obj["cfg"], lambda q: q.flags(limit))
    _echo_json([v.to_dict() for v in views])


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
