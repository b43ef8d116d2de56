"""SQLite implementation of the raw event log and normalized state store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from stfuel_tracker.errors import DuplicateEvent
from stfuel_tracker.models.events import ContractRole, RawEvent
from stfuel_tracker.models.records import (
    AddressRecord,
    EdgeNodeRecord,
    HourlySnapshotRecord,
    InvariantFlagRecord,
    NodeType,
    RedemptionRecord,
    RedemptionStatus,
    SyncCursor,
    UserRecord,
)

RAW_TABLES = {
    ContractRole.NODE_MANAGER: "node_manager_events",
    ContractRole.TOKEN: "stfuel_events",
}

_RAW_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    contract_address TEXT NOT NULL,
    event_name TEXT NOT NULL,
    args TEXT NOT NULL,
    block_number INTEGER NOT NULL,
    transaction_hash TEXT NOT NULL,
    transaction_index INTEGER NOT NULL,
    log_index INTEGER NOT NULL,
    block_timestamp INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE (block_number, transaction_hash, log_index)
);
CREATE INDEX IF NOT EXISTS idx_{table}_address ON {table}(contract_address);
CREATE INDEX IF NOT EXISTS idx_{table}_name ON {table}(event_name);
CREATE INDEX IF NOT EXISTS idx_{table}_order
    ON {table}(block_number, transaction_index, log_index);
"""

SCHEMA = """
-- Shared account registry, insert-only
CREATE TABLE IF NOT EXISTS addresses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    address TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Edge node lifecycle
CREATE TABLE IF NOT EXISTS edge_nodes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    address_id INTEGER NOT NULL UNIQUE REFERENCES addresses(id),
    registration_block INTEGER NOT NULL,
    registration_timestamp INTEGER NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    deactivation_block INTEGER,
    deactivation_timestamp INTEGER,
    is_faulty INTEGER NOT NULL DEFAULT 0,
    faulty_block INTEGER,
    faulty_timestamp INTEGER,
    recovery_block INTEGER,
    recovery_timestamp INTEGER,
    unstake_block INTEGER,
    total_staked TEXT NOT NULL DEFAULT '0',
    total_unstaked TEXT NOT NULL DEFAULT '0',
    node_type TEXT,
    is_live INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_edge_nodes_active ON edge_nodes(is_active);
CREATE INDEX IF NOT EXISTS idx_edge_nodes_faulty ON edge_nodes(is_faulty);

-- User ledger
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    address_id INTEGER NOT NULL UNIQUE REFERENCES addresses(id),
    balance TEXT NOT NULL DEFAULT '0',
    total_deposited TEXT NOT NULL DEFAULT '0',
    total_withdrawn TEXT NOT NULL DEFAULT '0',
    total_minted TEXT NOT NULL DEFAULT '0',
    total_burned TEXT NOT NULL DEFAULT '0',
    total_keeper_fees_earned TEXT NOT NULL DEFAULT '0',
    total_referral_fees_earned TEXT NOT NULL DEFAULT '0',
    total_entering_fees_paid TEXT NOT NULL DEFAULT '0',
    total_exit_fees_paid TEXT NOT NULL DEFAULT '0',
    credits_available TEXT NOT NULL DEFAULT '0',
    has_held INTEGER NOT NULL DEFAULT 0,
    first_activity_block INTEGER,
    first_activity_timestamp INTEGER,
    last_activity_block INTEGER,
    last_activity_timestamp INTEGER,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Time-locked redemption queue
CREATE TABLE IF NOT EXISTS redemption_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    address_id INTEGER NOT NULL REFERENCES addresses(id),
    request_block INTEGER NOT NULL,
    request_timestamp INTEGER NOT NULL,
    stfuel_amount_burned TEXT NOT NULL,
    tfuel_amount_expected TEXT NOT NULL,
    keepers_tip_fee TEXT NOT NULL,
    unlock_block_number INTEGER NOT NULL,
    unlock_timestamp INTEGER,
    queue_index INTEGER NOT NULL UNIQUE,
    status TEXT NOT NULL DEFAULT 'pending',
    credited_block INTEGER,
    credited_timestamp INTEGER,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
    CHECK (unlock_block_number >= request_block)
);
CREATE INDEX IF NOT EXISTS idx_redemption_address ON redemption_queue(address_id);
CREATE INDEX IF NOT EXISTS idx_redemption_status ON redemption_queue(status);
CREATE INDEX IF NOT EXISTS idx_redemption_unlock ON redemption_queue(unlock_block_number);

-- Hourly protocol rollups
CREATE TABLE IF NOT EXISTS hourly_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    snapshot_timestamp INTEGER NOT NULL UNIQUE,
    block_number INTEGER NOT NULL,
    tfuel_backing_amount TEXT NOT NULL,
    tfuel_staked_amount TEXT NOT NULL,
    stfuel_total_supply TEXT NOT NULL,
    current_holders_count INTEGER NOT NULL,
    historical_holders_count INTEGER NOT NULL,
    total_referral_rewards TEXT NOT NULL,
    edge_nodes_count INTEGER NOT NULL,
    total_keeper_tips_paid TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_snapshots_block ON hourly_snapshots(block_number);

-- Per-contract ingestion cursor for resumption
CREATE TABLE IF NOT EXISTS sync_state (
    contract TEXT PRIMARY KEY,
    last_block INTEGER NOT NULL,
    last_timestamp INTEGER,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Rejected mutations awaiting operator review
CREATE TABLE IF NOT EXISTS invariant_flags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    contract TEXT NOT NULL,
    event_name TEXT NOT NULL,
    block_number INTEGER NOT NULL,
    transaction_hash TEXT NOT NULL,
    log_index INTEGER NOT NULL,
    code TEXT NOT NULL,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_flags_block ON invariant_flags(block_number);
""" + "".join(_RAW_TABLE_DDL.format(table=t) for t in RAW_TABLES.values())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore:
    """aiosqlite-backed store with serialized transactions.

    All writes go through ``transaction()``; reads through ``read()``.
    Both hold the same lock, so a reader never observes another
    worker's uncommitted changes on the shared connection.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode: transactions are issued explicitly below
        self._db = await aiosqlite.connect(self._db_path, isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys=ON")
        if self._db_path != ":memory:":
            await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.executescript(SCHEMA)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreSession]:
        """Run a unit of work atomically; rolls back on any exception."""
        async with self._lock:
            await self.db.execute("BEGIN IMMEDIATE")
            try:
                yield StoreSession(self.db)
                await self.db.execute("COMMIT")
            except BaseException:
                # A failed COMMIT (e.g. SQLITE_BUSY) leaves the transaction open
                if self.db.in_transaction:
                    await self.db.execute("ROLLBACK")
                raise

    @asynccontextmanager
    async def read(self) -> AsyncIterator[StoreSession]:
        """Read committed state once any open transaction has finished."""
        async with self._lock:
            yield StoreSession(self.db)


class StoreSession:
    """Row-level operations bound to one connection.

    Never commits; the owning ``transaction()`` decides.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    @asynccontextmanager
    async def savepoint(self, name: str = "projection") -> AsyncIterator[None]:
        await self.db.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            await self.db.execute(f"ROLLBACK TO {name}")
            await self.db.execute(f"RELEASE {name}")
            raise
        else:
            await self.db.execute(f"RELEASE {name}")

    @asynccontextmanager
    async def scratch(self, name: str = "scratch") -> AsyncIterator[None]:
        """Savepoint whose writes are always undone on exit."""
        await self.db.execute(f"SAVEPOINT {name}")
        try:
            yield
        finally:
            await self.db.execute(f"ROLLBACK TO {name}")
            await self.db.execute(f"RELEASE {name}")

    # ── Raw event log ──────────────────────────────────────

    async def insert_raw_event(self, role: ContractRole, event: RawEvent) -> None:
        """Append one raw event. Raises DuplicateEvent if its key is recorded."""
        try:
            await self.db.execute(
                f"INSERT INTO {RAW_TABLES[role]}"
                " (contract_address, event_name, args, block_number, transaction_hash,"
                "  transaction_index, log_index, block_timestamp, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    event.contract_address, event.event_name, json.dumps(list(event.args)),
                    event.block_number, event.transaction_hash, event.transaction_index,
                    event.log_index, event.block_timestamp, _now(),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateEvent(f"{RAW_TABLES[role]} already holds {event.key}") from exc

    async def get_raw_event(
        self, role: ContractRole, block_number: int, transaction_hash: str, log_index: int,
    ) -> RawEvent | None:
        async with self.db.execute(
            f"SELECT * FROM {RAW_TABLES[role]}"
            " WHERE block_number=? AND transaction_hash=? AND log_index=?",
            (block_number, transaction_hash, log_index),
        ) as cur:
            row = await cur.fetchone()
            return _row_to_raw_event(row) if row else None

    async def find_coordinate_conflict(
        self, role: ContractRole, event: RawEvent,
    ) -> RawEvent | None:
        """A recorded event at the same (block, log index) from another transaction."""
        async with self.db.execute(
            f"SELECT * FROM {RAW_TABLES[role]}"
            " WHERE block_number=? AND log_index=? AND transaction_hash<>? LIMIT 1",
            (event.block_number, event.log_index, event.transaction_hash),
        ) as cur:
            row = await cur.fetchone()
            return _row_to_raw_event(row) if row else None

    async def head_coordinate(self, role: ContractRole) -> tuple[int, int, int] | None:
        async with self.db.execute(
            f"SELECT block_number, transaction_index, log_index FROM {RAW_TABLES[role]}"
            " ORDER BY block_number DESC, transaction_index DESC, log_index DESC LIMIT 1"
        ) as cur:
            row = await cur.fetchone()
            return (row[0], row[1], row[2]) if row else None

    async def ordered_raw_events(
        self, before_timestamp: int | None = None,
    ) -> list[tuple[ContractRole, RawEvent]]:
        """Every recorded event across both contracts in chain order."""
        where = "" if before_timestamp is None else " WHERE block_timestamp < ?"
        parts = [
            f"SELECT '{role.value}' AS role, * FROM {table}{where}"
            for role, table in RAW_TABLES.items()
        ]
        sql = (
            " UNION ALL ".join(parts)
            + " ORDER BY block_number, transaction_index, log_index"
        )
        params = () if before_timestamp is None else (before_timestamp,) * len(parts)
        async with self.db.execute(sql, params) as cur:
            return [
                (ContractRole(row["role"]), _row_to_raw_event(row))
                async for row in cur
            ]

    async def delete_raw_events_from(self, block_number: int) -> int:
        deleted = 0
        for table in RAW_TABLES.values():
            cur = await self.db.execute(
                f"DELETE FROM {table} WHERE block_number >= ?", (block_number,)
            )
            deleted += cur.rowcount
        return deleted

    async def count_raw_events(self, role: ContractRole) -> int:
        async with self.db.execute(f"SELECT COUNT(*) AS c FROM {RAW_TABLES[role]}") as cur:
            row = await cur.fetchone()
            return row["c"] if row else 0

    async def raw_timestamp_range(self) -> tuple[int, int] | None:
        """Earliest and latest block timestamp in the raw log."""
        parts = [
            f"SELECT MIN(block_timestamp) AS lo, MAX(block_timestamp) AS hi FROM {t}"
            for t in RAW_TABLES.values()
        ]
        sql = f"SELECT MIN(lo) AS lo, MAX(hi) AS hi FROM ({' UNION ALL '.join(parts)})"
        async with self.db.execute(sql) as cur:
            row = await cur.fetchone()
            if row is None or row["lo"] is None:
                return None
            return row["lo"], row["hi"]

    async def last_timestamp_before(self, block_number: int) -> int | None:
        parts = [
            f"SELECT MAX(block_timestamp) AS ts FROM {t} WHERE block_number < ?"
            for t in RAW_TABLES.values()
        ]
        sql = f"SELECT MAX(ts) AS ts FROM ({' UNION ALL '.join(parts)})"
        async with self.db.execute(sql, (block_number,) * len(parts)) as cur:
            row = await cur.fetchone()
            return row["ts"] if row else None

    async def last_block_before(self, timestamp: int) -> int | None:
        parts = [
            f"SELECT MAX(block_number) AS b FROM {t} WHERE block_timestamp < ?"
            for t in RAW_TABLES.values()
        ]
        sql = f"SELECT MAX(b) AS b FROM ({' UNION ALL '.join(parts)})"
        async with self.db.execute(sql, (timestamp,) * len(parts)) as cur:
            row = await cur.fetchone()
            return row["b"] if row else None

    async def latest_net_assets(self, before_timestamp: int) -> int | None:
        """Most recent CurrentNetAssets value, preferring exact readings."""
        async with self.db.execute(
            f"SELECT args FROM {RAW_TABLES[ContractRole.NODE_MANAGER]}"
            " WHERE event_name='CurrentNetAssets' AND block_timestamp < ?"
            " ORDER BY block_number DESC, transaction_index DESC, log_index DESC",
            (before_timestamp,),
        ) as cur:
            approximate: int | None = None
            async for row in cur:
                net_assets, is_exact = json.loads(row["args"])[:2]
                if is_exact:
                    return int(net_assets)
                if approximate is None:
                    approximate = int(net_assets)
            return approximate

    # ── Addresses ──────────────────────────────────────────

    async def get_or_create_address(self, address: str) -> AddressRecord:
        address = address.lower()
        await self.db.execute(
            "INSERT OR IGNORE INTO addresses (address, created_at) VALUES (?, ?)",
            (address, _now()),
        )
        async with self.db.execute(
            "SELECT id, address FROM addresses WHERE address=?", (address,)
        ) as cur:
            row = await cur.fetchone()
            return AddressRecord(id=row["id"], address=row["address"])

    # ── Edge nodes ─────────────────────────────────────────

    async def get_edge_node(self, address: str) -> EdgeNodeRecord | None:
        async with self.db.execute(
            "SELECT e.*, a.address FROM edge_nodes e"
            " JOIN addresses a ON a.id = e.address_id WHERE a.address=?",
            (address.lower(),),
        ) as cur:
            row = await cur.fetchone()
            return _row_to_edge_node(row) if row else None

    async def list_edge_nodes(
        self, active: bool | None = None, faulty: bool | None = None,
    ) -> list[EdgeNodeRecord]:
        where, params = [], []
        if active is not None:
            where.append("e.is_active=?")
            params.append(int(active))
        if faulty is not None:
            where.append("e.is_faulty=?")
            params.append(int(faulty))
        sql = "SELECT e.*, a.address FROM edge_nodes e JOIN addresses a ON a.id = e.address_id"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY e.registration_block, e.id"
        async with self.db.execute(sql, params) as cur:
            return [_row_to_edge_node(row) async for row in cur]

    async def save_edge_node(self, node: EdgeNodeRecord) -> None:
        now = _now()
        await self.db.execute(
            "INSERT INTO edge_nodes"
            " (address_id, registration_block, registration_timestamp, is_active,"
            "  deactivation_block, deactivation_timestamp, is_faulty, faulty_block,"
            "  faulty_timestamp, recovery_block, recovery_timestamp, unstake_block,"
            "  total_staked, total_unstaked, node_type, is_live, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(address_id) DO UPDATE SET"
            " registration_block=excluded.registration_block,"
            " registration_timestamp=excluded.registration_timestamp,"
            " is_active=excluded.is_active,"
            " deactivation_block=excluded.deactivation_block,"
            " deactivation_timestamp=excluded.deactivation_timestamp,"
            " is_faulty=excluded.is_faulty, faulty_block=excluded.faulty_block,"
            " faulty_timestamp=excluded.faulty_timestamp,"
            " recovery_block=excluded.recovery_block,"
            " recovery_timestamp=excluded.recovery_timestamp,"
            " unstake_block=excluded.unstake_block,"
            " total_staked=excluded.total_staked, total_unstaked=excluded.total_unstaked,"
            " node_type=excluded.node_type, is_live=excluded.is_live,"
            " updated_at=excluded.updated_at",
            (
                node.address_id, node.registration_block, node.registration_timestamp,
                int(node.is_active), node.deactivation_block, node.deactivation_timestamp,
                int(node.is_faulty), node.faulty_block, node.faulty_timestamp,
                node.recovery_block, node.recovery_timestamp, node.unstake_block,
                str(node.total_staked), str(node.total_unstaked),
                node.node_type.value if node.node_type else None,
                int(node.is_live), now, now,
            ),
        )

    # ── Users ──────────────────────────────────────────────

    async def get_user(self, address: str) -> UserRecord | None:
        async with self.db.execute(
            "SELECT u.*, a.address FROM users u"
            " JOIN addresses a ON a.id = u.address_id WHERE a.address=?",
            (address.lower(),),
        ) as cur:
            row = await cur.fetchone()
            return _row_to_user(row) if row else None

    async def list_users(self) -> list[UserRecord]:
        async with self.db.execute(
            "SELECT u.*, a.address FROM users u"
            " JOIN addresses a ON a.id = u.address_id ORDER BY u.id"
        ) as cur:
            return [_row_to_user(row) async for row in cur]

    async def save_user(self, user: UserRecord) -> None:
        now = _now()
        await self.db.execute(
            "INSERT INTO users"
            " (address_id, balance, total_deposited, total_withdrawn, total_minted,"
            "  total_burned, total_keeper_fees_earned, total_referral_fees_earned,"
            "  total_entering_fees_paid, total_exit_fees_paid, credits_available,"
            "  has_held, first_activity_block, first_activity_timestamp,"
            "  last_activity_block, last_activity_timestamp, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(address_id) DO UPDATE SET"
            " balance=excluded.balance, total_deposited=excluded.total_deposited,"
            " total_withdrawn=excluded.total_withdrawn, total_minted=excluded.total_minted,"
            " total_burned=excluded.total_burned,"
            " total_keeper_fees_earned=excluded.total_keeper_fees_earned,"
            " total_referral_fees_earned=excluded.total_referral_fees_earned,"
            " total_entering_fees_paid=excluded.total_entering_fees_paid,"
            " total_exit_fees_paid=excluded.total_exit_fees_paid,"
            " credits_available=excluded.credits_available, has_held=excluded.has_held,"
            " first_activity_block=excluded.first_activity_block,"
            " first_activity_timestamp=excluded.first_activity_timestamp,"
            " last_activity_block=excluded.last_activity_block,"
            " last_activity_timestamp=excluded.last_activity_timestamp,"
            " updated_at=excluded.updated_at",
            (
                user.address_id, str(user.balance), str(user.total_deposited),
                str(user.total_withdrawn), str(user.total_minted), str(user.total_burned),
                str(user.total_keeper_fees_earned), str(user.total_referral_fees_earned),
                str(user.total_entering_fees_paid), str(user.total_exit_fees_paid),
                str(user.credits_available), int(user.has_held),
                user.first_activity_block, user.first_activity_timestamp,
                user.last_activity_block, user.last_activity_timestamp, now, now,
            ),
        )

    # ── Redemption queue ───────────────────────────────────

    async def insert_redemption(self, entry: RedemptionRecord) -> None:
        now = _now()
        await self.db.execute(
            "INSERT INTO redemption_queue"
            " (address_id, request_block, request_timestamp, stfuel_amount_burned,"
            "  tfuel_amount_expected, keepers_tip_fee, unlock_block_number,"
            "  unlock_timestamp, queue_index, status, credited_block,"
            "  credited_timestamp, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.address_id, entry.request_block, entry.request_timestamp,
                str(entry.stfuel_amount_burned), str(entry.tfuel_amount_expected),
                str(entry.keepers_tip_fee), entry.unlock_block_number,
                entry.unlock_timestamp, entry.queue_index, entry.status.value,
                entry.credited_block, entry.credited_timestamp, now, now,
            ),
        )

    async def update_redemption(self, entry: RedemptionRecord) -> None:
        await self.db.execute(
            "UPDATE redemption_queue SET status=?, unlock_timestamp=?,"
            " credited_block=?, credited_timestamp=?, updated_at=? WHERE queue_index=?",
            (
                entry.status.value, entry.unlock_timestamp, entry.credited_block,
                entry.credited_timestamp, _now(), entry.queue_index,
            ),
        )

    async def get_redemption(self, queue_index: int) -> RedemptionRecord | None:
        async with self.db.execute(
            "SELECT r.*, a.address FROM redemption_queue r"
            " JOIN addresses a ON a.id = r.address_id WHERE r.queue_index=?",
            (queue_index,),
        ) as cur:
            row = await cur.fetchone()
            return _row_to_redemption(row) if row else None

    async def max_queue_index(self) -> int | None:
        async with self.db.execute("SELECT MAX(queue_index) AS m FROM redemption_queue") as cur:
            row = await cur.fetchone()
            return row["m"] if row else None

    async def oldest_claimable_index(self) -> int | None:
        async with self.db.execute(
            "SELECT MIN(queue_index) AS m FROM redemption_queue WHERE status=?",
            (RedemptionStatus.CLAIMABLE.value,),
        ) as cur:
            row = await cur.fetchone()
            return row["m"] if row else None

    async def release_unlocked(self, block_number: int, block_timestamp: int) -> int:
        """Move every Pending entry whose unlock block has been reached to Claimable."""
        cur = await self.db.execute(
            "UPDATE redemption_queue SET status=?, unlock_timestamp=?, updated_at=?"
            " WHERE status=? AND unlock_block_number <= ?",
            (
                RedemptionStatus.CLAIMABLE.value, block_timestamp, _now(),
                RedemptionStatus.PENDING.value, block_number,
            ),
        )
        return cur.rowcount

    async def list_redemptions(
        self, address: str | None = None, status: RedemptionStatus | None = None,
    ) -> list[RedemptionRecord]:
        where, params = [], []
        if address is not None:
            where.append("a.address=?")
            params.append(address.lower())
        if status is not None:
            where.append("r.status=?")
            params.append(status.value)
        sql = (
            "SELECT r.*, a.address FROM redemption_queue r"
            " JOIN addresses a ON a.id = r.address_id"
        )
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY r.queue_index"
        async with self.db.execute(sql, params) as cur:
            return [_row_to_redemption(row) async for row in cur]

    # ── Invariant flags ────────────────────────────────────

    async def record_flag(
        self, role: ContractRole, event: RawEvent, code: str, message: str,
    ) -> None:
        await self.db.execute(
            "INSERT INTO invariant_flags"
            " (contract, event_name, block_number, transaction_hash, log_index,"
            "  code, message, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                role.value, event.event_name, event.block_number,
                event.transaction_hash, event.log_index, code, message, _now(),
            ),
        )

    async def count_flags(self) -> int:
        async with self.db.execute("SELECT COUNT(*) AS c FROM invariant_flags") as cur:
            row = await cur.fetchone()
            return row["c"] if row else 0

    async def list_flags(self, limit: int = 100) -> list[InvariantFlagRecord]:
        async with self.db.execute(
            "SELECT * FROM invariant_flags ORDER BY block_number DESC, id DESC LIMIT ?",
            (limit,),
        ) as cur:
            return [
                InvariantFlagRecord(
                    id=row["id"],
                    contract=row["contract"],
                    event_name=row["event_name"],
                    block_number=row["block_number"],
                    transaction_hash=row["transaction_hash"],
                    log_index=row["log_index"],
                    code=row["code"],
                    message=row["message"],
                    created_at=row["created_at"],
                )
                async for row in cur
            ]

    # ── Projection reset (reorg / rebuild) ─────────────────

    async def reset_projection(self) -> None:
        """Drop all derived rows; addresses are insert-only and stay."""
        for table in ("redemption_queue", "edge_nodes", "users", "invariant_flags"):
            await self.db.execute(f"DELETE FROM {table}")

    async def delete_snapshots_from(
        self, block_number: int, after_timestamp: int | None = None,
    ) -> int:
        """Drop snapshots at or past ``block_number``, and any boundary after
        ``after_timestamp`` when given."""
        cur = await self.db.execute(
            "DELETE FROM hourly_snapshots WHERE block_number >= ?"
            " OR (? IS NOT NULL AND snapshot_timestamp > ?)",
            (block_number, after_timestamp, after_timestamp),
        )
        return cur.rowcount

    # ── Cursors ────────────────────────────────────────────

    async def get_cursor(self, contract: str) -> SyncCursor | None:
        async with self.db.execute(
            "SELECT * FROM sync_state WHERE contract=?", (contract,)
        ) as cur:
            row = await cur.fetchone()
            return _row_to_cursor(row) if row else None

    async def list_cursors(self) -> list[SyncCursor]:
        async with self.db.execute("SELECT * FROM sync_state ORDER BY contract") as cur:
            return [_row_to_cursor(row) async for row in cur]

    async def set_cursor(
        self,
        contract: str,
        last_block: int,
        last_timestamp: int | None = None,
        expected_block: int | None = None,
    ) -> bool:
        """Advance a cursor; with ``expected_block`` this is compare-and-set.

        Returns False if the stored cursor moved (e.g. a reorg rewound it).
        """
        if expected_block is None:
            await self.db.execute(
                "INSERT INTO sync_state (contract, last_block, last_timestamp, updated_at)"
                " VALUES (?, ?, ?, ?)"
                " ON CONFLICT(contract) DO UPDATE SET last_block=excluded.last_block,"
                " last_timestamp=excluded.last_timestamp, updated_at=excluded.updated_at",
                (contract, last_block, last_timestamp, _now()),
            )
            return True
        cur = await self.db.execute(
            "UPDATE sync_state SET last_block=?, last_timestamp=?, updated_at=?"
            " WHERE contract=? AND last_block=?",
            (last_block, last_timestamp, _now(), contract, expected_block),
        )
        return cur.rowcount == 1

    async def rewind_cursors(self, block_number: int) -> None:
        """Move every cursor at or past ``block_number`` back before it."""
        await self.db.execute(
            "UPDATE sync_state SET last_block=?, last_timestamp=NULL, updated_at=?"
            " WHERE last_block >= ?",
            (block_number - 1, _now(), block_number),
        )

    # ── Snapshots ──────────────────────────────────────────

    async def get_snapshot(self, snapshot_timestamp: int) -> HourlySnapshotRecord | None:
        async with self.db.execute(
            "SELECT * FROM hourly_snapshots WHERE snapshot_timestamp=?",
            (snapshot_timestamp,),
        ) as cur:
            row = await cur.fetchone()
            return _row_to_snapshot(row) if row else None

    async def insert_snapshot(self, snap: HourlySnapshotRecord) -> bool:
        """Insert unless the boundary already exists. Returns True if inserted."""
        cur = await self.db.execute(
            "INSERT OR IGNORE INTO hourly_snapshots"
            " (snapshot_timestamp, block_number, tfuel_backing_amount,"
            "  tfuel_staked_amount, stfuel_total_supply, current_holders_count,"
            "  historical_holders_count, total_referral_rewards, edge_nodes_count,"
            "  total_keeper_tips_paid, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                snap.snapshot_timestamp, snap.block_number,
                str(snap.tfuel_backing_amount), str(snap.tfuel_staked_amount),
                str(snap.stfuel_total_supply), snap.current_holders_count,
                snap.historical_holders_count, str(snap.total_referral_rewards),
                snap.edge_nodes_count, str(snap.total_keeper_tips_paid), _now(),
            ),
        )
        return cur.rowcount == 1

    async def latest_snapshot(self) -> HourlySnapshotRecord | None:
        async with self.db.execute(
            "SELECT * FROM hourly_snapshots ORDER BY snapshot_timestamp DESC LIMIT 1"
        ) as cur:
            row = await cur.fetchone()
            return _row_to_snapshot(row) if row else None

    async def snapshots_between(
        self, start: int | None = None, end: int | None = None,
    ) -> list[HourlySnapshotRecord]:
        where, params = [], []
        if start is not None:
            where.append("snapshot_timestamp >= ?")
            params.append(start)
        if end is not None:
            where.append("snapshot_timestamp <= ?")
            params.append(end)
        sql = "SELECT * FROM hourly_snapshots"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY snapshot_timestamp"
        async with self.db.execute(sql, params) as cur:
            return [_row_to_snapshot(row) async for row in cur]


# ── Row converters ─────────────────────────────────────────


def _int(value: str | int | None) -> int:
    return int(value) if value is not None else 0


def _row_to_raw_event(row: aiosqlite.Row) -> RawEvent:
    return RawEvent(
        contract_address=row["contract_address"],
        event_name=row["event_name"],
        args=tuple(json.loads(row["args"])),
        block_number=row["block_number"],
        transaction_hash=row["transaction_hash"],
        transaction_index=row["transaction_index"],
        log_index=row["log_index"],
        block_timestamp=row["block_timestamp"],
    )


def _row_to_edge_node(row: aiosqlite.Row) -> EdgeNodeRecord:
    return EdgeNodeRecord(
        id=row["id"],
        address_id=row["address_id"],
        address=row["address"],
        registration_block=row["registration_block"],
        registration_timestamp=row["registration_timestamp"],
        is_active=bool(row["is_active"]),
        deactivation_block=row["deactivation_block"],
        deactivation_timestamp=row["deactivation_timestamp"],
        is_faulty=bool(row["is_faulty"]),
        faulty_block=row["faulty_block"],
        faulty_timestamp=row["faulty_timestamp"],
        recovery_block=row["recovery_block"],
        recovery_timestamp=row["recovery_timestamp"],
        unstake_block=row["unstake_block"],
        total_staked=_int(row["total_staked"]),
        total_unstaked=_int(row["total_unstaked"]),
        node_type=NodeType(row["node_type"]) if row["node_type"] else None,
        is_live=bool(row["is_live"]),
    )


def _row_to_user(row: aiosqlite.Row) -> UserRecord:
    return UserRecord(
        id=row["id"],
        address_id=row["address_id"],
        address=row["address"],
        balance=_int(row["balance"]),
        total_deposited=_int(row["total_deposited"]),
        total_withdrawn=_int(row["total_withdrawn"]),
        total_minted=_int(row["total_minted"]),
        total_burned=_int(row["total_burned"]),
        total_keeper_fees_earned=_int(row["total_keeper_fees_earned"]),
        total_referral_fees_earned=_int(row["total_referral_fees_earned"]),
        total_entering_fees_paid=_int(row["total_entering_fees_paid"]),
        total_exit_fees_paid=_int(row["total_exit_fees_paid"]),
        credits_available=_int(row["credits_available"]),
        has_held=bool(row["has_held"]),
        first_activity_block=row["first_activity_block"],
        first_activity_timestamp=row["first_activity_timestamp"],
        last_activity_block=row["last_activity_block"],
        last_activity_timestamp=row["last_activity_timestamp"],
    )


def _row_to_redemption(row: aiosqlite.Row) -> RedemptionRecord:
    return RedemptionRecord(
        id=row["id"],
        address_id=row["address_id"],
        address=row["address"],
        request_block=row["request_block"],
        request_timestamp=row["request_timestamp"],
        stfuel_amount_burned=_int(row["stfuel_amount_burned"]),
        tfuel_amount_expected=_int(row["tfuel_amount_expected"]),
        keepers_tip_fee=_int(row["keepers_tip_fee"]),
        unlock_block_number=row["unlock_block_number"],
        unlock_timestamp=row["unlock_timestamp"],
        queue_index=row["queue_index"],
        status=RedemptionStatus(row["status"]),
        credited_block=row["credited_block"],
        credited_timestamp=row["credited_timestamp"],
    )


def _row_to_snapshot(row: aiosqlite.Row) -> HourlySnapshotRecord:
    return HourlySnapshotRecord(
        snapshot_timestamp=row["snapshot_timestamp"],
        block_number=row["block_number"],
        tfuel_backing_amount=_int(row["tfuel_backing_amount"]),
        tfuel_staked_amount=_int(row["tfuel_staked_amount"]),
        stfuel_total_supply=_int(row["stfuel_total_supply"]),
        current_holders_count=row["current_holders_count"],
        historical_holders_count=row["historical_holders_count"],
        total_referral_rewards=_int(row["total_referral_rewards"]),
        edge_nodes_count=row["edge_nodes_count"],
        total_keeper_tips_paid=_int(row["total_keeper_tips_paid"]),
        created_at=row["created_at"],
    )


def _row_to_cursor(row: aiosqlite.Row) -> SyncCursor:
    return SyncCursor(
        contract=row["contract"],
        last_block=row["last_block"],
        last_timestamp=row["last_timestamp"],
        updated_at=row["updated_at"],
    )
