"""Command-line interface against a file-backed store."""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from stfuel_tracker.cli import cli
from stfuel_tracker.models.events import ZERO_ADDRESS

from tests.factories import ALICE, BOB, NODE_MANAGER, TOKEN, tx_hash_for


def _line(name, args, block, contract=TOKEN, log_index=0):
    return json.dumps({
        "contractAddress": contract,
        "eventName": name,
        "args": args,
        "blockNumber": block,
        "transactionHash": tx_hash_for(block),
        "transactionIndex": 0,
        "logIndex": log_index,
        "blockTimestamp": 1_700_000_000 + block,
    })


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.setenv("STFUEL_TRACKER_DB_PATH", str(tmp_path / "state.db"))
    monkeypatch.setenv("STFUEL_TRACKER_NODE_MANAGER_ADDRESS", NODE_MANAGER)
    monkeypatch.setenv("STFUEL_TRACKER_STFUEL_ADDRESS", TOKEN)
    return CliRunner()


@pytest.fixture
def events_file(tmp_path):
    path = tmp_path / "events.jsonl"
    path.write_text("\n".join([
        _line("Transfer", [ZERO_ADDRESS, ALICE, 1_000], block=1),
        _line("Transfer", [ALICE, BOB, 400], block=2),
        _line("BurnQueued", [BOB, 100, 100, 0, 1, 1], block=3, log_index=1),
        _line("Transfer", [ALICE, BOB, 400], block=2),
        "",
    ]))
    return path


def test_ingest_and_query(runner, events_file):
    result = runner.invoke(cli, ["ingest", str(events_file)])
    assert result.exit_code == 0, result.output
    counts = json.loads(result.stdout)
    assert counts == {"applied": 3, "duplicate": 1}

    result = runner.invoke(cli, ["user", ALICE])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["balance"] == "600"

    result = runner.invoke(cli, ["queue", "--status", "pending"])
    entries = json.loads(result.stdout)
    assert [(e["queue_index"], e["user"]) for e in entries] == [(1, BOB)]

    result = runner.invoke(cli, ["flags"])
    assert json.loads(result.stdout) == []


def test_rebuild_replays_raw_log(runner, events_file):
    runner.invoke(cli, ["ingest", str(events_file)])
    result = runner.invoke(cli, ["rebuild"])
    assert result.exit_code == 0
    assert "Replayed 3 events" in result.output

    result = runner.invoke(cli, ["user", BOB])
    assert json.loads(result.stdout)["balance"] == "400"


def test_unknown_user_exits_nonzero(runner):
    result = runner.invoke(cli, ["user", ALICE])
    assert result.exit_code == 1


def test_status_lists_contracts(runner):
    result = runner.invoke(cli, ["status"])
    assert result.exit_code == 0
    assert "node_manager" in result.output
    assert "Open flags:    0" in result.output
