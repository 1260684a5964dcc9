from __future__ import annotations

import json
from pathlib import Path

import pytest

from theatre_sync.cli import build_parser, main_async, resolve_config
from theatre_sync.offline_queue import OfflineQueue
from theatre_sync.storage import SQLiteBackend


def test_resolve_config_from_flags(tmp_path: Path) -> None:
    args = build_parser().parse_args(["--base-url", "https://theatre.example", "--db", str(tmp_path / "q.db"), "status"])

    config = resolve_config(args)

    assert config.base_url == "https://theatre.example"
    assert config.store_path == str(tmp_path / "q.db")


def test_resolve_config_flags_override_yaml(tmp_path: Path) -> None:
    path = tmp_path / "sync.yaml"
    path.write_text("base_url: https://theatre.example\nstore_path: from-file.db\n", encoding="utf-8")
    args = build_parser().parse_args(["--config", str(path), "--db", str(tmp_path / "flag.db"), "drain"])

    config = resolve_config(args)

    assert config.base_url == "https://theatre.example"
    assert config.store_path == str(tmp_path / "flag.db")


@pytest.mark.asyncio
async def test_status_reports_pending(tmp_path: Path, capsys) -> None:
    db = tmp_path / "q.db"
    OfflineQueue(SQLiteBackend(db)).enqueue("POST", "/api/duty-logs", {"action": "start"})
    args = build_parser().parse_args(["--base-url", "https://theatre.example", "--db", str(db), "status"])

    assert await main_async(args) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["pending"] == 1
    assert payload["dead_letters"] == 0


@pytest.mark.asyncio
async def test_dead_letters_listing_and_requeue(tmp_path: Path, capsys) -> None:
    db = tmp_path / "q.db"
    queue = OfflineQueue(SQLiteBackend(db))
    request_id = queue.enqueue("POST", "/api/surgeries", {"slot": "08:00"})
    queue.dead_letter(queue.get(request_id), reason="rejected", status=409)
    base = ["--base-url", "https://theatre.example", "--db", str(db)]

    assert await main_async(build_parser().parse_args([*base, "dead-letters"])) == 0
    listing = json.loads(capsys.readouterr().out)
    assert [item["request"]["id"] for item in listing] == [request_id]

    assert await main_async(build_parser().parse_args([*base, "requeue", request_id])) == 0
    assert json.loads(capsys.readouterr().out)["requeued"] == request_id
    assert OfflineQueue(SQLiteBackend(db)).count() == 1

    assert await main_async(build_parser().parse_args([*base, "requeue", request_id])) == 1
    assert await main_async(build_parser().parse_args([*base, "discard", "unknown"])) == 1
