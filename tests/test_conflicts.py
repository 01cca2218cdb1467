from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from conftest import edit_cell
from stocksync.conflicts import ConflictLog
from stocksync.errors import EditConflict, RowNotFound


def test_commit_conflict_is_kept_in_recent_conflicts(runtime, workbook) -> None:
    async def scenario():
        await runtime.sessions.begin_edit("lan", "A_3")
        edit_cell(workbook, "A", "F3", "11")
        await runtime.sessions.commit("lan", "A_3", {"quantity": "10"})

    with pytest.raises(EditConflict):
        asyncio.run(scenario())

    latest = runtime.conflicts.recent(1)[0]
    assert latest["row_id"] == "A_3"
    assert latest["source"] == "commit"
    assert latest["user"] == "lan"
    assert latest["fields"] == {"quantity": ["12", "11"]}


def test_unresolvable_row_is_recorded_as_drift_conflict(runtime) -> None:
    with pytest.raises(RowNotFound):
        asyncio.run(runtime.resolver.resolve("A", 9, {"product_code": "ZZ-1"}, user="minh"))

    latest = runtime.conflicts.recent()[0]
    assert latest["source"] == "drift"
    assert latest["reason"] == "row_not_found"
    assert latest["user"] == "minh"


def test_each_runtime_owns_its_conflicts(sync_settings, store) -> None:
    from stocksync.runtime import build_runtime

    first = build_runtime(sync_settings, store=store)
    second = build_runtime(sync_settings, store=store)
    try:
        with pytest.raises(RowNotFound):
            asyncio.run(first.resolver.resolve("A", 9, {"product_code": "ZZ-1"}))
    finally:
        first.close()
        second.close()

    assert len(first.conflicts) == 1
    assert len(second.conflicts) == 0


def test_recent_is_newest_first_and_bounded(tmp_path: Path) -> None:
    log = ConflictLog(tmp_path / "conflicts.log", keep=2)
    for index in range(3):
        log.record(f"A_{index + 2}", {"quantity": ("1", "2")})

    assert [entry["row_id"] for entry in log.recent()] == ["A_4", "A_3"]
    lines = (tmp_path / "conflicts.log").read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[-1].split("] ", 1)[1])["row_id"] == "A_4"
    log.clear()
    assert log.recent() == []
