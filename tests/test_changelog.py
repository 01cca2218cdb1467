from __future__ import annotations

import json
from pathlib import Path

from stocksync.changelog import ChangeLog
from stocksync.models import ChangeAction, ChangeLogEntry, FieldChange


def _update(user: str, row_id: str, timestamp: float) -> ChangeLogEntry:
    return ChangeLogEntry.create(
        user,
        ChangeAction.UPDATE,
        row_id,
        changes={"quantity": FieldChange("8", "5")},
        timestamp=timestamp,
    )


def test_duplicate_updates_within_one_second_collapse() -> None:
    log = ChangeLog()

    assert log.append(_update("lan", "A_2", 100.0)) is True
    assert log.append(_update("lan", "A_2", 100.4)) is False

    assert len(log) == 1


def test_entries_outside_window_or_for_other_keys_are_kept() -> None:
    log = ChangeLog()

    log.append(_update("lan", "A_2", 100.0))
    log.append(_update("lan", "A_2", 101.5))
    log.append(_update("minh", "A_2", 101.6))
    log.append(_update("lan", "A_3", 101.7))
    log.append(ChangeLogEntry.create("lan", ChangeAction.CONFLICT_DETECTED, "A_2", timestamp=101.8))

    assert len(log) == 5


def test_query_is_newest_first_with_since_and_limit() -> None:
    log = ChangeLog()
    for offset in range(5):
        log.append(_update("lan", f"A_{offset + 2}", 100.0 + offset))

    newest = log.query(limit=2)
    since = log.query(since=102.0)

    assert [entry.row_id for entry in newest] == ["A_6", "A_5"]
    assert [entry.timestamp for entry in since] == [104.0, 103.0, 102.0]
    assert log.query(limit=0) == []
    assert [entry.row_id for entry in log.query(row_id="A_3")] == ["A_3"]


def test_retention_keeps_newest_entries() -> None:
    log = ChangeLog(max_entries=3)
    for offset in range(5):
        log.append(_update("lan", f"A_{offset + 2}", 100.0 + offset))

    assert [entry.row_id for entry in log.recent(10)] == ["A_6", "A_5", "A_4"]


def test_entries_persist_as_json_lines(tmp_path: Path) -> None:
    path = tmp_path / "logs" / "changes.jsonl"
    log = ChangeLog(path)
    log.append(_update("lan", "A_2", 100.0))
    log.record("lan", ChangeAction.DELETE, "A_3", metadata={"row_number": 3})

    lines = path.read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[0])["changes"] == {"quantity": {"old": "8", "new": "5"}}

    reloaded = ChangeLog(path)
    assert [entry.action for entry in reloaded.recent(5)] == [ChangeAction.DELETE, ChangeAction.UPDATE]
    assert reloaded.recent(1)[0].metadata == {"row_number": 3}


def test_malformed_lines_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "changes.jsonl"
    entry = _update("lan", "A_2", 100.0)
    path.write_text("{broken\n" + json.dumps(entry.to_dict()) + "\n", encoding="utf-8")

    log = ChangeLog(path)

    assert [item.row_id for item in log.recent()] == ["A_2"]


def test_compaction_rewrites_file_with_retained_entries(tmp_path: Path) -> None:
    path = tmp_path / "changes.jsonl"
    log = ChangeLog(path, max_entries=2)
    for offset in range(4):
        log.append(_update("lan", f"A_{offset + 2}", 100.0 + offset))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["row_id"] for line in lines] == ["A_4", "A_5"]
