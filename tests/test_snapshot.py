from __future__ import annotations

import pytest

from conftest import HEADERS, make_row
from stocksync.mapper import RowMapper
from stocksync.models import DeltaKind
from stocksync.snapshot import Snapshot, calc_hash, diff_snapshots


def _snapshot(rows_a, rows_b=()) -> Snapshot:
    mapper = RowMapper()
    return Snapshot.merge(
        {
            "A": mapper.to_records("A", [HEADERS, *rows_a]),
            "B": mapper.to_records("B", [HEADERS, *rows_b]),
        }
    )


def test_unchanged_snapshot_has_no_deltas() -> None:
    rows = [make_row("Roche", "R-100", "Reagent X", 8), make_row("Abbott", "AB-7", "Test Strip", 12)]
    first = _snapshot(rows)
    second = _snapshot([list(row) for row in rows])

    assert first.serialize() == second.serialize()
    assert diff_snapshots(first, second) == []
    assert diff_snapshots(first, first) == []


def test_diff_classifies_add_update_and_delete() -> None:
    old = _snapshot(
        [make_row("Roche", "R-100", "Reagent X", 8), make_row("Abbott", "AB-7", "Test Strip", 12)],
        [make_row("Siemens", "S-55", "Calibrator", 3)],
    )
    new = _snapshot(
        [make_row("Roche", "R-100", "Reagent X", 5)],
        [make_row("Siemens", "S-55", "Calibrator", 3), make_row("Sysmex", "SY-1", "Diluent", 1)],
    )

    deltas = diff_snapshots(old, new)

    assert [(delta.kind, delta.id) for delta in deltas] == [
        (DeltaKind.UPDATE, "A_2"),
        (DeltaKind.ADD, "B_3"),
        (DeltaKind.DELETE, "A_3"),
    ]
    update = deltas[0].to_dict()
    assert update["before"]["quantity"] == "8"
    assert update["after"]["quantity"] == "5"
    assert "before" not in deltas[1].to_dict()


def test_meta_changes_count_as_updates() -> None:
    row = make_row("Roche", "R-100", "Reagent X", 8)
    old = _snapshot([row + ["2024-01-01T00:00:00Z", "lan", "1"]])
    new = _snapshot([row + ["2024-01-02T00:00:00Z", "lan", "2"]])

    assert [delta.kind for delta in diff_snapshots(old, new)] == [DeltaKind.UPDATE]


def test_hash_is_independent_of_field_order() -> None:
    record = _snapshot([make_row("Roche", "R-100", "Reagent X", 8)]).get("A_2")
    reordered = type(record)(
        id=record.id,
        source=record.source,
        row_number=record.row_number,
        fields=dict(reversed(list(record.fields.items()))),
        meta=record.meta,
    )

    assert calc_hash(record) == calc_hash(reordered)


def test_duplicate_ids_are_rejected() -> None:
    records = RowMapper().to_records("A", [HEADERS, make_row("Roche", "R-100", "Reagent X", 8)])

    with pytest.raises(ValueError):
        Snapshot(records + records)


def test_items_and_source_filter() -> None:
    snapshot = _snapshot([make_row("Roche", "R-100", "Reagent X", 8)], [make_row("Siemens", "S-55", "Calibrator", 3)])

    assert [item["id"] for item in snapshot.items()] == ["A_2", "B_2"]
    assert [record.id for record in snapshot.for_source("B")] == ["B_2"]
    assert "A_2" in snapshot and len(snapshot) == 2
