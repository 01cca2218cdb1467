from __future__ import annotations

import asyncio

import pytest

from conftest import delete_sheet_row
from stocksync.broadcast import EventKind
from stocksync.errors import RemoteUnavailable, RowNotFound, ValidationError
from stocksync.models import ChangeAction, FieldChange, MoveRequest
from stocksync.reconciler import DEBOUNCED
from stocksync.runtime import build_runtime
from stocksync.sheets_client import SheetsApiResponseError


class _NoDeleteStore:
    def __init__(self, inner) -> None:
        self._inner = inner

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def delete_rows(self, source, sheet_id, start_index, end_index):
        raise SheetsApiResponseError("Sheets batchUpdate.deleteDimension failed: backend error", status=500)


class _OneAppendStore:
    def __init__(self, inner) -> None:
        self._inner = inner
        self.appends = 0

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def append_rows(self, source, rows):
        self.appends += 1
        if self.appends > 1:
            raise SheetsApiResponseError("Sheets values.append failed: backend error", status=500)
        return self._inner.append_rows(source, rows)


def _entries(runtime, action):
    return runtime.changelog.query(action=action)


def test_partial_relocation_moves_quantity_to_new_destination_row(runtime, workbook, events) -> None:
    results = asyncio.run(
        runtime.inventory.relocate("lan", [MoveRequest("A_2", 5)], "B", notes="restock B")
    )

    assert workbook.rows("A")[1][5] == "3"
    destination = workbook.rows("B")[1]
    assert destination[:3] == ["Roche", "R-100", "Reagent X"]
    assert destination[5] == "5"
    assert destination[10] == "Kho B"
    assert destination[11] == "restock B"

    relocations = _entries(runtime, ChangeAction.RELOCATE)
    assert len(relocations) == 1
    entry = relocations[0]
    assert entry.row_id == "A_2"
    assert entry.changes == {"quantity": FieldChange("8", "3")}
    assert entry.metadata["moved_quantity"] == 5
    assert entry.metadata["destination_id"] == "B_2"
    assert results[0]["source_quantity_after"] == 3

    assert [event.kind for event in events] == [EventKind.INVENTORY_UPDATE, EventKind.RECENT_CHANGES]
    assert events[0].action == "RELOCATE"


def test_full_relocation_deletes_source_row(runtime, workbook) -> None:
    asyncio.run(runtime.inventory.relocate("lan", [MoveRequest("A_4")], "B"))

    assert [row[0] for row in workbook.rows("A")[1:]] == ["Roche", "Abbott"]
    assert workbook.rows("B")[1][5] == "3"
    assert _entries(runtime, ChangeAction.RELOCATE)[0].metadata["source_quantity_after"] == 0


def test_relocating_several_rows_of_one_source(runtime, workbook) -> None:
    asyncio.run(runtime.inventory.relocate("lan", [MoveRequest("A_2"), MoveRequest("A_3", 2)], "B"))

    assert [row[0] for row in workbook.rows("A")[1:]] == ["Abbott", "Siemens"]
    assert workbook.rows("A")[1][5] == "10"
    assert sorted(row[0] for row in workbook.rows("B")[1:]) == ["Abbott", "Roche"]
    assert len(_entries(runtime, ChangeAction.RELOCATE)) == 2


@pytest.mark.parametrize(
    "items, destination",
    [
        ([], "B"),
        ([MoveRequest("A_2", 9)], "B"),
        ([MoveRequest("A_2", 0)], "B"),
        ([MoveRequest("A_2", 1)], "A"),
        ([MoveRequest("A_2", 1)], "C"),
        ([MoveRequest("A_2", 1), MoveRequest("A_2", 2)], "B"),
    ],
)
def test_invalid_relocations_are_rejected_before_writing(runtime, workbook, items, destination) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(runtime.inventory.relocate("lan", items, destination))

    assert workbook.rows("A")[1][5] == "8"
    assert len(workbook.rows("B")) == 1


def test_failed_source_adjustment_leaves_stock_over_counted(sync_settings, store, workbook) -> None:
    runtime = build_runtime(sync_settings, store=_NoDeleteStore(store))
    try:
        with pytest.raises(RemoteUnavailable):
            asyncio.run(runtime.inventory.relocate("lan", [MoveRequest("A_4")], "B"))
    finally:
        runtime.close()

    assert workbook.rows("A")[3][0] == "Siemens"
    assert workbook.rows("B")[1][0] == "Siemens"
    entry = runtime.changelog.recent(1)[0]
    assert entry.action is ChangeAction.RELOCATE
    assert entry.metadata["incomplete"] is True
    assert runtime.state.mutation_in_progress is False


def test_failed_relocation_announces_moves_already_applied(sync_settings, store, workbook) -> None:
    runtime = build_runtime(sync_settings, store=_OneAppendStore(store))
    received = []
    runtime.broadcaster.subscribe(received.append)
    try:
        with pytest.raises(RemoteUnavailable):
            asyncio.run(
                runtime.inventory.relocate("lan", [MoveRequest("A_2", 2), MoveRequest("A_3", 2)], "B")
            )
    finally:
        runtime.close()

    assert workbook.rows("A")[1][5] == "8"
    assert workbook.rows("A")[2][5] == "10"
    assert [row[0] for row in workbook.rows("B")[1:]] == ["Abbott"]
    updates = [event for event in received if event.kind is EventKind.INVENTORY_UPDATE]
    assert len(updates) == 1
    assert updates[0].action == "RELOCATE"
    assert updates[0].payload["data"]["incomplete"] is True
    assert [item["id"] for item in updates[0].payload["data"]["items"]] == ["A_3"]
    assert runtime.state.mutation_in_progress is False


def test_bulk_send_out_decrements_and_deletes_empty_rows(runtime, workbook, events) -> None:
    results = asyncio.run(
        runtime.inventory.bulk_send_out(
            "lan", [MoveRequest("A_2"), MoveRequest("A_3", 2)], recipient="Bach Mai Hospital"
        )
    )

    rows = workbook.rows("A")[1:]
    assert [row[0] for row in rows] == ["Abbott", "Siemens"]
    assert rows[0][5] == "10"
    assert {result["id"] for result in results} == {"A_2", "A_3"}
    send_outs = _entries(runtime, ChangeAction.SEND_OUT)
    assert len(send_outs) == 2
    assert all(entry.metadata["recipient"] == "Bach Mai Hospital" for entry in send_outs)
    assert [event.action for event in events if event.kind is EventKind.INVENTORY_UPDATE] == ["BULK_SEND_OUT"]


def test_bulk_send_out_requires_recipient(runtime) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(runtime.inventory.bulk_send_out("lan", [MoveRequest("A_2", 1)], recipient=" "))


def test_add_item_appends_row_and_logs_add(runtime, workbook, events) -> None:
    record = asyncio.run(
        runtime.inventory.add_item(
            "lan", "A", {"brand": "Sysmex", "product_code": "SY-1", "product_name": "Diluent", "quantity": 4}
        )
    )

    assert record.id == "A_5"
    row = workbook.rows("A")[4]
    assert row[:3] == ["Sysmex", "SY-1", "Diluent"]
    assert row[13:15] == ["lan", "1"]
    entry = runtime.changelog.recent(1)[0]
    assert entry.action is ChangeAction.ADD
    assert entry.changes["quantity"] == FieldChange("", "4")
    assert events[0].action == "ADD"


def test_add_item_validates_input(runtime) -> None:
    with pytest.raises(ValidationError):
        asyncio.run(runtime.inventory.add_item("lan", "Z", {"brand": "Sysmex"}))
    with pytest.raises(ValidationError):
        asyncio.run(runtime.inventory.add_item("lan", "A", {"unknown": "value"}))


def test_add_item_writes_header_row_to_empty_source(runtime, workbook) -> None:
    delete_sheet_row(workbook, "B", 1)

    record = asyncio.run(runtime.inventory.add_item("lan", "B", {"brand": "Sysmex", "quantity": "1"}))

    assert record.id == "B_2"
    assert workbook.rows("B")[0][0] == "Tên hãng"


def test_delete_follows_drifted_row(runtime, workbook, events) -> None:
    delete_sheet_row(workbook, "A", 2)

    record = asyncio.run(
        runtime.inventory.delete_item(
            "lan", "A_3", {"brand": "Abbott", "product_code": "AB-7", "product_name": "Test Strip"}
        )
    )

    assert record.value("product_code") == "AB-7"
    assert [row[0] for row in workbook.rows("A")[1:]] == ["Siemens"]
    entry = runtime.changelog.recent(1)[0]
    assert entry.action is ChangeAction.DELETE
    assert entry.metadata == {"row_number": 2, "strategy": "full_match"}
    assert events[0].payload["data"]["id"] == "A_3"


def test_delete_without_match_fields_uses_last_seen_row(runtime, workbook) -> None:
    asyncio.run(runtime.loop.run_once())
    delete_sheet_row(workbook, "A", 2)

    record = asyncio.run(runtime.inventory.delete_item("lan", "A_3"))

    assert record.value("product_code") == "AB-7"
    assert [row[0] for row in workbook.rows("A")[1:]] == ["Siemens"]
    assert runtime.changelog.recent(1)[0].metadata["strategy"] == "full_match"


def test_delete_of_unknown_row_fails_without_writing(runtime, workbook) -> None:
    with pytest.raises(RowNotFound):
        asyncio.run(runtime.inventory.delete_item("lan", "A_9", {"brand": "Unknown"}))

    assert len(workbook.rows("A")) == 4


def test_mutation_stamps_debounce_anchor(runtime) -> None:
    async def scenario():
        await runtime.loop.run_once()
        await runtime.inventory.add_item("lan", "A", {"brand": "Sysmex", "quantity": "1"})
        return await runtime.loop.run_once()

    result = asyncio.run(scenario())

    assert result.status == DEBOUNCED
    assert runtime.state.last_broadcast_at is not None
