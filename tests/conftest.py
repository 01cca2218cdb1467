from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path
from typing import Dict, List

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
os.environ.setdefault("STOCKSYNC_HOME", tempfile.mkdtemp(prefix="stocksync-tests-"))

from stocksync.sheets_client import GoogleSheetsStore, SheetTarget  # noqa: E402
from stocksync.workbook_service import WorkbookService  # noqa: E402

HEADERS: List[str] = [
    "Brand",
    "Product Code",
    "Product Name",
    "Lot",
    "Date",
    "Quantity",
    "Unit",
    "Expiry Date",
    "Import Date",
    "Location",
    "Warehouse",
    "Notes",
]


def make_row(brand: str, code: str, name: str, quantity: int | str, **extra: str) -> List[str]:
    values: Dict[str, str] = {
        "Brand": brand,
        "Product Code": code,
        "Product Name": name,
        "Quantity": str(quantity),
        "Unit": extra.pop("unit", "box"),
    }
    for key, value in extra.items():
        values[key.replace("_", " ").title()] = value
    return [values.get(header, "") for header in HEADERS]


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def edit_cell(workbook: WorkbookService, title: str, cell: str, value: str) -> None:
    """Change one cell the way a person editing the sheet directly would."""

    workbook.spreadsheets().values().update(
        spreadsheetId=str(workbook.path), range=f"'{title}'!{cell}", body={"values": [[value]]}
    ).execute()


def delete_sheet_row(workbook: WorkbookService, title: str, row_number: int) -> None:
    metadata = workbook.spreadsheets().get(spreadsheetId=str(workbook.path)).execute()
    sheet_id = next(
        sheet["properties"]["sheetId"] for sheet in metadata["sheets"] if sheet["properties"]["title"] == title
    )
    body = {
        "requests": [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": row_number - 1,
                        "endIndex": row_number,
                    }
                }
            }
        ]
    }
    workbook.spreadsheets().batchUpdate(spreadsheetId=str(workbook.path), body=body).execute()


@pytest.fixture
def workbook(tmp_path: Path) -> WorkbookService:
    return WorkbookService.create(
        tmp_path / "inventory.json",
        {
            "A": [
                HEADERS,
                make_row("Roche", "R-100", "Reagent X", 8),
                make_row("Abbott", "AB-7", "Test Strip", 12),
                make_row("Siemens", "S-55", "Calibrator", 3),
            ],
            "B": [HEADERS],
        },
    )


@pytest.fixture
def store(workbook: WorkbookService) -> GoogleSheetsStore:
    targets = {key: SheetTarget(str(workbook.path), key) for key in ("A", "B")}
    return GoogleSheetsStore(targets, service=workbook)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sync_settings(workbook: WorkbookService, tmp_path: Path):
    from settings import SourceSettings, SyncSettings

    return SyncSettings(
        sources=[
            SourceSettings("A", str(workbook.path), "A", "Kho A"),
            SourceSettings("B", str(workbook.path), "B", "Kho B"),
        ],
        credential_path=str(tmp_path / "unused.json"),
        change_log_path=str(tmp_path / "changes.jsonl"),
    )


@pytest.fixture
def runtime(sync_settings, store: GoogleSheetsStore):
    from stocksync.runtime import build_runtime

    built = build_runtime(sync_settings, store=store)
    yield built
    built.close()


@pytest.fixture
def events(runtime) -> list:
    received: list = []
    runtime.broadcaster.subscribe(received.append)
    return received
