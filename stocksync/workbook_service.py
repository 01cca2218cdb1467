"""Lightweight Sheets API drop-in backed by a JSON workbook file.

The service implements the subset of the ``spreadsheets()`` request surface
StockSync uses (``values().get/update/append``, ``get`` and ``batchUpdate``
with ``deleteDimension``) so that a source can point at a local
``.json`` file instead of a Google spreadsheet.  It is used for offline work
and by the test-suite.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple


@dataclass(frozen=True)
class _CellRef:
    row: Optional[int]
    column: Optional[int]


class _WorkbookRequest:
    def __init__(self, callback: Callable[[], Mapping[str, object]]) -> None:
        self._callback = callback

    def execute(self) -> Mapping[str, object]:
        return self._callback()


class _Workbook:
    """Load/save helper shared by the request proxies."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Tuple[Dict[str, List[List[str]]], Dict[str, int]]:
        if not self.path.exists():
            return {}, {}
        with open(self.path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        raw_sheets = payload.get("sheets", {})
        sheets = {
            str(title): [["" if cell is None else str(cell) for cell in row] for row in rows]
            for title, rows in raw_sheets.items()
        }
        sheet_ids = {str(title): int(value) for title, value in payload.get("sheet_ids", {}).items()}
        for index, title in enumerate(sheets):
            sheet_ids.setdefault(title, index)
        return sheets, sheet_ids

    def save(self, sheets: Mapping[str, Sequence[Sequence[str]]], sheet_ids: Mapping[str, int]) -> None:
        if self.path.parent:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "sheets": {title: [list(row) for row in rows] for title, rows in sheets.items()},
            "sheet_ids": {title: sheet_ids[title] for title in sheets if title in sheet_ids},
        }
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)

    def resolve_title(self, sheets: Mapping[str, object], title: Optional[str]) -> str:
        if title:
            return title
        if sheets:
            return next(iter(sheets))
        return "Sheet1"


class WorkbookValuesApi:
    def __init__(self, workbook: _Workbook) -> None:
        self._workbook = workbook

    def get(self, spreadsheetId: str, range: str, majorDimension: str = "ROWS") -> _WorkbookRequest:  # noqa: N803
        return _WorkbookRequest(lambda: self._handle_get(range))

    def update(  # noqa: N803 - API compatibility
        self,
        spreadsheetId: str,
        range: str,
        valueInputOption: str = "RAW",
        body: Optional[Mapping[str, object]] = None,
    ) -> _WorkbookRequest:
        return _WorkbookRequest(lambda: self._handle_update(range, body or {}))

    def append(  # noqa: N803 - API compatibility
        self,
        spreadsheetId: str,
        range: str,
        valueInputOption: str = "RAW",
        insertDataOption: str = "INSERT_ROWS",
        body: Optional[Mapping[str, object]] = None,
    ) -> _WorkbookRequest:
        return _WorkbookRequest(lambda: self._handle_append(range, body or {}))

    # ------------------------------------------------------------------
    # Range operations
    # ------------------------------------------------------------------
    def _handle_get(self, range_spec: str) -> Mapping[str, object]:
        sheets, _ = self._workbook.load()
        title, start, end = parse_range(range_spec)
        rows = sheets.get(self._workbook.resolve_title(sheets, title), [])
        return {"range": range_spec, "majorDimension": "ROWS", "values": _slice_rows(rows, start, end)}

    def _handle_update(self, range_spec: str, body: Mapping[str, object]) -> Mapping[str, object]:
        sheets, sheet_ids = self._workbook.load()
        title, start, _ = parse_range(range_spec)
        title = self._workbook.resolve_title(sheets, title)
        rows = sheets.setdefault(title, [])
        values = body.get("values", [])
        base_row = start.row or 1
        base_col = start.column or 1
        written = 0
        for offset, row in enumerate(values if isinstance(values, Sequence) else []):
            _write_row(rows, base_row + offset, base_col, row)
            written += 1
        sheet_ids.setdefault(title, len(sheet_ids))
        self._workbook.save(sheets, sheet_ids)
        return {"updatedRange": range_spec, "updatedRows": written}

    def _handle_append(self, range_spec: str, body: Mapping[str, object]) -> Mapping[str, object]:
        sheets, sheet_ids = self._workbook.load()
        title, _, _ = parse_range(range_spec)
        title = self._workbook.resolve_title(sheets, title)
        rows = sheets.setdefault(title, [])
        while rows and not any(cell.strip() for cell in rows[-1]):
            rows.pop()
        first_row = len(rows) + 1
        values = [list(row) for row in body.get("values", [])]  # type: ignore[union-attr]
        for offset, row in enumerate(values):
            _write_row(rows, first_row + offset, 1, row)
        sheet_ids.setdefault(title, len(sheet_ids))
        self._workbook.save(sheets, sheet_ids)
        width = max((len(row) for row in values), default=1)
        last_row = first_row + max(len(values), 1) - 1
        updated = f"'{title}'!A{first_row}:{_column_label(width)}{last_row}"
        return {"updates": {"updatedRange": updated, "updatedRows": len(values)}}


class WorkbookSpreadsheetsApi:
    def __init__(self, workbook: _Workbook) -> None:
        self._workbook = workbook

    def values(self) -> WorkbookValuesApi:  # noqa: D401 - compatibility proxy
        return WorkbookValuesApi(self._workbook)

    def get(self, spreadsheetId: str, includeGridData: bool = False, **_: Any) -> _WorkbookRequest:  # noqa: N803
        def _metadata() -> Mapping[str, object]:
            sheets, sheet_ids = self._workbook.load()
            return {
                "spreadsheetId": str(self._workbook.path),
                "sheets": [
                    {"properties": {"title": title, "sheetId": sheet_ids[title], "index": index}}
                    for index, title in enumerate(sheets)
                ],
            }

        return _WorkbookRequest(_metadata)

    def batchUpdate(self, spreadsheetId: str, body: Mapping[str, object]) -> _WorkbookRequest:  # noqa: N802
        return _WorkbookRequest(lambda: self._handle_batch_update(body))

    def _handle_batch_update(self, body: Mapping[str, object]) -> Mapping[str, object]:
        sheets, sheet_ids = self._workbook.load()
        titles_by_id = {sheet_id: title for title, sheet_id in sheet_ids.items()}
        replies: List[Mapping[str, object]] = []
        for request in body.get("requests", []):  # type: ignore[union-attr]
            if not isinstance(request, Mapping):
                continue
            delete = request.get("deleteDimension")
            if isinstance(delete, Mapping):
                target = delete.get("range", {})
                if target.get("dimension") != "ROWS":
                    raise ValueError("Only ROWS deleteDimension requests are supported")
                title = titles_by_id.get(int(target.get("sheetId", -1)))
                if title is None:
                    raise ValueError(f"Unknown sheetId: {target.get('sheetId')!r}")
                start = int(target.get("startIndex", 0))
                end = int(target.get("endIndex", start + 1))
                del sheets[title][start:end]
                replies.append({})
        self._workbook.save(sheets, sheet_ids)
        return {"replies": replies}


class WorkbookService:
    """Minimal Sheets API drop-in that stores worksheets in a JSON file."""

    def __init__(self, workbook_path: Path) -> None:
        self._workbook = _Workbook(Path(workbook_path))

    @property
    def path(self) -> Path:
        return self._workbook.path

    @classmethod
    def create(cls, workbook_path: Path, sheets: Mapping[str, Sequence[Sequence[Any]]]) -> "WorkbookService":
        """Write ``sheets`` to ``workbook_path`` and return a service for it."""

        workbook = _Workbook(Path(workbook_path))
        normalised = {
            title: [["" if cell is None else str(cell) for cell in row] for row in rows]
            for title, rows in sheets.items()
        }
        workbook.save(normalised, {title: index for index, title in enumerate(normalised)})
        return cls(workbook.path)

    def spreadsheets(self) -> WorkbookSpreadsheetsApi:  # noqa: D401 - compatibility proxy
        return WorkbookSpreadsheetsApi(self._workbook)

    def rows(self, title: Optional[str] = None) -> List[List[str]]:
        """Return the raw rows of ``title`` (or the first worksheet)."""

        sheets, _ = self._workbook.load()
        return [list(row) for row in sheets.get(self._workbook.resolve_title(sheets, title), [])]


def is_workbook_target(spreadsheet_id: str) -> bool:
    return Path(spreadsheet_id or "").suffix.lower() == ".json"


_CELL_RE = re.compile(r"^(?P<col>[A-Z]*)(?P<row>\d*)$")


def parse_range(range_spec: str) -> Tuple[Optional[str], _CellRef, _CellRef]:
    """Split an A1 range into worksheet title, start and end cell references."""

    text = (range_spec or "").strip()
    title: Optional[str] = None
    cells = text
    if "!" in text:
        title_part, cells = text.rsplit("!", 1)
        title_part = title_part.strip()
        if len(title_part) >= 2 and title_part[0] == title_part[-1] == "'":
            title_part = title_part[1:-1].replace("''", "'")
        title = title_part or None
    if not cells:
        return title, _CellRef(None, None), _CellRef(None, None)
    if ":" in cells:
        start_text, end_text = cells.split(":", 1)
    else:
        start_text = end_text = cells
    return title, _parse_cell(start_text), _parse_cell(end_text)


def _parse_cell(value: str) -> _CellRef:
    value = value.strip().upper()
    match = _CELL_RE.match(value)
    if not match:
        raise ValueError(f"Invalid cell reference: {value!r}")
    column_label = match.group("col")
    row_text = match.group("row")
    column = _column_index(column_label) if column_label else None
    row = int(row_text) if row_text else None
    return _CellRef(row=row, column=column)


def _column_index(label: str) -> int:
    index = 0
    for char in label:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return max(1, index)


def _column_label(index: int) -> str:
    letters: List[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters)) or "A"


def _write_row(rows: List[List[str]], row_number: int, base_col: int, values: Sequence[Any]) -> None:
    while len(rows) < row_number:
        rows.append([])
    target = rows[row_number - 1]
    needed = base_col - 1 + len(values)
    if len(target) < needed:
        target.extend([""] * (needed - len(target)))
    for offset, cell in enumerate(values):
        target[base_col - 1 + offset] = "" if cell is None else str(cell)


def _slice_rows(rows: Sequence[Sequence[str]], start: _CellRef, end: _CellRef) -> List[List[str]]:
    if not rows:
        return []
    min_row = max(1, start.row or 1)
    min_col = max(1, start.column or 1)
    max_row = end.row or len(rows)
    max_col = end.column or max(len(row) for row in rows)
    sliced: List[List[str]] = []
    for row_index in range(min_row - 1, min(max_row, len(rows))):
        row = rows[row_index]
        current = [str(row[col]) for col in range(min_col - 1, min(max_col, len(row)))]
        while current and current[-1] == "":
            current.pop()
        sliced.append(current)
    while sliced and not sliced[-1]:
        sliced.pop()
    return sliced


__all__ = ["WorkbookService", "is_workbook_target", "parse_range"]
