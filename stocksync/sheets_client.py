"""Google Sheets adapter used as the remote store for inventory sources.

This module centralises every direct interaction with the Google Sheets API.
Each configured source maps to one worksheet of one spreadsheet; callers
address it by source key and a sheet-relative A1 range (``"A2:O"``) and this
layer takes care of quoting titles, retrying rate-limited calls and turning
``HttpError`` into :class:`SheetsClientError` subclasses.

Five operations make up the surface area the rest of StockSync relies on:

``read_range``
    Fetch a rectangular range as a list of string rows.
``write_range``
    Overwrite a rectangular range.
``append_rows``
    Append rows after the last non-empty row of the worksheet.
``delete_rows``
    Remove a contiguous block of rows with a ``deleteDimension`` request.
``get_metadata``
    Resolve the numeric ``sheetId`` of the worksheet.

Every call is blocking; :mod:`stocksync.remote` runs them off the event loop
with a timeout.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from stocksync.google_credentials import InvalidServiceAccountFile, read_service_account
from stocksync.workbook_service import WorkbookService, is_workbook_target

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = ("https://www.googleapis.com/auth/spreadsheets",)
RETRIABLE_STATUSES = {429, 500, 502, 503, 504}
MAX_RETRY_ATTEMPTS = 3
BACKOFF_SCHEDULE = (0.5, 1.0, 2.0)


@dataclass(frozen=True)
class SheetTarget:
    """Spreadsheet and worksheet backing one inventory source."""

    spreadsheet_id: str
    worksheet_title: str = ""


class SheetsClientError(RuntimeError):
    """Base error raised for Sheets API failures."""


class SheetsConfigurationError(SheetsClientError):
    """Raised when a source is unknown or its spreadsheet is not configured."""


class SheetsCredentialsError(SheetsClientError):
    """Raised when the provided credential file is invalid or missing."""


class SheetsApiResponseError(SheetsClientError):
    """Raised when the Google API returns an error response."""

    def __init__(self, message: str, *, status: int = 0) -> None:
        super().__init__(message)
        self.status = status


def parse_spreadsheet_id(value: str) -> str:
    """Normalise a spreadsheet identifier from raw input or URL."""

    if not value:
        return ""
    value = value.strip()
    if "/spreadsheets/d/" in value:
        value = value.split("/spreadsheets/d/", 1)[1]
        value = value.split("/", 1)[0]
    for marker in ("?", "#"):
        if marker in value:
            value = value.split(marker, 1)[0]
    return value


def quote_worksheet_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if len(safe) >= 2 and safe[0] == safe[-1] and safe[0] in {"'", '"'}:
        safe = safe[1:-1].replace("''", "'")
    safe = safe.replace("'", "''")
    return f"'{safe}'"


def a1_range(title: str, range_spec: str) -> str:
    """Prefix ``range_spec`` with the quoted worksheet title, if any."""

    if not (title or "").strip():
        return range_spec
    return f"{quote_worksheet_title(title)}!{range_spec}"


_UPDATED_RANGE_RE = re.compile(r"![A-Z]+(?P<row>\d+)")


def _first_row_of(updated_range: str) -> Optional[int]:
    match = _UPDATED_RANGE_RE.search(updated_range or "")
    if not match:
        return None
    return int(match.group("row"))


def http_status(exc: HttpError) -> int:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "resp", None), "status", 0)
    try:
        return int(status or 0)
    except (TypeError, ValueError):
        return 0


def _call_with_retry(func: Callable[[], Any], description: str) -> Any:
    """Execute ``func`` applying backoff for rate limits and server errors."""

    attempt = 0
    while True:
        try:
            return func()
        except HttpError as exc:
            status = http_status(exc)
            if status not in RETRIABLE_STATUSES or attempt >= MAX_RETRY_ATTEMPTS - 1:
                raise SheetsApiResponseError(f"Sheets {description} failed: {exc}", status=status) from exc
            delay = BACKOFF_SCHEDULE[min(attempt, len(BACKOFF_SCHEDULE) - 1)]
            attempt += 1
            logger.warning(
                "Sheets API %s error (%s). Retrying in %ss (%d/%d)",
                description,
                status,
                delay,
                attempt,
                MAX_RETRY_ATTEMPTS,
            )
            time.sleep(delay)


def build_service(credential_path: str | Path):
    """Construct an authenticated Sheets service from a service account file."""

    path = Path(credential_path).expanduser()
    if not path.exists():
        raise SheetsCredentialsError(f"Credentials file not found: {path}")
    try:
        account = read_service_account(path)
    except InvalidServiceAccountFile as exc:
        raise SheetsCredentialsError(str(exc)) from exc

    try:
        credentials = service_account.Credentials.from_service_account_info(account.info, scopes=list(SCOPES))
    except ValueError as exc:
        raise SheetsCredentialsError(str(exc)) from exc
    logger.info("Using service account %s for Sheets access", account.client_email)
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


class GoogleSheetsStore:
    """Remote store speaking to one worksheet per configured source."""

    def __init__(
        self,
        targets: Mapping[str, SheetTarget],
        *,
        service=None,
        service_factory: Optional[Callable[[SheetTarget], Any]] = None,
        value_input_option: str = "USER_ENTERED",
    ) -> None:
        self._targets = dict(targets)
        self._service = service
        self._service_factory = service_factory
        self._services: Dict[str, Any] = {}
        self._value_input_option = value_input_option

    @property
    def sources(self) -> List[str]:
        return list(self._targets)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def read_range(self, source: str, range_spec: str) -> List[List[str]]:
        service, target = self._resolve(source)
        request = (
            service.spreadsheets()
            .values()
            .get(
                spreadsheetId=target.spreadsheet_id,
                range=a1_range(target.worksheet_title, range_spec),
                majorDimension="ROWS",
            )
        )
        result = _call_with_retry(request.execute, "values.get")
        values = result.get("values", []) if isinstance(result, Mapping) else []
        return [["" if cell is None else str(cell) for cell in row] for row in values]

    def write_range(self, source: str, range_spec: str, rows: Sequence[Sequence[Any]]) -> None:
        service, target = self._resolve(source)
        request = (
            service.spreadsheets()
            .values()
            .update(
                spreadsheetId=target.spreadsheet_id,
                range=a1_range(target.worksheet_title, range_spec),
                valueInputOption=self._value_input_option,
                body={"values": [list(row) for row in rows]},
            )
        )
        _call_with_retry(request.execute, "values.update")

    def append_rows(self, source: str, rows: Sequence[Sequence[Any]]) -> Optional[int]:
        """Append ``rows`` and return the first row number written, if reported."""

        if not rows:
            return None
        service, target = self._resolve(source)
        request = (
            service.spreadsheets()
            .values()
            .append(
                spreadsheetId=target.spreadsheet_id,
                range=a1_range(target.worksheet_title, "A1"),
                valueInputOption=self._value_input_option,
                insertDataOption="INSERT_ROWS",
                body={"values": [list(row) for row in rows]},
            )
        )
        result = _call_with_retry(request.execute, "values.append")
        updates = result.get("updates", {}) if isinstance(result, Mapping) else {}
        return _first_row_of(str(updates.get("updatedRange", "")))

    def delete_rows(self, source: str, sheet_id: int, start_index: int, end_index: int) -> None:
        """Delete rows ``[start_index, end_index)`` (0-based) from the worksheet."""

        if start_index < 0 or end_index <= start_index:
            raise ValueError(f"Invalid row range: {start_index}..{end_index}")
        service, target = self._resolve(source)
        body = {
            "requests": [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": sheet_id,
                            "dimension": "ROWS",
                            "startIndex": start_index,
                            "endIndex": end_index,
                        }
                    }
                }
            ]
        }
        request = service.spreadsheets().batchUpdate(spreadsheetId=target.spreadsheet_id, body=body)
        _call_with_retry(request.execute, "batchUpdate.deleteDimension")

    def get_metadata(self, source: str) -> Dict[str, Any]:
        service, target = self._resolve(source)
        request = service.spreadsheets().get(spreadsheetId=target.spreadsheet_id, includeGridData=False)
        metadata = _call_with_retry(request.execute, "spreadsheets.get")
        title, sheet_id = _resolve_worksheet(metadata, target.worksheet_title)
        return {"sheet_id": sheet_id, "title": title}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _resolve(self, source: str) -> Tuple[Any, SheetTarget]:
        target = self._targets.get(source)
        if target is None:
            raise SheetsConfigurationError(f"Unknown source: {source}")
        if not target.spreadsheet_id:
            raise SheetsConfigurationError(f"Spreadsheet ID not configured for source {source}")
        if self._service is not None:
            return self._service, target
        service = self._services.get(source)
        if service is None:
            if self._service_factory is None:
                raise SheetsConfigurationError("No Sheets service available")
            service = self._service_factory(target)
            self._services[source] = service
        return service, target


def _resolve_worksheet(metadata: Mapping[str, Any], worksheet_title: str) -> Tuple[str, int]:
    sheets = metadata.get("sheets", []) if isinstance(metadata, Mapping) else []
    candidates: List[Tuple[str, int]] = []
    for sheet in sheets:
        props = sheet.get("properties", {}) if isinstance(sheet, Mapping) else {}
        title = props.get("title")
        sheet_id = props.get("sheetId")
        if isinstance(title, str) and isinstance(sheet_id, int):
            candidates.append((title, sheet_id))

    if not candidates:
        raise SheetsApiResponseError("Worksheet not found in spreadsheet metadata.")

    wanted = (worksheet_title or "").strip().strip("'\"").lower()
    if wanted:
        for title, sheet_id in candidates:
            if title.lower() == wanted:
                return title, sheet_id
        logger.warning("Worksheet %r not found; using first worksheet %r", worksheet_title, candidates[0][0])
    return candidates[0]


def build_store(
    targets: Mapping[str, SheetTarget],
    credential_path: str | Path,
    *,
    value_input_option: str = "USER_ENTERED",
) -> GoogleSheetsStore:
    """Factory used by the application to construct the remote store.

    Targets whose spreadsheet id points at a ``.json`` workbook are served by
    :class:`~stocksync.workbook_service.WorkbookService`; everything else goes
    through the Google API with the service account at ``credential_path``.
    """

    def _factory(target: SheetTarget):
        if is_workbook_target(target.spreadsheet_id):
            return WorkbookService(Path(target.spreadsheet_id).expanduser())
        # one service per source: sources are called from separate threads
        return build_service(credential_path)

    resolved = {
        key: SheetTarget(
            spreadsheet_id=target.spreadsheet_id
            if is_workbook_target(target.spreadsheet_id)
            else parse_spreadsheet_id(target.spreadsheet_id),
            worksheet_title=target.worksheet_title,
        )
        for key, target in targets.items()
    }
    return GoogleSheetsStore(resolved, service_factory=_factory, value_input_option=value_input_option)


__all__ = [
    "GoogleSheetsStore",
    "SheetTarget",
    "SheetsApiResponseError",
    "SheetsClientError",
    "SheetsConfigurationError",
    "SheetsCredentialsError",
    "a1_range",
    "build_service",
    "build_store",
    "http_status",
    "parse_spreadsheet_id",
    "quote_worksheet_title",
]
