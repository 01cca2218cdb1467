"""Application configuration helpers for StockSync."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from stocksync import app_paths
from stocksync.sheets_client import SheetTarget


logger = logging.getLogger(__name__)


SETTINGS_PATH_ENV = "STOCKSYNC_SETTINGS_PATH"
CREDENTIALS_PATH_ENV = "STOCKSYNC_CREDENTIALS_PATH"
SPREADSHEET_ID_ENV = "STOCKSYNC_SPREADSHEET_ID"

DEFAULT_SOURCES = (("TH", "TH"), ("VKT", "VKT"))
DEFAULT_POLL_INTERVAL = 30
DEFAULT_DEBOUNCE_SECONDS = 2.0
DEFAULT_REMOTE_TIMEOUT = 15.0
DEFAULT_CHANGE_LOG_ENTRIES = 1000
DEFAULT_DEDUPE_WINDOW = 1.0


def default_settings_path() -> str:
    return os.getenv(SETTINGS_PATH_ENV) or str(app_paths.data_path("sync_settings.json"))


def default_credentials_path() -> str:
    return os.getenv(CREDENTIALS_PATH_ENV) or str(app_paths.credentials_path("service_account.json"))


def default_spreadsheet_id() -> str:
    return os.getenv(SPREADSHEET_ID_ENV) or str(app_paths.data_path("stocksync_workbook.json"))


@dataclass
class SourceSettings:
    """One inventory source: a worksheet inside a spreadsheet."""

    key: str
    spreadsheet_id: str
    worksheet_title: str = ""
    warehouse_label: str = ""

    @property
    def label(self) -> str:
        return self.warehouse_label or self.key

    def target(self) -> SheetTarget:
        return SheetTarget(spreadsheet_id=self.spreadsheet_id, worksheet_title=self.worksheet_title)

    def to_json(self) -> Dict[str, object]:
        return {
            "key": self.key,
            "spreadsheet_id": self.spreadsheet_id,
            "worksheet_title": self.worksheet_title,
            "warehouse_label": self.warehouse_label,
        }


@dataclass
class SyncSettings:
    sources: List[SourceSettings]
    credential_path: str
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    remote_timeout_seconds: float = DEFAULT_REMOTE_TIMEOUT
    session_ttl_seconds: int = 0
    allow_partial_match: bool = True
    carry_forward_on_failure: bool = False
    change_log_path: str = ""
    change_log_max_entries: int = DEFAULT_CHANGE_LOG_ENTRIES
    dedupe_window_seconds: float = DEFAULT_DEDUPE_WINDOW
    header_aliases: Dict[str, List[str]] = field(default_factory=dict)

    def source_keys(self) -> List[str]:
        return [source.key for source in self.sources]

    def targets(self) -> Dict[str, SheetTarget]:
        return {source.key: source.target() for source in self.sources}

    def warehouse_labels(self) -> Dict[str, str]:
        return {source.key: source.label for source in self.sources}

    def resolved_change_log_path(self) -> str:
        return self.change_log_path or str(app_paths.data_path("change_log.jsonl"))

    def to_json(self) -> Dict[str, object]:
        return {
            "sources": [source.to_json() for source in self.sources],
            "credential_path": self.credential_path,
            "poll_interval_seconds": self.poll_interval_seconds,
            "debounce_seconds": self.debounce_seconds,
            "remote_timeout_seconds": self.remote_timeout_seconds,
            "session_ttl_seconds": self.session_ttl_seconds,
            "allow_partial_match": self.allow_partial_match,
            "carry_forward_on_failure": self.carry_forward_on_failure,
            "change_log_path": self.change_log_path,
            "change_log_max_entries": self.change_log_max_entries,
            "dedupe_window_seconds": self.dedupe_window_seconds,
            "header_aliases": {key: list(value) for key, value in self.header_aliases.items()},
        }


def _default_payload() -> Dict[str, object]:
    spreadsheet_id = default_spreadsheet_id()
    return {
        "sources": [
            {"key": key, "spreadsheet_id": spreadsheet_id, "worksheet_title": title, "warehouse_label": key}
            for key, title in DEFAULT_SOURCES
        ],
        "credential_path": default_credentials_path(),
        "poll_interval_seconds": DEFAULT_POLL_INTERVAL,
        "debounce_seconds": DEFAULT_DEBOUNCE_SECONDS,
        "remote_timeout_seconds": DEFAULT_REMOTE_TIMEOUT,
        "session_ttl_seconds": 0,
        "allow_partial_match": True,
        "carry_forward_on_failure": False,
        "change_log_path": "",
        "change_log_max_entries": DEFAULT_CHANGE_LOG_ENTRIES,
        "dedupe_window_seconds": DEFAULT_DEDUPE_WINDOW,
        "header_aliases": {},
    }


def _clamp_int(value: object, default: int, lower: int, upper: int) -> int:
    try:
        return max(lower, min(upper, int(value)))
    except (TypeError, ValueError):
        return default


def _clamp_float(value: object, default: float, lower: float, upper: float) -> float:
    try:
        return max(lower, min(upper, float(value)))
    except (TypeError, ValueError):
        return default


def _parse_flag(value: object) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in {"true", "yes", "on", "1"}:
            return True
        if text in {"false", "no", "off", "0"}:
            return False
    return None


def _ensure_sync_settings(path: str) -> Dict[str, object]:
    defaults = _default_payload()
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(defaults, handle, indent=2)
        return defaults

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)

    merged: Dict[str, object] = dict(defaults)
    for key, value in data.items():
        if key == "sources" and isinstance(value, list):
            merged[key] = [entry for entry in value if isinstance(entry, dict)]
        elif key == "header_aliases" and isinstance(value, dict):
            merged[key] = value
        elif key == "poll_interval_seconds":
            merged[key] = _clamp_int(value, DEFAULT_POLL_INTERVAL, 5, 3600)
        elif key == "session_ttl_seconds":
            merged[key] = _clamp_int(value, 0, 0, 86400)
        elif key == "change_log_max_entries":
            merged[key] = _clamp_int(value, DEFAULT_CHANGE_LOG_ENTRIES, 10, 100000)
        elif key == "debounce_seconds":
            merged[key] = _clamp_float(value, DEFAULT_DEBOUNCE_SECONDS, 0.0, 60.0)
        elif key == "remote_timeout_seconds":
            merged[key] = _clamp_float(value, DEFAULT_REMOTE_TIMEOUT, 1.0, 300.0)
        elif key == "dedupe_window_seconds":
            merged[key] = _clamp_float(value, DEFAULT_DEDUPE_WINDOW, 0.0, 60.0)
        elif key in {"allow_partial_match", "carry_forward_on_failure"}:
            flag = _parse_flag(value)
            if flag is None:
                logger.warning("Ignoring non-boolean setting %s=%r in %s", key, value, path)
            else:
                merged[key] = flag
        elif isinstance(value, str):
            merged[key] = value
        else:
            logger.warning("Ignoring unsupported setting %s=%r in %s", key, value, path)
    return merged


def _parse_sources(entries: object, fallback_spreadsheet: str) -> List[SourceSettings]:
    sources: List[SourceSettings] = []
    seen = set()
    for entry in entries if isinstance(entries, list) else []:
        key = str(entry.get("key", "")).strip()
        if not key or key in seen:
            logger.warning("Skipping source entry without a unique key: %r", entry)
            continue
        seen.add(key)
        sources.append(
            SourceSettings(
                key=key,
                spreadsheet_id=str(entry.get("spreadsheet_id") or fallback_spreadsheet).strip(),
                worksheet_title=str(entry.get("worksheet_title") or "").strip(),
                warehouse_label=str(entry.get("warehouse_label") or "").strip(),
            )
        )
    return sources


def _parse_aliases(value: object) -> Dict[str, List[str]]:
    aliases: Dict[str, List[str]] = {}
    if not isinstance(value, Mapping):
        return aliases
    for name, headers in value.items():
        if isinstance(headers, str):
            headers = [headers]
        if isinstance(headers, list):
            aliases[str(name)] = [str(header) for header in headers if str(header).strip()]
    return aliases


def load_sync_settings(path: Optional[str] = None) -> SyncSettings:
    """Load settings from ``path`` creating a default file on first use.

    ``STOCKSYNC_CREDENTIALS_PATH`` and ``STOCKSYNC_SPREADSHEET_ID`` take
    precedence over the stored credential path and spreadsheet ids.
    """

    path = path or default_settings_path()
    data = _ensure_sync_settings(path)
    spreadsheet_override = os.getenv(SPREADSHEET_ID_ENV, "").strip()
    sources = _parse_sources(data.get("sources"), spreadsheet_override or default_spreadsheet_id())
    if spreadsheet_override:
        for source in sources:
            source.spreadsheet_id = spreadsheet_override

    credential_path = os.getenv(CREDENTIALS_PATH_ENV) or str(data.get("credential_path") or default_credentials_path())
    return SyncSettings(
        sources=sources,
        credential_path=credential_path,
        poll_interval_seconds=int(data.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL)),
        debounce_seconds=float(data.get("debounce_seconds", DEFAULT_DEBOUNCE_SECONDS)),
        remote_timeout_seconds=float(data.get("remote_timeout_seconds", DEFAULT_REMOTE_TIMEOUT)),
        session_ttl_seconds=int(data.get("session_ttl_seconds", 0)),
        allow_partial_match=bool(data.get("allow_partial_match", True)),
        carry_forward_on_failure=bool(data.get("carry_forward_on_failure", False)),
        change_log_path=str(data.get("change_log_path", "")),
        change_log_max_entries=int(data.get("change_log_max_entries", DEFAULT_CHANGE_LOG_ENTRIES)),
        dedupe_window_seconds=float(data.get("dedupe_window_seconds", DEFAULT_DEDUPE_WINDOW)),
        header_aliases=_parse_aliases(data.get("header_aliases")),
    )


def save_sync_settings(settings: SyncSettings, path: Optional[str] = None) -> None:
    path = path or default_settings_path()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2, ensure_ascii=False)


__all__ = [
    "SourceSettings",
    "SyncSettings",
    "default_credentials_path",
    "default_settings_path",
    "default_spreadsheet_id",
    "load_sync_settings",
    "save_sync_settings",
]
