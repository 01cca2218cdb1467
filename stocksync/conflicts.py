"""Conflict log shared by the edit sessions and the drift resolver.

Every conflict is written as one JSON line to ``logs/conflicts.log`` through
the ``stocksync.conflicts`` logger and kept in a bounded in-memory list so an
operator view can show the latest ones without reading the file.
"""
from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import Deque, Dict, List, Mapping, Optional, Tuple

from stocksync import app_paths
from stocksync.models import utc_now_iso

logger = logging.getLogger(__name__)

CONFLICT_LOGGER_NAME = "stocksync.conflicts"
DEFAULT_RECENT_LIMIT = 50


def _attach_file_handler(path: Path) -> logging.Logger:
    conflict_logger = logging.getLogger(CONFLICT_LOGGER_NAME)
    conflict_logger.setLevel(logging.INFO)
    if any(getattr(handler, "baseFilename", None) == str(path) for handler in conflict_logger.handlers):
        return conflict_logger
    try:
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError:  # pragma: no cover - depends on filesystem permissions
        logger.warning("Unable to open conflict log at %s", path)
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        conflict_logger.addHandler(handler)
    return conflict_logger


class ConflictLog:
    """JSON-lines conflict journal plus the most recent entries in memory."""

    def __init__(self, path: Optional[Path] = None, *, keep: int = DEFAULT_RECENT_LIMIT) -> None:
        self.path = Path(path) if path is not None else app_paths.logs_path("conflicts.log")
        self._entries: Deque[Dict[str, object]] = deque(maxlen=keep)
        self._logger: Optional[logging.Logger] = None

    def record(
        self,
        row_id: str,
        field_diffs: Mapping[str, Tuple[str, str]],
        *,
        source: str = "commit",
        context: Optional[Mapping[str, object]] = None,
    ) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "row_id": row_id,
            "fields": {key: list(value) for key, value in field_diffs.items()},
            "timestamp": utc_now_iso(),
            "source": source,
        }
        if context:
            payload.update(dict(context))

        if self._logger is None:
            self._logger = _attach_file_handler(self.path)
        self._logger.info("%s", json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str))
        self._entries.appendleft(payload)
        return payload

    def recent(self, limit: int = 10) -> List[Dict[str, object]]:
        """Return the newest conflict entries first."""

        return list(self._entries)[:limit]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["CONFLICT_LOGGER_NAME", "ConflictLog"]
