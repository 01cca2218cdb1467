"""Append-only audit trail of inventory mutations and detected contention.

Entries are kept newest-last in memory and mirrored to a JSON-lines file so
the log survives restarts.  Retention is size-bounded: only the newest
``max_entries`` are kept, and the file is compacted once it holds twice that
many lines.
"""
from __future__ import annotations

import json
import logging
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional

from stocksync.models import ChangeAction, ChangeLogEntry, FieldChange

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_DEDUPE_WINDOW = 1.0
DEFAULT_QUERY_LIMIT = 50


class ChangeLog:
    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        dedupe_window: float = DEFAULT_DEDUPE_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.path = Path(path) if path is not None else None
        self.max_entries = max_entries
        self.dedupe_window = dedupe_window
        self._clock = clock
        self._entries: Deque[ChangeLogEntry] = deque(maxlen=max_entries)
        self._persisted_lines = 0
        if self.path is not None:
            self._load()

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------
    def append(self, entry: ChangeLogEntry) -> bool:
        """Store ``entry`` unless it duplicates a recent one.

        A duplicate is an entry with the same user, row and action whose
        timestamp lies within ``dedupe_window`` seconds.  Returns ``True`` when
        the entry was accepted.
        """

        for existing in reversed(self._entries):
            if entry.timestamp - existing.timestamp >= self.dedupe_window:
                break
            if (
                existing.user == entry.user
                and existing.row_id == entry.row_id
                and existing.action == entry.action
                and abs(entry.timestamp - existing.timestamp) < self.dedupe_window
            ):
                logger.debug(
                    "Dropping duplicate %s entry for %s by %s", entry.action.value, entry.row_id, entry.user
                )
                return False

        self._entries.append(entry)
        self._persist(entry)
        logger.info("Change log: %s %s by %s", entry.action.value, entry.row_id, entry.user)
        return True

    def record(
        self,
        user: str,
        action: ChangeAction,
        row_id: str,
        *,
        changes: Optional[Mapping[str, FieldChange]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Optional[ChangeLogEntry]:
        """Build an entry stamped with the log's clock and append it."""

        entry = ChangeLogEntry.create(
            user, action, row_id, changes=changes, metadata=metadata, timestamp=self._clock()
        )
        return entry if self.append(entry) else None

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------
    def query(
        self,
        since: Optional[float] = None,
        limit: int = DEFAULT_QUERY_LIMIT,
        *,
        row_id: Optional[str] = None,
        action: Optional[ChangeAction] = None,
    ) -> List[ChangeLogEntry]:
        """Return entries newest-first, optionally filtered."""

        if limit <= 0:
            return []
        selected: List[ChangeLogEntry] = []
        for entry in sorted(self._entries, key=lambda item: item.timestamp, reverse=True):
            if since is not None and entry.timestamp < since:
                continue
            if row_id is not None and entry.row_id != row_id:
                continue
            if action is not None and entry.action != ChangeAction(action):
                continue
            selected.append(entry)
            if len(selected) >= limit:
                break
        return selected

    def recent(self, limit: int = 10) -> List[ChangeLogEntry]:
        return self.query(limit=limit)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _load(self) -> None:
        assert self.path is not None
        if not self.path.exists():
            return
        loaded: List[ChangeLogEntry] = []
        with open(self.path, "r", encoding="utf-8") as handle:
            for number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    loaded.append(ChangeLogEntry.from_dict(json.loads(line)))
                except (ValueError, KeyError, TypeError) as exc:
                    logger.warning("Skipping malformed change log line %d in %s: %s", number, self.path, exc)
                self._persisted_lines += 1
        loaded.sort(key=lambda item: item.timestamp)
        self._entries.extend(loaded)
        logger.debug("Loaded %d change log entries from %s", len(self._entries), self.path)

    def _persist(self, entry: ChangeLogEntry) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry.to_dict(), ensure_ascii=False, default=str) + "\n")
        self._persisted_lines += 1
        if self._persisted_lines >= self.max_entries * 2:
            self.compact()

    def compact(self) -> None:
        """Rewrite the backing file with only the retained entries."""

        if self.path is None:
            return
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(temp_path, "w", encoding="utf-8") as handle:
            for entry in self._entries:
                handle.write(json.dumps(entry.to_dict(), ensure_ascii=False, default=str) + "\n")
        temp_path.replace(self.path)
        self._persisted_lines = len(self._entries)
        logger.debug("Compacted change log %s to %d entries", self.path, self._persisted_lines)


def entries_to_dicts(entries: List[ChangeLogEntry]) -> List[Dict[str, Any]]:
    return [entry.to_dict() for entry in entries]


__all__ = [
    "ChangeLog",
    "DEFAULT_DEDUPE_WINDOW",
    "DEFAULT_MAX_ENTRIES",
    "DEFAULT_QUERY_LIMIT",
    "entries_to_dicts",
]
