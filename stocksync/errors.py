"""Exception hierarchy shared by the StockSync services."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

__all__ = [
    "StockSyncError",
    "RemoteUnavailable",
    "RowNotFound",
    "SessionNotFound",
    "EditConflict",
    "EditLocked",
    "ValidationError",
]


class StockSyncError(Exception):
    """Base error raised by the synchronisation core."""


class RemoteUnavailable(StockSyncError):
    """Raised when a remote store call failed or timed out."""

    def __init__(self, message: str, *, source: Optional[str] = None) -> None:
        super().__init__(message)
        self.source = source


class RowNotFound(StockSyncError):
    """Raised when a row cannot be located by position nor by content."""

    def __init__(self, row_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Item not found: {row_id}")
        self.row_id = row_id


class SessionNotFound(StockSyncError):
    """Raised when a user ends an edit session they do not hold."""

    def __init__(self, user: str, row_id: str) -> None:
        super().__init__(f"No active editing session for {user} on {row_id}")
        self.user = user
        self.row_id = row_id


class EditLocked(StockSyncError):
    """Raised when another user already holds an edit session on the row."""

    def __init__(self, row_id: str, holder: str) -> None:
        super().__init__(f"Another user is currently editing {row_id}: {holder}")
        self.row_id = row_id
        self.holder = holder


class EditConflict(StockSyncError):
    """Raised when the remote row moved since the edit session started.

    ``diff`` holds one :class:`~stocksync.models.FieldDiff` per field whose
    remote value changed between the session baseline and the fresh read.
    """

    def __init__(
        self,
        row_id: str,
        diff: Sequence[Any],
        *,
        current: Optional[Dict[str, str]] = None,
        attempted: Optional[Dict[str, str]] = None,
    ) -> None:
        fields = ", ".join(item.field for item in diff)
        super().__init__(f"Data was modified while editing {row_id}: {fields}")
        self.row_id = row_id
        self.diff: List[Any] = list(diff)
        self.current = dict(current or {})
        self.attempted = dict(attempted or {})


class ValidationError(StockSyncError):
    """Raised when a mutation request is missing or has invalid parameters."""
