"""Data containers shared by the synchronisation services."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def parse_quantity(value: Any, default: int = 0) -> int:
    """Parse a sheet cell into an integer quantity.

    Thousands separators and decimal suffixes are tolerated; anything that is
    not a number yields ``default``.
    """

    if value is None:
        return default
    text = str(value).strip().replace(",", "").replace(" ", "")
    if not text:
        return default
    try:
        return int(float(text))
    except ValueError:
        return default


class ChangeAction(str, Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONFLICT_DETECTED = "CONFLICT_DETECTED"
    RELOCATE = "RELOCATE"
    SEND_OUT = "SEND_OUT"


class DeltaKind(str, Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def split_row_id(row_id: str) -> Tuple[str, int]:
    """Split ``<prefix>_<row>`` into its prefix and 1-based row number."""

    prefix, separator, number = (row_id or "").rpartition("_")
    if not separator or not prefix or not number.isdigit():
        raise ValueError(f"Malformed row id: {row_id!r}")
    return prefix, int(number)


def make_row_id(prefix: str, row_number: int) -> str:
    return f"{prefix}_{row_number}"


@dataclass(frozen=True)
class InventoryRecord:
    """One stock line as observed at the last fetch of its source."""

    id: str
    source: str
    row_number: int
    fields: Mapping[str, str]
    meta: Mapping[str, str] = field(default_factory=dict)

    @property
    def quantity(self) -> int:
        return parse_quantity(self.fields.get("quantity"))

    def value(self, name: str) -> str:
        return str(self.fields.get(name, "") or "")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "source": self.source}
        payload.update(self.fields)
        for key, value in self.meta.items():
            if value:
                payload[key] = value
        return payload


@dataclass(frozen=True)
class FieldDiff:
    """A single field that differs between two observations of a row."""

    field: str
    baseline: str
    current: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "baseline": self.baseline, "current": self.current}


@dataclass(frozen=True)
class FieldChange:
    old: str
    new: str

    def to_dict(self) -> Dict[str, str]:
        return {"old": self.old, "new": self.new}


def diff_fields(old: Mapping[str, Any], new: Mapping[str, Any]) -> Dict[str, FieldChange]:
    """Return the fields whose string value differs between ``old`` and ``new``."""

    changes: Dict[str, FieldChange] = {}
    for key in list(old.keys()) + [key for key in new.keys() if key not in old]:
        before = "" if old.get(key) is None else str(old.get(key))
        after = "" if new.get(key) is None else str(new.get(key))
        if before != after:
            changes[key] = FieldChange(old=before, new=after)
    return changes


@dataclass(frozen=True)
class ChangeLogEntry:
    """Immutable audit record of a mutation or of detected contention."""

    timestamp: float
    user: str
    action: ChangeAction
    row_id: str
    changes: Mapping[str, FieldChange] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        user: str,
        action: ChangeAction,
        row_id: str,
        *,
        changes: Optional[Mapping[str, FieldChange]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[float] = None,
    ) -> "ChangeLogEntry":
        return cls(
            timestamp=time.time() if timestamp is None else timestamp,
            user=user,
            action=ChangeAction(action),
            row_id=row_id,
            changes=dict(changes or {}),
            metadata=dict(metadata or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "user": self.user,
            "action": self.action.value,
            "row_id": self.row_id,
            "changes": {key: change.to_dict() for key, change in self.changes.items()},
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChangeLogEntry":
        raw_changes = payload.get("changes") or {}
        changes = {
            str(key): FieldChange(old=str(value.get("old", "")), new=str(value.get("new", "")))
            for key, value in raw_changes.items()
            if isinstance(value, Mapping)
        }
        return cls(
            timestamp=float(payload["timestamp"]),
            user=str(payload.get("user", "")),
            action=ChangeAction(payload["action"]),
            row_id=str(payload.get("row_id", "")),
            changes=changes,
            metadata=dict(payload.get("metadata") or {}),
        )


@dataclass
class EditSession:
    """Optimistic lock held by one user on one row."""

    user: str
    row_id: str
    baseline: List[str]
    baseline_fields: Dict[str, str]
    started_at: float = field(default_factory=time.time)

    def duration(self, now: Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.started_at

    def to_dict(self, now: Optional[float] = None) -> Dict[str, Any]:
        return {
            "user": self.user,
            "row_id": self.row_id,
            "started_at": self.started_at,
            "duration": self.duration(now),
        }


@dataclass(frozen=True)
class Delta:
    """One classified difference between two snapshots."""

    kind: DeltaKind
    id: str
    before: Optional[Mapping[str, Any]] = None
    after: Optional[Mapping[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"action": self.kind.value, "id": self.id}
        if self.before is not None:
            payload["before"] = dict(self.before)
        if self.after is not None:
            payload["after"] = dict(self.after)
        return payload


@dataclass(frozen=True)
class CommitResult:
    row_id: str
    fields: Mapping[str, str]
    changes: Mapping[str, FieldChange]
    version: int
    modified_at: str
    modified_by: str
    forced: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row_id": self.row_id,
            "data": dict(self.fields),
            "changes": {key: change.to_dict() for key, change in self.changes.items()},
            "metadata": {
                "lastModified": self.modified_at,
                "modifiedBy": self.modified_by,
                "version": self.version,
            },
            "forced": self.forced,
        }


@dataclass(frozen=True)
class MoveRequest:
    """Quantity to move out of one inventory row; ``None`` moves everything."""

    item_id: str
    quantity: Optional[int] = None
    match_fields: Mapping[str, str] = field(default_factory=dict)


__all__ = [
    "ChangeAction",
    "ChangeLogEntry",
    "CommitResult",
    "Delta",
    "DeltaKind",
    "EditSession",
    "FieldChange",
    "FieldDiff",
    "InventoryRecord",
    "MoveRequest",
    "diff_fields",
    "make_row_id",
    "parse_quantity",
    "split_row_id",
    "utc_now_iso",
]
