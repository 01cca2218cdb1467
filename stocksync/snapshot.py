"""Materialised view of every source plus change classification."""
from __future__ import annotations

import hashlib
import json
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

from stocksync.models import Delta, DeltaKind, InventoryRecord


def record_payload(record: InventoryRecord) -> Dict[str, object]:
    return {
        "id": record.id,
        "source": record.source,
        "fields": {key: record.fields.get(key, "") for key in sorted(record.fields)},
        "meta": {key: record.meta.get(key, "") for key in sorted(record.meta)},
    }


def calc_hash(record: InventoryRecord) -> str:
    """Return a deterministic SHA-256 hash for ``record``."""

    payload = json.dumps(record_payload(record), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class Snapshot:
    """Records of all sources keyed by synthetic id, in fetch order."""

    def __init__(self, records: Iterable[InventoryRecord] = ()) -> None:
        self._records: Dict[str, InventoryRecord] = {}
        for record in records:
            if record.id in self._records:
                raise ValueError(f"Duplicate record id: {record.id}")
            self._records[record.id] = record
        self._hashes: Optional[Dict[str, str]] = None
        self._serialized: Optional[str] = None

    @classmethod
    def merge(cls, per_source: Mapping[str, Iterable[InventoryRecord]]) -> "Snapshot":
        records: List[InventoryRecord] = []
        for source_records in per_source.values():
            records.extend(source_records)
        return cls(records)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[InventoryRecord]:
        return iter(self._records.values())

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def get(self, record_id: str) -> Optional[InventoryRecord]:
        return self._records.get(record_id)

    def ids(self) -> List[str]:
        return list(self._records)

    def for_source(self, source: str) -> List[InventoryRecord]:
        return [record for record in self._records.values() if record.source == source]

    def hashes(self) -> Dict[str, str]:
        if self._hashes is None:
            self._hashes = {record_id: calc_hash(record) for record_id, record in self._records.items()}
        return self._hashes

    def serialize(self) -> str:
        if self._serialized is None:
            payload = [record_payload(record) for record in self._records.values()]
            self._serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return self._serialized

    def items(self) -> List[Dict[str, object]]:
        """Return the records as plain dictionaries for broadcasting."""

        return [record.to_dict() for record in self._records.values()]


def diff_snapshots(old: Snapshot, new: Snapshot) -> List[Delta]:
    """Classify the differences between two snapshots by record id.

    Ids only in ``new`` are additions, ids in both with a different content
    hash are updates (both in ``new`` order); ids only in ``old`` are
    deletions and come last.
    """

    old_hashes = old.hashes()
    new_hashes = new.hashes()
    deltas: List[Delta] = []
    for record_id, digest in new_hashes.items():
        after = new.get(record_id)
        previous = old_hashes.get(record_id)
        if previous is None:
            deltas.append(Delta(DeltaKind.ADD, record_id, after=after.to_dict()))
        elif previous != digest:
            deltas.append(
                Delta(DeltaKind.UPDATE, record_id, before=old.get(record_id).to_dict(), after=after.to_dict())
            )
    for record_id in old_hashes:
        if record_id not in new_hashes:
            deltas.append(Delta(DeltaKind.DELETE, record_id, before=old.get(record_id).to_dict()))
    return deltas


__all__ = ["Snapshot", "calc_hash", "diff_snapshots", "record_payload"]
