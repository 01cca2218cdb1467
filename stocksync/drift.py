"""Locate rows whose recorded position went stale after out-of-band edits.

Ids encode the sheet row observed at the last fetch.  When somebody deletes
or inserts rows directly in the sheet every following row shifts, so a point
mutation first checks the recorded position and then falls back to matching
business-key fields against the current sheet content.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence

from stocksync.changelog import ChangeLog
from stocksync.conflicts import ConflictLog
from stocksync.errors import RowNotFound
from stocksync.mapper import RowMapper, is_blank_row
from stocksync.models import ChangeAction, InventoryRecord, make_row_id
from stocksync.remote import RemoteGateway
from stocksync.schema import SheetLayout

logger = logging.getLogger(__name__)

POSITION = "position"
FULL_MATCH = "full_match"
PARTIAL_MATCH = "partial_match"


@dataclass(frozen=True)
class ResolvedRow:
    """Current location and content of a row after drift resolution."""

    source: str
    row_number: int
    values: List[str]
    layout: SheetLayout
    record: InventoryRecord
    strategy: str

    @property
    def drifted(self) -> bool:
        return self.strategy != POSITION


def _clean_match_fields(match_fields: Optional[Mapping[str, object]]) -> dict:
    cleaned = {}
    for name, value in (match_fields or {}).items():
        text = "" if value is None else str(value).strip()
        if text:
            cleaned[name] = text
    return cleaned


def _matches(layout: SheetLayout, row: Sequence[str], name: str, expected: str) -> bool:
    return layout.cell(row, name).strip() == expected


class DriftResolver:
    def __init__(
        self,
        gateway: RemoteGateway,
        mapper: RowMapper,
        changelog: ChangeLog,
        *,
        allow_partial_match: bool = True,
        conflicts: Optional[ConflictLog] = None,
    ) -> None:
        self._gateway = gateway
        self._mapper = mapper
        self._changelog = changelog
        self.allow_partial_match = allow_partial_match
        self._conflicts = conflicts if conflicts is not None else ConflictLog()

    async def resolve(
        self,
        source: str,
        row_number: int,
        match_fields: Optional[Mapping[str, object]] = None,
        *,
        user: str = "system",
    ) -> ResolvedRow:
        """Return the current position of the row recorded at ``row_number``.

        Raises :class:`RowNotFound` (after recording a ``CONFLICT_DETECTED``
        entry) when neither the position nor the match fields identify a row.
        """

        values = await self._gateway.read_sheet(source)
        layout = self._mapper.layout(values)
        expected = _clean_match_fields(match_fields)
        row_id = make_row_id(source, row_number)

        if 2 <= row_number <= len(values):
            row = list(values[row_number - 1])
            if not is_blank_row(row) and all(
                _matches(layout, row, name, value) for name, value in expected.items()
            ):
                return self._resolved(source, row_number, row, layout, POSITION)

        if expected:
            found = self._scan(values, layout, expected)
            if found is not None:
                number, strategy = found
                logger.info("Row %s drifted to row %d of %s (%s)", row_id, number, source, strategy)
                return self._resolved(source, number, list(values[number - 1]), layout, strategy)

        logger.warning("Row %s could not be located in %s (rows=%d)", row_id, source, len(values))
        self._changelog.record(
            user,
            ChangeAction.CONFLICT_DETECTED,
            row_id,
            metadata={"reason": "row_not_found", "match_fields": expected, "row_count": len(values)},
        )
        self._conflicts.record(row_id, {}, source="drift", context={"reason": "row_not_found", "user": user})
        raise RowNotFound(row_id)

    def _scan(self, values: Sequence[Sequence[str]], layout: SheetLayout, expected: Mapping[str, str]):
        partial: Optional[int] = None
        for number in range(2, len(values) + 1):
            row = values[number - 1]
            if is_blank_row(row):
                continue
            hits = [_matches(layout, row, name, value) for name, value in expected.items()]
            if all(hits):
                return number, FULL_MATCH
            if partial is None and any(hits):
                partial = number
        if partial is not None and self.allow_partial_match:
            return partial, PARTIAL_MATCH
        return None

    def _resolved(
        self, source: str, row_number: int, row: List[str], layout: SheetLayout, strategy: str
    ) -> ResolvedRow:
        record = self._mapper.to_record(source, row_number, row, layout)
        return ResolvedRow(source, row_number, row, layout, record, strategy)


__all__ = ["DriftResolver", "FULL_MATCH", "PARTIAL_MATCH", "POSITION", "ResolvedRow"]
