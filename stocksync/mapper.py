"""Conversion between raw worksheet cells and inventory records."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from stocksync.models import InventoryRecord, make_row_id
from stocksync.schema import SheetLayout, SourceSchema

logger = logging.getLogger(__name__)


def is_blank_row(row: Sequence[str]) -> bool:
    return not any(str(cell).strip() for cell in row if cell is not None)


class RowMapper:
    """Turn worksheet values into :class:`InventoryRecord` instances.

    ``values`` always starts with the header row; data rows are numbered from
    2 so the synthetic id matches the sheet row the record was read from.
    """

    def __init__(self, schema: Optional[SourceSchema] = None) -> None:
        self.schema = schema or SourceSchema()

    def layout(self, values: Sequence[Sequence[str]]) -> SheetLayout:
        headers = list(values[0]) if values else self.schema.default_headers()
        return self.schema.layout(headers)

    def to_records(self, source: str, values: Sequence[Sequence[str]]) -> List[InventoryRecord]:
        if not values:
            return []
        layout = self.layout(values)
        records: List[InventoryRecord] = []
        for row_number, raw in enumerate(values[1:], start=2):
            if is_blank_row(raw):
                continue
            records.append(self.to_record(source, row_number, raw, layout))
        logger.debug("Mapped %d rows from %s", len(records), source)
        return records

    def to_record(
        self, source: str, row_number: int, raw: Sequence[str], layout: SheetLayout
    ) -> InventoryRecord:
        fields = layout.business_values(raw)
        for name, value in layout.extra_values(raw).items():
            fields.setdefault(name, value)
        return InventoryRecord(
            id=make_row_id(source, row_number),
            source=source,
            row_number=row_number,
            fields=fields,
            meta=layout.meta_values(raw),
        )


__all__ = ["RowMapper", "is_blank_row"]
