"""Declarative column schema for inventory worksheets.

Every configured source shares the same ordered list of business fields.  The
header row of a worksheet may use any of the aliases registered for a field
(the production sheets use Vietnamese headers), so the mapping from field to
column is resolved once per header row into a :class:`SheetLayout`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

BUSINESS_FIELDS: Tuple[str, ...] = (
    "brand",
    "product_code",
    "product_name",
    "lot_number",
    "date",
    "quantity",
    "unit",
    "expiry_date",
    "import_date",
    "location",
    "warehouse",
    "notes",
)

META_FIELDS: Tuple[str, ...] = ("last_modified", "modified_by", "version")

DEFAULT_ALIASES: Mapping[str, Tuple[str, ...]] = {
    "brand": ("Tên hãng", "Brand"),
    "product_code": ("Mã hàng", "Product Code"),
    "product_name": ("Tên hàng", "Product Name"),
    "lot_number": ("Số Lot", "Lot", "Lot Number"),
    "date": ("Date",),
    "quantity": ("Số lượng", "Quantity", "Qty"),
    "unit": ("Đơn vị", "Unit"),
    "expiry_date": ("Ngày hết hạn", "Expiry Date"),
    "import_date": ("Ngày nhập kho", "Import Date"),
    "location": ("Vị trí đặt hàng", "Location"),
    "warehouse": ("Tên Kho", "Warehouse"),
    "notes": ("Ghi chú", "Notes"),
    "last_modified": ("LastModified", "Last Modified"),
    "modified_by": ("ModifiedBy", "Modified By"),
    "version": ("Version",),
}

DEFAULT_MATCH_FIELDS: Tuple[str, ...] = ("brand", "product_code", "product_name")


def normalise_header(header: str) -> str:
    """Return the canonical lookup key for a header cell."""

    return " ".join((header or "").split()).casefold()


def fallback_key(header: str) -> str:
    """Key used for headers that match no alias: lower-case, underscores."""

    return "_".join((header or "").strip().lower().split())


def column_letter(index: int) -> str:
    """Return the spreadsheet column letter for a 1-indexed column index."""

    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: List[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


@dataclass
class SheetLayout:
    """Column positions of a worksheet resolved from its header row."""

    headers: List[str]
    columns: Dict[str, int]
    extras: Dict[str, int] = field(default_factory=dict)

    @property
    def width(self) -> int:
        used = list(self.columns.values()) + list(self.extras.values())
        return max(used) + 1 if used else len(self.headers)

    @property
    def last_column(self) -> str:
        return column_letter(max(1, self.width))

    def index_of(self, name: str) -> Optional[int]:
        return self.columns.get(name)

    def cell(self, row: Sequence[str], name: str) -> str:
        index = self.columns.get(name)
        if index is None or index >= len(row):
            return ""
        value = row[index]
        return "" if value is None else str(value)

    def business_values(self, row: Sequence[str]) -> Dict[str, str]:
        return {name: self.cell(row, name) for name in BUSINESS_FIELDS}

    def meta_values(self, row: Sequence[str]) -> Dict[str, str]:
        return {name: self.cell(row, name) for name in META_FIELDS}

    def extra_values(self, row: Sequence[str]) -> Dict[str, str]:
        values: Dict[str, str] = {}
        for name, index in self.extras.items():
            values[name] = str(row[index]) if index < len(row) and row[index] is not None else ""
        return values

    def business_cells(self, row: Sequence[str]) -> List[str]:
        """Return the raw business cells in schema order."""

        return [self.cell(row, name) for name in BUSINESS_FIELDS]

    def build_row(self, values: Mapping[str, object], *, base: Optional[Sequence[str]] = None) -> List[str]:
        """Return a full-width row, overlaying ``values`` on ``base``."""

        row = [str(cell) if cell is not None else "" for cell in (base or [])]
        if len(row) < self.width:
            row.extend([""] * (self.width - len(row)))
        for name, value in values.items():
            index = self.columns.get(name)
            if index is None:
                index = self.extras.get(name)
            if index is None:
                continue
            row[index] = "" if value is None else str(value)
        return row


@dataclass
class SourceSchema:
    """Ordered field list plus header aliases for one kind of worksheet."""

    fields: Tuple[str, ...] = BUSINESS_FIELDS
    aliases: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_ALIASES))

    @classmethod
    def with_overrides(cls, overrides: Optional[Mapping[str, Iterable[str]]] = None) -> "SourceSchema":
        aliases: Dict[str, Tuple[str, ...]] = {key: tuple(value) for key, value in DEFAULT_ALIASES.items()}
        for name, extra in (overrides or {}).items():
            current = aliases.get(name, ())
            aliases[name] = tuple(extra) + tuple(alias for alias in current if alias not in extra)
        return cls(aliases=aliases)

    def _lookup(self) -> Dict[str, str]:
        lookup: Dict[str, str] = {}
        for name in self.fields + META_FIELDS:
            lookup[normalise_header(name)] = name
            for alias in self.aliases.get(name, ()):
                lookup[normalise_header(alias)] = name
        return lookup

    def layout(self, headers: Sequence[str]) -> SheetLayout:
        """Resolve a header row into column positions.

        Missing bookkeeping columns are placed right after the last header so
        commits append them as trailing columns.
        """

        lookup = self._lookup()
        columns: Dict[str, int] = {}
        extras: Dict[str, int] = {}
        for index, header in enumerate(headers):
            text = "" if header is None else str(header)
            if not text.strip():
                continue
            name = lookup.get(normalise_header(text))
            if name is None:
                extras.setdefault(fallback_key(text), index)
                continue
            columns.setdefault(name, index)

        next_index = len(headers)
        for name in META_FIELDS:
            if name not in columns:
                columns[name] = next_index
                next_index += 1
        return SheetLayout(headers=[str(h) if h is not None else "" for h in headers], columns=columns, extras=extras)

    def default_headers(self) -> List[str]:
        """Header row used when a worksheet is empty."""

        headers: List[str] = []
        for name in self.fields:
            aliases = self.aliases.get(name, ())
            headers.append(aliases[0] if aliases else name)
        return headers


__all__ = [
    "BUSINESS_FIELDS",
    "DEFAULT_ALIASES",
    "DEFAULT_MATCH_FIELDS",
    "META_FIELDS",
    "SheetLayout",
    "SourceSchema",
    "column_letter",
    "fallback_key",
    "normalise_header",
]
