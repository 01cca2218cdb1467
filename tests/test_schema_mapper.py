from __future__ import annotations

import pytest

from conftest import HEADERS, make_row
from stocksync.mapper import RowMapper
from stocksync.schema import BUSINESS_FIELDS, SourceSchema, column_letter


def test_layout_resolves_vietnamese_headers_and_appends_meta_columns() -> None:
    headers = ["Tên hãng", "Mã hàng", "Tên hàng", "Số Lot", "Date", "Số lượng", "Đơn vị"]

    layout = SourceSchema().layout(headers)

    assert layout.index_of("brand") == 0
    assert layout.index_of("quantity") == 5
    assert layout.index_of("last_modified") == 7
    assert layout.index_of("modified_by") == 8
    assert layout.index_of("version") == 9
    assert layout.last_column == "J"


def test_layout_keeps_unknown_headers_as_extras() -> None:
    layout = SourceSchema().layout(["Brand", "Supplier Contact", "Quantity"])

    assert layout.extras == {"supplier_contact": 1}
    assert layout.extra_values(["Roche", "Ms. Lan", "4"]) == {"supplier_contact": "Ms. Lan"}


def test_with_overrides_prefers_custom_alias() -> None:
    schema = SourceSchema.with_overrides({"quantity": ["Tồn kho"]})

    layout = schema.layout(["Tồn kho", "Brand"])

    assert layout.index_of("quantity") == 0
    assert schema.default_headers()[BUSINESS_FIELDS.index("quantity")] == "Tồn kho"


def test_build_row_overlays_values_on_base_row() -> None:
    layout = SourceSchema().layout(HEADERS)
    base = make_row("Roche", "R-100", "Reagent X", 8)

    row = layout.build_row({"quantity": 3, "version": "2"}, base=base)

    assert len(row) == 15
    assert row[0] == "Roche"
    assert row[5] == "3"
    assert row[14] == "2"


def test_column_letter() -> None:
    assert column_letter(1) == "A"
    assert column_letter(15) == "O"
    assert column_letter(28) == "AB"
    with pytest.raises(ValueError):
        column_letter(0)


def test_to_records_assigns_row_ids_and_skips_blank_rows() -> None:
    values = [
        HEADERS,
        make_row("Roche", "R-100", "Reagent X", 8),
        [],
        make_row("Abbott", "AB-7", "Test Strip", "1,200", location="Shelf 2"),
    ]

    records = RowMapper().to_records("A", values)

    assert [record.id for record in records] == ["A_2", "A_4"]
    assert records[1].row_number == 4
    assert records[1].quantity == 1200
    assert records[1].value("location") == "Shelf 2"
    assert records[0].fields["notes"] == ""
    assert list(records[0].fields)[: len(BUSINESS_FIELDS)] == list(BUSINESS_FIELDS)


def test_to_records_reads_meta_columns() -> None:
    row = make_row("Roche", "R-100", "Reagent X", 8) + ["2024-01-01T00:00:00Z", "lan", "3"]

    record = RowMapper().to_records("B", [HEADERS, row])[0]

    assert record.meta == {"last_modified": "2024-01-01T00:00:00Z", "modified_by": "lan", "version": "3"}
    assert "version" not in record.fields


def test_to_records_of_empty_sheet() -> None:
    assert RowMapper().to_records("A", []) == []
    assert RowMapper().to_records("A", [HEADERS]) == []
