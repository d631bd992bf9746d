from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetstore.codec import RowCodec, coerce_key
from sheetstore.errors import SchemaError
from sheetstore.schema import Column, ColumnKind, HeaderMap, TableSchema

SCHEMA = TableSchema.of(
    Column("id", ColumnKind.INTEGER),
    "name",
    Column("done", ColumnKind.BOOLEAN),
    Column("due", ColumnKind.DATE),
    "meta",
    Column("count", ColumnKind.INTEGER),
)
HEADERS = HeaderMap.from_row(SCHEMA.names)


def test_decode_applies_column_kinds() -> None:
    codec = RowCodec(SCHEMA)

    record = codec.decode(HEADERS, [5, "Alice", "TRUE", "01/03/2024 09:00:00", '{"a": 1}', "7"])

    assert record == {
        "id": 5,
        "name": "Alice",
        "done": True,
        "due": "2024-03-01T09:00:00.000Z",
        "meta": {"a": 1},
        "count": 7,
    }


def test_decode_handles_trimmed_and_blank_cells() -> None:
    codec = RowCodec(SCHEMA)

    record = codec.decode(HEADERS, [5.0, "", "false"])

    assert record == {"id": 5, "name": None, "done": False, "due": None, "meta": None, "count": None}


def test_decode_keeps_invalid_json_and_unknown_dates() -> None:
    codec = RowCodec(SCHEMA)

    record = codec.decode(HEADERS, [1, "[draft", True, "whenever", "[1, 2"])

    assert record["name"] == "[draft"
    assert record["done"] is True
    assert record["due"] is None
    assert record["meta"] == "[1, 2"


def test_decode_reads_serial_dates() -> None:
    codec = RowCodec(SCHEMA)

    assert codec.decode(HEADERS, [1, "x", False, 45352.375])["due"] == "2024-03-01T09:00:00.000Z"


def test_decode_uses_header_positions_not_schema_order() -> None:
    codec = RowCodec(SCHEMA)
    headers = HeaderMap.from_row(["count", "extra", "meta", "due", "done", "name", "id"])

    record = codec.decode(headers, [3, "ignored", "", "", "FALSE", "Bob", 9])

    assert record["id"] == 9
    assert record["name"] == "Bob"
    assert record["count"] == 3
    assert "extra" not in record


def test_decode_rejects_missing_header() -> None:
    codec = RowCodec(SCHEMA)

    with pytest.raises(SchemaError):
        codec.decode(HeaderMap.from_row(["id", "name"]), [1, "x"])


def test_encode_serialises_nested_values_and_blanks() -> None:
    codec = RowCodec(SCHEMA)

    row = codec.encode(HEADERS, {"id": 2, "name": None, "meta": {"tags": ["a"]}, "done": False})

    assert row == [2, "", False, "", '{"tags": ["a"]}', ""]


def test_encode_keeps_cells_from_base_row() -> None:
    codec = RowCodec(SCHEMA)
    headers = HeaderMap.from_row(SCHEMA.names + ["notes"])

    row = codec.encode(headers, {"name": "new"}, [1, "old", True, "", "", 4, "keep me"])

    assert row == [1, "new", True, "", "", 4, "keep me"]


def test_encode_rejects_unknown_columns() -> None:
    codec = RowCodec(SCHEMA)

    with pytest.raises(SchemaError):
        codec.encode(HEADERS, {"id": 1, "colour": "red"})


def test_encode_then_decode_round_trips() -> None:
    codec = RowCodec(SCHEMA)
    record = {
        "id": 3,
        "name": "Gear box",
        "done": False,
        "due": "2024-03-01T09:00:00.000Z",
        "meta": [1, {"b": None}],
        "count": 12,
    }

    assert codec.decode(HEADERS, codec.encode(HEADERS, record)) == record


@pytest.mark.parametrize(
    "value, expected",
    [(12, 12), (12.0, 12), ("12", 12), (" 7 ", 7), (0, None), (-3, None), (True, None), ("abc", None), (None, None)],
)
def test_coerce_key(value, expected) -> None:
    assert coerce_key(value) == expected
