"""Conversion between raw sheet rows and records.

Rows come back from the Sheets API as header-ordered arrays with trailing
blank cells trimmed; records are plain dictionaries keyed by column name.
Decoding applies the schema's column kinds, encoding serialises nested values
to JSON text.  Dates are *not* formatted during encoding: the engines format
date columns explicitly before a row is written.
"""

from __future__ import annotations

import json
import re
from datetime import tzinfo
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sheetstore.dates import parse_sheet_date
from sheetstore.errors import SchemaError
from sheetstore.schema import ColumnKind, HeaderMap, TableSchema

Record = Dict[str, Any]

_INTEGER_RE = re.compile(r"^-?\d+$")


def _decode_boolean(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return _decode_plain(value)


def _decode_integer(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INTEGER_RE.match(value.strip()):
        return int(value.strip())
    return _decode_plain(value)


def _decode_json(value: str) -> Any:
    try:
        return json.loads(value)
    except ValueError:
        return value


def _decode_plain(value: Any) -> Any:
    if value is None or value == "":
        return None
    return value


def coerce_key(value: Any) -> Optional[int]:
    """Return ``value`` as a positive integer key, or ``None``."""

    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        key = value
    elif isinstance(value, float) and value.is_integer():
        key = int(value)
    elif isinstance(value, str) and _INTEGER_RE.match(value.strip()):
        key = int(value.strip())
    else:
        return None
    return key if key > 0 else None


class RowCodec:
    """Bidirectional mapping between header-ordered rows and records."""

    def __init__(self, schema: TableSchema, tz: Optional[tzinfo] = None) -> None:
        self.schema = schema
        self.tz = tz

    def decode_cell(self, kind: ColumnKind, value: Any) -> Any:
        if value is None or value == "":
            return None
        if kind is ColumnKind.BOOLEAN:
            return _decode_boolean(value)
        if kind is ColumnKind.DATE:
            return parse_sheet_date(value, self.tz)
        if isinstance(value, str) and value[:1] in ("{", "["):
            return _decode_json(value)
        if kind is ColumnKind.INTEGER:
            return _decode_integer(value)
        return value

    def decode(self, header_map: HeaderMap, raw_row: Sequence[Any]) -> Record:
        record: Record = {}
        for column in self.schema:
            position = header_map.position(column.name)
            value = raw_row[position] if position < len(raw_row) else None
            record[column.name] = self.decode_cell(column.kind, value)
        return record

    @staticmethod
    def encode_cell(value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        if value is None:
            return ""
        return value

    def encode(
        self,
        header_map: HeaderMap,
        record: Mapping[str, Any],
        base_row: Optional[Sequence[Any]] = None,
    ) -> List[Any]:
        """Return the raw row for ``record``.

        Cells of columns the record does not mention keep the value from
        ``base_row`` (blank when no base row is given), so columns outside the
        schema survive a rewrite.
        """

        unknown = [key for key in record if key not in self.schema]
        if unknown:
            raise SchemaError(f"Unknown columns: {', '.join(sorted(unknown))}")

        row: List[Any] = list(base_row or [])
        if len(row) < header_map.width:
            row.extend([""] * (header_map.width - len(row)))
        for key, value in record.items():
            row[header_map.position(key)] = self.encode_cell(value)
        return row


__all__ = ["Record", "RowCodec", "coerce_key"]
