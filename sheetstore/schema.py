"""Table schemas and header management.

A table is one tab of a spreadsheet.  Its :class:`TableSchema` lists the
canonical columns; the :class:`HeaderMap` records where each of them actually
sits in the tab.  :class:`SchemaManager` creates missing tabs, fills in
missing headers and resolves the map once per table for the lifetime of the
process.

Existing header cells are never rewritten.  Columns missing from a tab are
appended after the last header so that the data below keeps its position.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from sheetstore.errors import SchemaError
from sheetstore.sheets_client import (
    RenderMode,
    SheetsGateway,
    a1_headers_range,
    a1_range,
    column_letter,
)

logger = logging.getLogger(__name__)


class ColumnKind(str, enum.Enum):
    TEXT = "text"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATE = "date"


@dataclass(frozen=True)
class Column:
    name: str
    kind: ColumnKind = ColumnKind.TEXT


@dataclass(frozen=True)
class TableRef:
    """A tab inside a spreadsheet."""

    spreadsheet_id: str
    title: str

    def __str__(self) -> str:
        return f"{self.title}@{self.spreadsheet_id}"


@dataclass(frozen=True)
class TableSchema:
    """Ordered, uniquely named columns of a table."""

    columns: Tuple[Column, ...]
    _by_name: Dict[str, Column] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_name: Dict[str, Column] = {}
        for column in self.columns:
            if not column.name:
                raise SchemaError("Column names must not be empty")
            if column.name in by_name:
                raise SchemaError(f"Duplicate column {column.name!r} in schema")
            by_name[column.name] = column
        object.__setattr__(self, "_by_name", by_name)

    @classmethod
    def of(cls, *columns: Column | str) -> "TableSchema":
        """Build a schema from columns or bare names (bare names are TEXT)."""

        return cls(tuple(column if isinstance(column, Column) else Column(column) for column in columns))

    @property
    def names(self) -> List[str]:
        return [column.name for column in self.columns]

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[Column]:
        return iter(self.columns)

    def __len__(self) -> int:
        return len(self.columns)

    def kind_of(self, name: str) -> ColumnKind:
        try:
            return self._by_name[name].kind
        except KeyError:
            raise SchemaError(f"Unknown column {name!r}") from None

    def columns_of_kind(self, kind: ColumnKind) -> List[str]:
        return [column.name for column in self.columns if column.kind is kind]


@dataclass(frozen=True)
class HeaderMap:
    """Header names of a tab mapped to their 0-based positions."""

    headers: Tuple[str, ...]
    positions: Dict[str, int] = field(compare=False)

    @classmethod
    def from_row(cls, row: Iterable[object]) -> "HeaderMap":
        headers = tuple("" if cell is None else str(cell).strip() for cell in row)
        positions: Dict[str, int] = {}
        for index, header in enumerate(headers):
            if header and header not in positions:
                positions[header] = index
        return cls(headers=headers, positions=positions)

    @property
    def width(self) -> int:
        return len(self.headers)

    def __contains__(self, name: object) -> bool:
        return name in self.positions

    def position(self, name: str) -> int:
        try:
            return self.positions[name]
        except KeyError:
            raise SchemaError(f"Column {name!r} is not present in the header row") from None

    def missing(self, schema: TableSchema) -> List[str]:
        return [name for name in schema.names if name not in self.positions]


class SchemaManager:
    """Ensures tabs exist with the expected headers and caches their layout."""

    def __init__(self, gateway: SheetsGateway) -> None:
        self._gateway = gateway
        self._cache: Dict[Tuple[str, str], HeaderMap] = {}
        self._table_locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(table: TableRef) -> Tuple[str, str]:
        return (table.spreadsheet_id, table.title)

    def _lock_for(self, key: Tuple[str, str]) -> threading.Lock:
        with self._lock:
            return self._table_locks.setdefault(key, threading.Lock())

    def _read_header_row(self, table: TableRef) -> List[object]:
        rows = self._gateway.get_range(table.spreadsheet_id, a1_range(table.title, "1:1"), RenderMode.FORMATTED)
        return list(rows[0]) if rows else []

    def ensure_table(self, table: TableRef, schema: TableSchema) -> HeaderMap:
        """Create or migrate ``table`` so that every schema column has a header."""

        key = self._key(table)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        with self._lock_for(key):
            with self._lock:
                cached = self._cache.get(key)
            if cached is not None:
                return cached

            tabs = self._gateway.list_tabs(table.spreadsheet_id)
            if table.title not in tabs:
                self._gateway.create_tab(table.spreadsheet_id, table.title, columns=len(schema))
                header_row: List[object] = []
            else:
                header_row = self._read_header_row(table)

            if not any(str(cell).strip() for cell in header_row if cell is not None):
                self._gateway.update_range(
                    table.spreadsheet_id,
                    a1_headers_range(table.title, columns=len(schema)),
                    [schema.names],
                )
                logger.info("Wrote headers for %s", table)
                header_map = HeaderMap.from_row(schema.names)
            else:
                header_map = HeaderMap.from_row(header_row)
                missing = header_map.missing(schema)
                if missing:
                    first = header_map.width + 1
                    last = header_map.width + len(missing)
                    self._gateway.update_range(
                        table.spreadsheet_id,
                        a1_range(table.title, f"{column_letter(first)}1:{column_letter(last)}1"),
                        [missing],
                    )
                    logger.info("Added columns %s to %s", ", ".join(missing), table)
                    header_map = HeaderMap.from_row(list(header_map.headers) + missing)

            with self._lock:
                self._cache[key] = header_map
            return header_map

    def resolve(self, table: TableRef, schema: TableSchema) -> HeaderMap:
        """Read the header row of ``table`` without modifying the sheet."""

        key = self._key(table)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None and not cached.missing(schema):
            return cached

        if table.title not in self._gateway.list_tabs(table.spreadsheet_id):
            raise SchemaError(f"Table {table} does not exist")
        header_map = HeaderMap.from_row(self._read_header_row(table))
        missing = header_map.missing(schema)
        if missing:
            raise SchemaError(f"Table {table} is missing columns: {', '.join(missing)}")
        with self._lock:
            self._cache[key] = header_map
        return header_map

    def invalidate(self, table: Optional[TableRef] = None) -> None:
        """Forget the cached layout of ``table`` (or of every table)."""

        with self._lock:
            if table is None:
                self._cache.clear()
            else:
                self._cache.pop(self._key(table), None)


__all__ = [
    "Column",
    "ColumnKind",
    "HeaderMap",
    "SchemaManager",
    "TableRef",
    "TableSchema",
]
