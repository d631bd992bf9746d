"""Single-row record storage on top of a sheet tab.

Each record occupies exactly one row and is identified by the integer ``id``
column.  Every call re-reads what it needs: rows shift when other rows are
deleted, so no row index outlives the operation that found it.
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import tzinfo
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from sheetstore import dates
from sheetstore.cache import TTLCache, generate_cache_key
from sheetstore.codec import Record, RowCodec, coerce_key
from sheetstore.errors import RecordNotFoundError, SchemaError
from sheetstore.ids import IdAllocator
from sheetstore.schema import ColumnKind, HeaderMap, SchemaManager, TableRef, TableSchema
from sheetstore.sheets_client import RenderMode, SheetsGateway, a1_full_range, a1_row_range

logger = logging.getLogger(__name__)

Where = Union[Mapping[str, Any], Callable[[Record], bool], None]
SortKey = Optional[Callable[[Record], Any]]

CREATED_AT = "created_at"
UPDATED_AT = "updated_at"


def matches(record: Mapping[str, Any], where: Where) -> bool:
    """Return ``True`` when ``record`` satisfies a predicate or field mapping."""

    if where is None:
        return True
    if callable(where):
        return bool(where(record))
    return all(record.get(name) == value for name, value in where.items())


def format_date_cells(
    schema: TableSchema,
    record: Mapping[str, Any],
    tz: Optional[tzinfo],
    *,
    table: object = "",
) -> Dict[str, Any]:
    """Return a copy of ``record`` with its date columns in stored form.

    Values that cannot be read as a date are written unchanged and logged.
    """

    prepared = dict(record)
    for name in schema.columns_of_kind(ColumnKind.DATE):
        value = prepared.get(name)
        if name not in prepared or value is None or value == "":
            continue
        formatted = dates.format_sheet_date(value, tz)
        if formatted:
            prepared[name] = formatted
        else:
            logger.warning("Writing unparseable date %r to %s.%s unchanged", value, table, name)
    return prepared


class RecordStore:
    """CRUD operations for one table whose rows are independent records."""

    def __init__(
        self,
        gateway: SheetsGateway,
        schema_manager: SchemaManager,
        allocator: IdAllocator,
        table: TableRef,
        schema: TableSchema,
        *,
        tz: Optional[tzinfo] = None,
        cache: Optional[TTLCache] = None,
        lock: Optional[threading.RLock] = None,
        name: Optional[str] = None,
    ) -> None:
        if "id" not in schema:
            raise SchemaError(f"Table {table} has no id column")
        self.gateway = gateway
        self.schema_manager = schema_manager
        self.allocator = allocator
        self.table = table
        self.schema = schema
        self.tz = tz
        self.codec = RowCodec(schema, tz)
        self.cache = cache
        self.lock = lock or threading.RLock()
        self.name = name or table.title

    # -- helpers ---------------------------------------------------------
    def open(self) -> HeaderMap:
        """Ensure the tab exists with every schema header and return its map."""

        return self.schema_manager.ensure_table(self.table, self.schema)

    def _cache_prefix(self) -> str:
        return f"{self.table.spreadsheet_id}:{self.table.title}"

    def invalidate_cache(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_pattern(f"^{re.escape(self._cache_prefix())}")

    def check_columns(self, record: Mapping[str, Any]) -> None:
        unknown = sorted(key for key in record if key not in self.schema)
        if unknown:
            raise SchemaError(f"Unknown columns for {self.name}: {', '.join(unknown)}")

    def _normalise_dates(self, header_map: HeaderMap, raw_row: Sequence[Any]) -> Dict[str, Any]:
        """Stored-form date cells of ``raw_row`` that read as valid dates."""

        cells: Dict[str, Any] = {}
        for name in self.schema.columns_of_kind(ColumnKind.DATE):
            position = header_map.position(name)
            value = raw_row[position] if position < len(raw_row) else None
            formatted = dates.format_sheet_date(value, self.tz) if value not in (None, "") else ""
            if formatted:
                cells[name] = formatted
        return cells

    def _encode(self, header_map: HeaderMap, record: Mapping[str, Any], base_row: Optional[Sequence[Any]] = None) -> List[Any]:
        prepared = format_date_cells(self.schema, record, self.tz, table=self.name)
        return self.codec.encode(header_map, prepared, base_row)

    def _new_record(self, record_id: int, partial: Mapping[str, Any], stamp: Any) -> Dict[str, Any]:
        record: Dict[str, Any] = {name: None for name in self.schema.names}
        record.update(partial)
        record["id"] = record_id
        if CREATED_AT in self.schema:
            record[CREATED_AT] = stamp
        if UPDATED_AT in self.schema:
            record[UPDATED_AT] = stamp
        return record

    def locate(self, header_map: HeaderMap, record_id: Any) -> int:
        """Return the 1-based sheet row holding ``record_id``."""

        key = coerce_key(record_id)
        if key is not None:
            for offset, value in enumerate(self.allocator.column_values(self.table, header_map, "id")):
                if coerce_key(value) == key:
                    return offset + 2
        raise RecordNotFoundError(self.name, record_id)

    def read_row(self, header_map: HeaderMap, row_number: int) -> List[Any]:
        rows = self.gateway.get_range(
            self.table.spreadsheet_id,
            a1_row_range(self.table.title, row_number, columns=header_map.width),
            RenderMode.UNFORMATTED,
        )
        return list(rows[0]) if rows else []

    # -- operations ------------------------------------------------------
    def create(self, partial: Mapping[str, Any]) -> Record:
        """Append a new record and return it as it now reads back."""

        return self.create_many([partial])[0]

    def create_many(self, partials: Iterable[Mapping[str, Any]]) -> List[Record]:
        """Append several records with consecutive ids in a single call."""

        partials = list(partials)
        if not partials:
            return []
        for partial in partials:
            self.check_columns(partial)

        with self.lock:
            header_map = self.open()
            first_id = self.allocator.next_id(self.table, header_map)
            stamp = dates.now(self.tz)
            rows = [
                self._encode(header_map, self._new_record(first_id + offset, partial, stamp))
                for offset, partial in enumerate(partials)
            ]
            self.gateway.append_rows(
                self.table.spreadsheet_id,
                a1_full_range(self.table.title, columns=header_map.width),
                rows,
            )
            self.invalidate_cache()
        logger.info("Created %d record(s) in %s starting at id %d", len(rows), self.name, first_id)
        return [self.codec.decode(header_map, row) for row in rows]

    def find(self, record_id: Any) -> Optional[Record]:
        try:
            return self.get(record_id)
        except RecordNotFoundError:
            return None

    def get(self, record_id: Any) -> Record:
        header_map = self.open()
        row_number = self.locate(header_map, record_id)
        return self.codec.decode(header_map, self.read_row(header_map, row_number))

    def update(self, record_id: Any, patch: Mapping[str, Any]) -> Record:
        """Merge ``patch`` into the stored record and rewrite its row.

        ``id`` in the patch is ignored and ``created_at`` keeps its stored
        value.  Cells the patch does not touch are written back unchanged,
        with readable dates brought to the stored form.
        """

        self.check_columns(patch)
        with self.lock:
            header_map = self.open()
            row_number = self.locate(header_map, record_id)
            raw_row = self.read_row(header_map, row_number)

            changes: Dict[str, Any] = self._normalise_dates(header_map, raw_row)
            changes.update((key, value) for key, value in patch.items() if key not in ("id", CREATED_AT))
            changes.pop(CREATED_AT, None)
            if UPDATED_AT in self.schema:
                changes[UPDATED_AT] = dates.now(self.tz)

            row = self._encode(header_map, changes, raw_row)
            self.gateway.update_range(
                self.table.spreadsheet_id,
                a1_row_range(self.table.title, row_number, columns=header_map.width),
                [row],
            )
            self.invalidate_cache()
        logger.info("Updated record %s in %s", record_id, self.name)
        return self.codec.decode(header_map, row)

    def remove(self, record_id: Any) -> None:
        """Delete the row holding ``record_id``; later rows move up by one."""

        with self.lock:
            header_map = self.open()
            row_number = self.locate(header_map, record_id)
            sheet_id = self.gateway.get_numeric_sheet_id(self.table.spreadsheet_id, self.table.title)
            self.gateway.delete_rows(self.table.spreadsheet_id, sheet_id, row_number - 1, row_number)
            self.invalidate_cache()
        logger.info("Deleted record %s from %s", record_id, self.name)

    def read_all(self) -> List[Record]:
        """Decode every data row that carries an id, in sheet order."""

        cache_key = generate_cache_key(self._cache_prefix(), view="all")
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return [dict(record) for record in cached]

        header_map = self.open()
        generation = self.cache.generation() if self.cache is not None else None
        rows = self.gateway.get_range(
            self.table.spreadsheet_id,
            a1_full_range(self.table.title, columns=header_map.width),
            RenderMode.UNFORMATTED,
        )
        records = []
        for raw_row in rows[1:]:
            record = self.codec.decode(header_map, raw_row)
            if coerce_key(record.get("id")) is None:
                continue
            records.append(record)
        logger.debug("Read %d records from %s", len(records), self.name)
        if self.cache is not None:
            self.cache.set(cache_key, [dict(record) for record in records], generation=generation)
        return records

    def list(self, where: Where = None, sort_key: SortKey = None, reverse: bool = False) -> List[Record]:
        records = [record for record in self.read_all() if matches(record, where)]
        if sort_key is not None:
            records.sort(key=sort_key, reverse=reverse)
        elif reverse:
            records.reverse()
        return records


__all__ = ["RecordStore", "format_date_cells", "matches"]
