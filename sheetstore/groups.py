"""Entities that span several rows of one tab.

An order with N line items is stored as N rows sharing a group column
(``party_id`` for orders, ``group_id`` for checklist batches).  Every row
repeats the shared columns and carries its own ``id``, its line identity
(``item``, ``qty``) and its line state: pipeline timestamps, statuses and
costs that are filled in long after the order was created.

Replacing the item list of a group deletes the group's rows and re-inserts the
merged rows at the position of the first one.  The merge itself is the pure
function :func:`merge_lines`; line state of items that keep their ``id``
survives the edit.  There is no transaction around the delete and the
re-insert: if the re-insert fails the group is gone from the sheet and the
snapshot taken before the delete is logged at ERROR level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sheetstore import dates
from sheetstore.codec import Record, coerce_key
from sheetstore.errors import RecordNotFoundError, SchemaError, ValidationError
from sheetstore.records import CREATED_AT, UPDATED_AT, RecordStore, Where, format_date_cells, matches
from sheetstore.schema import ColumnKind, HeaderMap
from sheetstore.sheets_client import RenderMode, a1_full_range, a1_row_range, a1_rows_range

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DerivedField:
    """A column recomputed from the other fields of a line on every write."""

    name: str
    compute: Callable[[Mapping[str, Any]], Any]


def _number(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def product_field(name: str, left: str, right: str) -> DerivedField:
    """``name = left * right``; blank when either operand is not a number."""

    def compute(line: Mapping[str, Any]) -> Any:
        first, second = _number(line.get(left)), _number(line.get(right))
        if first is None or second is None:
            return None
        result = first * second
        return int(result) if result.is_integer() else round(result, 2)

    return DerivedField(name, compute)


@dataclass(frozen=True)
class GroupLayout:
    group_column: str
    shared_columns: Tuple[str, ...] = ()
    line_columns: Tuple[str, ...] = ()
    derived: Tuple[DerivedField, ...] = ()

    @property
    def follow_up_protected(self) -> Tuple[str, ...]:
        """Columns a follow-up patch may never change."""

        return ("id", self.group_column, CREATED_AT) + tuple(self.line_columns)

    def apply_derived(self, line: Dict[str, Any]) -> Dict[str, Any]:
        for derived in self.derived:
            line[derived.name] = derived.compute(line)
        return line


@dataclass
class GroupedEntity:
    group_id: Any
    shared: Dict[str, Any] = field(default_factory=dict)
    lines: List[Record] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        payload = dict(self.shared)
        payload["items"] = [dict(line) for line in self.lines]
        return payload


def merge_lines(
    snapshots: Mapping[int, Mapping[str, Any]],
    items: Sequence[Mapping[str, Any]],
    shared: Mapping[str, Any],
    *,
    layout: GroupLayout,
    group_id: Any,
    next_id: int,
    timestamp: Any,
) -> List[Record]:
    """Combine the previous lines of a group with the requested item list.

    ``snapshots`` maps row ids to the decoded rows found before the edit.  An
    item whose ``id`` is in ``snapshots`` keeps that row's fields and
    ``created_at``; any other item, including a second item naming an id
    already claimed, becomes a new line numbered from
    ``next_id`` with ``created_at = timestamp``.  Shared fields and the item's
    own fields are laid over the line, then derived fields are recomputed.
    Lines absent from ``items`` are dropped.  Inputs are not modified.
    """

    merged: List[Record] = []
    fresh_id = next_id
    reserved = {"id", layout.group_column, CREATED_AT, UPDATED_AT}
    claimed = set()
    for item in items:
        key = coerce_key(item.get("id"))
        previous = snapshots.get(key) if key is not None and key not in claimed else None
        if previous is not None:
            claimed.add(key)
            line: Dict[str, Any] = dict(previous)
            line_id = key
            created_at = previous.get(CREATED_AT)
        else:
            line = {}
            line_id = fresh_id
            fresh_id += 1
            created_at = timestamp
        line.update(shared)
        line.update((name, value) for name, value in item.items() if name not in reserved)
        line["id"] = line_id
        line[layout.group_column] = group_id
        line[CREATED_AT] = created_at
        line[UPDATED_AT] = timestamp
        merged.append(layout.apply_derived(line))
    return merged


def _row_spans(row_numbers: Iterable[int]) -> List[Tuple[int, int]]:
    """Collapse 1-based row numbers into 0-based ``[start, end)`` spans."""

    spans: List[Tuple[int, int]] = []
    for number in sorted(set(row_numbers)):
        if spans and spans[-1][1] == number - 1:
            spans[-1] = (spans[-1][0], number)
        else:
            spans.append((number - 1, number))
    return spans


def _same_group(value: Any, group_id: Any) -> bool:
    key = coerce_key(group_id)
    if key is not None:
        return coerce_key(value) == key
    return value not in (None, "") and str(value).strip() == str(group_id).strip()


class GroupStore:
    """Grouped-entity operations for one table, layered on a :class:`RecordStore`."""

    def __init__(self, records: RecordStore, layout: GroupLayout) -> None:
        for column in (layout.group_column,) + tuple(layout.shared_columns) + tuple(layout.line_columns):
            if column not in records.schema:
                raise SchemaError(f"Group column {column!r} is not part of {records.name}")
        self.records = records
        self.layout = layout

    @property
    def name(self) -> str:
        return self.records.name

    # -- helpers ---------------------------------------------------------
    def _check_items(self, shared: Mapping[str, Any], items: Sequence[Mapping[str, Any]]) -> None:
        if not items:
            raise ValidationError(f"A {self.name} group needs at least one item")
        self.records.check_columns(shared)
        for item in items:
            self.records.check_columns(item)

    def _snapshot(self, header_map: HeaderMap, raw_row: Sequence[Any]) -> Record:
        """Decode ``raw_row``, keeping unreadable date cells as raw text."""

        record = self.records.codec.decode(header_map, raw_row)
        for name in self.records.schema.columns_of_kind(ColumnKind.DATE):
            position = header_map.position(name)
            raw = raw_row[position] if position < len(raw_row) else None
            if record[name] is None and raw not in (None, ""):
                record[name] = raw
        return record

    def _encode(self, header_map: HeaderMap, line: Mapping[str, Any], base_row: Optional[Sequence[Any]] = None) -> List[Any]:
        schema = self.records.schema
        line = {name: value for name, value in line.items() if name in schema or name not in (CREATED_AT, UPDATED_AT)}
        prepared = format_date_cells(self.records.schema, line, self.records.tz, table=self.name)
        return self.records.codec.encode(header_map, prepared, base_row)

    def _locate_group(self, header_map: HeaderMap, group_id: Any) -> List[Tuple[int, List[Any]]]:
        """Return ``(row number, raw row)`` for every row of ``group_id``."""

        table = self.records.table
        rows = self.records.gateway.get_range(
            table.spreadsheet_id,
            a1_full_range(table.title, columns=header_map.width),
            RenderMode.UNFORMATTED,
        )
        position = header_map.position(self.layout.group_column)
        located: List[Tuple[int, List[Any]]] = []
        for row_number, raw_row in enumerate(rows[1:], start=2):
            value = raw_row[position] if position < len(raw_row) else None
            if _same_group(value, group_id):
                located.append((row_number, list(raw_row)))
        if not located:
            raise RecordNotFoundError(self.name, group_id, column=self.layout.group_column)
        return located

    def _entities(self, records: Iterable[Record]) -> List[GroupedEntity]:
        entities: Dict[Any, GroupedEntity] = {}
        for record in records:
            group_id = record.get(self.layout.group_column)
            if group_id in (None, ""):
                continue
            entity = entities.get(group_id)
            if entity is None:
                shared = {self.layout.group_column: group_id}
                shared.update((name, record.get(name)) for name in self.layout.shared_columns)
                entity = entities[group_id] = GroupedEntity(group_id=group_id, shared=shared)
            entity.lines.append(record)
        return list(entities.values())

    # -- operations ------------------------------------------------------
    def create_group(self, shared: Mapping[str, Any], items: Sequence[Mapping[str, Any]]) -> int:
        """Append one row per item under a newly allocated group id."""

        items = list(items)
        self._check_items(shared, items)
        table = self.records.table
        with self.records.lock:
            header_map = self.records.open()
            group_id = self.records.allocator.next_id(table, header_map, self.layout.group_column)
            first_id = self.records.allocator.next_id(table, header_map)
            lines = merge_lines(
                {},
                items,
                shared,
                layout=self.layout,
                group_id=group_id,
                next_id=first_id,
                timestamp=dates.now(self.records.tz),
            )
            rows = [self._encode(header_map, line) for line in lines]
            self.records.gateway.append_rows(
                table.spreadsheet_id,
                a1_full_range(table.title, columns=header_map.width),
                rows,
            )
            self.records.invalidate_cache()
        logger.info("Created %s group %s with %d line(s)", self.name, group_id, len(rows))
        return group_id

    def update_group(self, group_id: Any, shared: Mapping[str, Any], items: Sequence[Mapping[str, Any]]) -> GroupedEntity:
        """Replace the item list of a group, keeping the state of retained lines."""

        items = list(items)
        self._check_items(shared, items)
        gateway = self.records.gateway
        table = self.records.table
        with self.records.lock:
            header_map = self.records.open()
            located = self._locate_group(header_map, group_id)
            anchor = located[0][0]

            snapshots: Dict[int, Record] = {}
            base_rows: Dict[int, List[Any]] = {}
            for _, raw_row in located:
                snapshot = self._snapshot(header_map, raw_row)
                key = coerce_key(snapshot.get("id"))
                if key is not None and key not in snapshots:
                    snapshots[key] = snapshot
                    base_rows[key] = raw_row

            first = self._snapshot(header_map, located[0][1])
            merged_shared = {name: first.get(name) for name in self.layout.shared_columns}
            merged_shared.update(shared)
            stored_group_id = first.get(self.layout.group_column)

            next_id = self.records.allocator.next_id(table, header_map)
            sheet_id = gateway.get_numeric_sheet_id(table.spreadsheet_id, table.title)
            gateway.delete_row_spans(table.spreadsheet_id, sheet_id, _row_spans(number for number, _ in located))
            self.records.invalidate_cache()

            try:
                lines = merge_lines(
                    snapshots,
                    items,
                    merged_shared,
                    layout=self.layout,
                    group_id=stored_group_id,
                    next_id=next_id,
                    timestamp=dates.now(self.records.tz),
                )
                rows = [self._encode(header_map, line, base_rows.get(line["id"])) for line in lines]
                gateway.insert_rows(table.spreadsheet_id, sheet_id, anchor - 1, anchor - 1 + len(rows))
                gateway.update_range(
                    table.spreadsheet_id,
                    a1_rows_range(table.title, anchor, anchor + len(rows) - 1, columns=header_map.width),
                    rows,
                )
            except Exception:
                logger.error(
                    "Re-insert of %s group %s failed after its rows were deleted; snapshot: %r",
                    self.name,
                    group_id,
                    list(snapshots.values()),
                )
                raise
            finally:
                self.records.invalidate_cache()

        logger.info("Updated %s group %s: %d line(s) at row %d", self.name, group_id, len(rows), anchor)
        return self._entities(self.records.codec.decode(header_map, row) for row in rows)[0]

    def update_group_follow_up(self, group_id: Any, patch: Mapping[str, Any]) -> List[Record]:
        """Apply ``patch`` to every row of a group in one batch write.

        Row ids, the group column, line identity and ``created_at`` are never
        changed; derived fields are recomputed per row.
        """

        self.records.check_columns(patch)
        protected = set(self.layout.follow_up_protected)
        changes = {name: value for name, value in patch.items() if name not in protected}
        table = self.records.table
        with self.records.lock:
            header_map = self.records.open()
            located = self._locate_group(header_map, group_id)
            stamp = dates.now(self.records.tz)
            updates = []
            rows = []
            for row_number, raw_row in located:
                line = self._snapshot(header_map, raw_row)
                line.update(changes)
                if UPDATED_AT in self.records.schema:
                    line[UPDATED_AT] = stamp
                line = self.layout.apply_derived(line)
                line.pop(CREATED_AT, None)
                row = self._encode(header_map, line, raw_row)
                rows.append(row)
                updates.append((a1_row_range(table.title, row_number, columns=header_map.width), [row]))
            self.records.gateway.batch_update_values(table.spreadsheet_id, updates)
            self.records.invalidate_cache()
        logger.info("Follow-up update of %s group %s touched %d row(s)", self.name, group_id, len(rows))
        return [self.records.codec.decode(header_map, row) for row in rows]

    def update_line(self, row_id: Any, patch: Mapping[str, Any]) -> Record:
        """Update one line of a group in place, recomputing derived fields."""

        self.records.check_columns(patch)
        protected = {"id", self.layout.group_column, CREATED_AT}
        table = self.records.table
        with self.records.lock:
            header_map = self.records.open()
            row_number = self.records.locate(header_map, row_id)
            raw_row = self.records.read_row(header_map, row_number)
            line = self._snapshot(header_map, raw_row)
            line.update((name, value) for name, value in patch.items() if name not in protected)
            if UPDATED_AT in self.records.schema:
                line[UPDATED_AT] = dates.now(self.records.tz)
            line = self.layout.apply_derived(line)
            line.pop(CREATED_AT, None)
            row = self._encode(header_map, line, raw_row)
            self.records.gateway.update_range(
                table.spreadsheet_id,
                a1_row_range(table.title, row_number, columns=header_map.width),
                [row],
            )
            self.records.invalidate_cache()
        logger.info("Updated %s line %s", self.name, row_id)
        return self.records.codec.decode(header_map, row)

    def delete_line(self, row_id: Any) -> None:
        self.records.remove(row_id)

    def delete_group(self, group_id: Any) -> int:
        """Delete every row of a group and return how many were removed."""

        gateway = self.records.gateway
        table = self.records.table
        with self.records.lock:
            header_map = self.records.open()
            located = self._locate_group(header_map, group_id)
            sheet_id = gateway.get_numeric_sheet_id(table.spreadsheet_id, table.title)
            gateway.delete_row_spans(table.spreadsheet_id, sheet_id, _row_spans(number for number, _ in located))
            self.records.invalidate_cache()
        logger.info("Deleted %s group %s (%d row(s))", self.name, group_id, len(located))
        return len(located)

    def list_groups(self, where: Where = None) -> List[GroupedEntity]:
        """Return every group in sheet order; ``where`` filters on shared fields."""

        return [entity for entity in self._entities(self.records.read_all()) if matches(entity.shared, where)]

    def get_group(self, group_id: Any) -> GroupedEntity:
        for entity in self.list_groups():
            if _same_group(entity.group_id, group_id):
                return entity
        raise RecordNotFoundError(self.name, group_id, column=self.layout.group_column)


__all__ = [
    "DerivedField",
    "GroupLayout",
    "GroupStore",
    "GroupedEntity",
    "merge_lines",
    "product_field",
]
