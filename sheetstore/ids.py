"""Surrogate key allocation.

Keys are positive integers assigned as ``max + 1`` over a key column.  The
scan is not atomic: two processes allocating against the same tab at the same
time can receive the same key.  Writers inside one process are serialised by
:class:`sheetstore.workspace.Workspace`.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sheetstore.codec import coerce_key
from sheetstore.schema import HeaderMap, TableRef
from sheetstore.sheets_client import RenderMode, SheetsGateway, a1_column_range

logger = logging.getLogger(__name__)


def max_key(values: Iterable[object]) -> int:
    """Return the highest integer key in ``values`` (0 when there is none)."""

    highest = 0
    for value in values:
        key = coerce_key(value)
        if key is not None and key > highest:
            highest = key
    return highest


class IdAllocator:
    def __init__(self, gateway: SheetsGateway) -> None:
        self._gateway = gateway

    def column_values(self, table: TableRef, header_map: HeaderMap, column: str = "id") -> List[Optional[object]]:
        """Return the cells of ``column`` below the header, one per data row."""

        rows = self._gateway.get_range(
            table.spreadsheet_id,
            a1_column_range(table.title, header_map.position(column), first_row=2),
            RenderMode.UNFORMATTED,
        )
        return [row[0] if row else None for row in rows]

    def next_id(self, table: TableRef, header_map: HeaderMap, column: str = "id") -> int:
        """Return ``max + 1`` over the integer cells of ``column``, or 1."""

        next_value = max_key(self.column_values(table, header_map, column)) + 1
        logger.debug("Allocated %s=%d for %s", column, next_value, table)
        return next_value


__all__ = ["IdAllocator", "max_key"]
