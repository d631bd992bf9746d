"""Workbook service that mimics the Sheets API on local data.

:class:`LocalWorkbookService` answers the same call chain as the object
returned by ``googleapiclient.discovery.build("sheets", "v4")`` for the
subset of endpoints the gateway uses:

* ``spreadsheets().get`` / ``spreadsheets().batchUpdate`` with ``addSheet``,
  ``deleteDimension`` and ``insertDimension`` requests;
* ``spreadsheets().values().get`` / ``append`` / ``update`` / ``batchUpdate``.

Tabs live in memory, or in a JSON file when a path is given.  Cell values are
stored exactly as written (``RAW``), so numbers stay numbers and strings stay
strings; ``FORMATTED_VALUE`` reads render them the way Sheets would.  Errors
are raised as :class:`googleapiclient.errors.HttpError` so callers handle the
local and the remote backend identically.
"""

from __future__ import annotations

import copy
import json
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import httplib2
from googleapiclient.errors import HttpError

_CELL_RE = re.compile(r"^(?P<col>[A-Za-z]*)(?P<row>\d*)$")


@dataclass(frozen=True)
class _CellRef:
    row: Optional[int]
    column: Optional[int]


@dataclass
class _Tab:
    sheet_id: int
    rows: List[List[Any]] = field(default_factory=list)


def _http_error(status: int, message: str) -> HttpError:
    response = httplib2.Response({"status": str(status)})
    content = json.dumps({"error": {"code": status, "message": message}}).encode("utf-8")
    return HttpError(response, content, uri="local-workbook")


class _LocalRequest:
    def __init__(self, callback: Callable[[], Mapping[str, object]]) -> None:
        self._callback = callback

    def execute(self, num_retries: int = 0) -> Mapping[str, object]:
        return self._callback()


class _Store:
    """Shared state for every spreadsheet held by one service instance."""

    def __init__(self, path: Optional[Path]) -> None:
        self.path = path
        self.lock = threading.RLock()
        self.spreadsheets: Dict[str, Dict[str, _Tab]] = {}
        if path is not None and path.exists():
            self._load(path)

    def _load(self, path: Path) -> None:
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
        for spreadsheet_id, tabs in payload.get("spreadsheets", {}).items():
            self.spreadsheets[spreadsheet_id] = {
                title: _Tab(sheet_id=int(tab["sheetId"]), rows=[list(row) for row in tab.get("rows", [])])
                for title, tab in tabs.items()
            }

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "spreadsheets": {
                spreadsheet_id: {
                    title: {"sheetId": tab.sheet_id, "rows": tab.rows} for title, tab in tabs.items()
                }
                for spreadsheet_id, tabs in self.spreadsheets.items()
            }
        }
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)

    def tabs(self, spreadsheet_id: str) -> Dict[str, _Tab]:
        return self.spreadsheets.setdefault(spreadsheet_id, {})

    @contextmanager
    def transaction(self, spreadsheet_id: str) -> Iterator[Dict[str, _Tab]]:
        """Apply a batch to ``spreadsheet_id`` all or nothing, then save."""

        with self.lock:
            backup = copy.deepcopy(self.tabs(spreadsheet_id))
            try:
                yield self.spreadsheets[spreadsheet_id]
            except Exception:
                self.spreadsheets[spreadsheet_id] = backup
                raise
            self.save()

    def tab(self, spreadsheet_id: str, title: str) -> _Tab:
        tab = self.tabs(spreadsheet_id).get(title)
        if tab is None:
            raise _http_error(400, f"Unable to parse range: {title}")
        return tab

    def tab_by_id(self, spreadsheet_id: str, sheet_id: int) -> _Tab:
        for tab in self.tabs(spreadsheet_id).values():
            if tab.sheet_id == sheet_id:
                return tab
        raise _http_error(400, f"No grid with id: {sheet_id}")


# ----------------------------------------------------------------------
# A1 parsing
# ----------------------------------------------------------------------
def _split_range(range_spec: str) -> Tuple[str, str]:
    spec = range_spec.strip()
    if spec.startswith("'"):
        chars: List[str] = []
        index = 1
        while index < len(spec):
            char = spec[index]
            if char == "'":
                if index + 1 < len(spec) and spec[index + 1] == "'":
                    chars.append("'")
                    index += 2
                    continue
                break
            chars.append(char)
            index += 1
        rest = spec[index + 1 :]
        return "".join(chars), rest[1:] if rest.startswith("!") else rest
    title, _, cells = spec.partition("!")
    return title, cells


def _column_index(label: str) -> int:
    index = 0
    for char in label.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index


def _parse_cell(text: str) -> _CellRef:
    match = _CELL_RE.match(text.strip())
    if not match:
        raise _http_error(400, f"Invalid cell reference: {text!r}")
    column = _column_index(match.group("col")) if match.group("col") else None
    row = int(match.group("row")) if match.group("row") else None
    return _CellRef(row=row, column=column)


def _parse_range(range_spec: str) -> Tuple[str, _CellRef, _CellRef]:
    title, cells = _split_range(range_spec)
    if not title:
        raise _http_error(400, f"Unable to parse range: {range_spec}")
    if not cells:
        return title, _CellRef(None, None), _CellRef(None, None)
    start_text, _, end_text = cells.partition(":")
    start = _parse_cell(start_text)
    end = _parse_cell(end_text) if end_text else start
    return title, start, end


def _formatted(value: Any) -> Any:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _slice(rows: Sequence[Sequence[Any]], start: _CellRef, end: _CellRef, render: str) -> List[List[Any]]:
    if not rows:
        return []
    min_row = max(1, start.row or 1)
    min_col = max(1, start.column or 1)
    max_row = min(end.row or len(rows), len(rows))
    sliced: List[List[Any]] = []
    for row in rows[min_row - 1 : max_row]:
        max_col = min(end.column or len(row), len(row))
        current = list(row[min_col - 1 : max_col])
        while current and current[-1] in ("", None):
            current.pop()
        if render == "FORMATTED_VALUE":
            current = [_formatted(cell) if cell is not None else "" for cell in current]
        sliced.append(current)
    while sliced and not sliced[-1]:
        sliced.pop()
    return sliced


def _write(rows: List[List[Any]], start: _CellRef, values: Sequence[Sequence[Any]]) -> Tuple[int, int]:
    base_row = start.row or 1
    base_col = start.column or 1
    for offset, row_values in enumerate(values):
        target = base_row + offset
        while len(rows) < target:
            rows.append([])
        row = rows[target - 1]
        needed = base_col - 1 + len(row_values)
        if len(row) < needed:
            row.extend([""] * (needed - len(row)))
        for col_offset, cell in enumerate(row_values):
            row[base_col - 1 + col_offset] = "" if cell is None else cell
    return base_row, base_row + max(0, len(values) - 1)


def _last_data_row(rows: Sequence[Sequence[Any]]) -> int:
    for index in range(len(rows), 0, -1):
        if any(cell not in ("", None) for cell in rows[index - 1]):
            return index
    return 0


# ----------------------------------------------------------------------
# API surface
# ----------------------------------------------------------------------
class LocalValuesApi:
    def __init__(self, store: _Store) -> None:
        self._store = store

    def get(  # noqa: D401 - API compatibility
        self,
        spreadsheetId: str,  # noqa: N803 - API compatibility
        range: str,  # noqa: A002 - API compatibility
        majorDimension: str = "ROWS",  # noqa: N803
        valueRenderOption: str = "FORMATTED_VALUE",  # noqa: N803
        dateTimeRenderOption: str = "SERIAL_NUMBER",  # noqa: N803
    ) -> _LocalRequest:
        def _handle() -> Mapping[str, object]:
            with self._store.lock:
                title, start, end = _parse_range(range)
                tab = self._store.tab(spreadsheetId, title)
                return {"range": range, "majorDimension": majorDimension, "values": _slice(tab.rows, start, end, valueRenderOption)}

        return _LocalRequest(_handle)

    def append(  # noqa: D401 - API compatibility
        self,
        spreadsheetId: str,  # noqa: N803
        range: str,  # noqa: A002
        body: Mapping[str, Any],
        valueInputOption: str = "RAW",  # noqa: N803
        insertDataOption: str = "INSERT_ROWS",  # noqa: N803
    ) -> _LocalRequest:
        def _handle() -> Mapping[str, object]:
            with self._store.lock:
                title, start, _end = _parse_range(range)
                tab = self._store.tab(spreadsheetId, title)
                values = [list(row) for row in body.get("values", [])]
                first = _last_data_row(tab.rows) + 1
                del tab.rows[first - 1 :]
                first_row, last_row = _write(tab.rows, _CellRef(first, start.column or 1), values)
                self._store.save()
                return {"updates": {"updatedRange": f"{title}!A{first_row}:A{last_row}", "updatedRows": len(values)}}

        return _LocalRequest(_handle)

    def update(  # noqa: D401 - API compatibility
        self,
        spreadsheetId: str,  # noqa: N803
        range: str,  # noqa: A002
        body: Mapping[str, Any],
        valueInputOption: str = "RAW",  # noqa: N803
    ) -> _LocalRequest:
        def _handle() -> Mapping[str, object]:
            with self._store.lock:
                title, start, _end = _parse_range(range)
                tab = self._store.tab(spreadsheetId, title)
                values = [list(row) for row in body.get("values", [])]
                _write(tab.rows, start, values)
                self._store.save()
                return {"updatedRange": range, "updatedRows": len(values)}

        return _LocalRequest(_handle)

    def batchUpdate(self, spreadsheetId: str, body: Mapping[str, Any]) -> _LocalRequest:  # noqa: N802, N803
        def _handle() -> Mapping[str, object]:
            with self._store.transaction(spreadsheetId):
                for entry in body.get("data", []):
                    title, start, _end = _parse_range(str(entry.get("range", "")))
                    tab = self._store.tab(spreadsheetId, title)
                    _write(tab.rows, start, [list(row) for row in entry.get("values", [])])
                return {"totalUpdatedRows": sum(len(entry.get("values", [])) for entry in body.get("data", []))}

        return _LocalRequest(_handle)


class LocalSpreadsheetsApi:
    def __init__(self, store: _Store) -> None:
        self._store = store

    def values(self) -> LocalValuesApi:  # noqa: D401 - compatibility proxy
        return LocalValuesApi(self._store)

    def get(self, spreadsheetId: str, includeGridData: bool = False, fields: str = "", ranges: Any = None) -> _LocalRequest:  # noqa: N803
        def _handle() -> Mapping[str, object]:
            with self._store.lock:
                tabs = self._store.tabs(spreadsheetId)
                sheets = [
                    {"properties": {"title": title, "sheetId": tab.sheet_id, "index": index}}
                    for index, (title, tab) in enumerate(tabs.items())
                ]
                return {"spreadsheetId": spreadsheetId, "sheets": sheets}

        return _LocalRequest(_handle)

    def batchUpdate(self, spreadsheetId: str, body: Mapping[str, Any]) -> _LocalRequest:  # noqa: N802, N803
        return _LocalRequest(lambda: self._handle_batch_update(spreadsheetId, body))

    def _handle_batch_update(self, spreadsheet_id: str, body: Mapping[str, Any]) -> Mapping[str, object]:
        replies: List[Dict[str, Any]] = []
        with self._store.transaction(spreadsheet_id):
            for request in body.get("requests", []):
                if "addSheet" in request:
                    replies.append(self._add_sheet(spreadsheet_id, request["addSheet"]))
                elif "deleteDimension" in request:
                    self._delete_dimension(spreadsheet_id, request["deleteDimension"])
                    replies.append({})
                elif "insertDimension" in request:
                    self._insert_dimension(spreadsheet_id, request["insertDimension"])
                    replies.append({})
                else:
                    raise _http_error(400, f"Unsupported request: {sorted(request)}")
        return {"spreadsheetId": spreadsheet_id, "replies": replies}

    def _add_sheet(self, spreadsheet_id: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        properties = payload.get("properties", {})
        title = properties.get("title")
        tabs = self._store.tabs(spreadsheet_id)
        if not isinstance(title, str) or not title:
            raise _http_error(400, "addSheet requires a title")
        if title in tabs:
            raise _http_error(400, f"A sheet with the name \"{title}\" already exists.")
        sheet_id = properties.get("sheetId")
        if not isinstance(sheet_id, int):
            sheet_id = max((tab.sheet_id for tab in tabs.values()), default=0) + 1
        tabs[title] = _Tab(sheet_id=sheet_id)
        return {"addSheet": {"properties": {"title": title, "sheetId": sheet_id}}}

    @staticmethod
    def _dimension_range(payload: Mapping[str, Any]) -> Tuple[int, int, int]:
        span = payload.get("range", {})
        if span.get("dimension") != "ROWS":
            raise _http_error(400, "Only ROWS dimension is supported")
        start, end = int(span.get("startIndex", 0)), int(span.get("endIndex", 0))
        if start < 0 or end < start:
            raise _http_error(400, f"Invalid dimension range {start}..{end}")
        return int(span.get("sheetId", 0)), start, end

    def _delete_dimension(self, spreadsheet_id: str, payload: Mapping[str, Any]) -> None:
        sheet_id, start, end = self._dimension_range(payload)
        tab = self._store.tab_by_id(spreadsheet_id, sheet_id)
        del tab.rows[start:end]

    def _insert_dimension(self, spreadsheet_id: str, payload: Mapping[str, Any]) -> None:
        sheet_id, start, end = self._dimension_range(payload)
        tab = self._store.tab_by_id(spreadsheet_id, sheet_id)
        while len(tab.rows) < start:
            tab.rows.append([])
        tab.rows[start:start] = [[] for _ in range(end - start)]


class LocalWorkbookService:
    """Minimal Sheets API drop-in backed by memory or a JSON file."""

    def __init__(self, workbook_path: Optional[Path] = None) -> None:
        self._store = _Store(workbook_path)

    def spreadsheets(self) -> LocalSpreadsheetsApi:  # noqa: D401 - compatibility proxy
        return LocalSpreadsheetsApi(self._store)

    def snapshot(self, spreadsheet_id: str, title: str) -> List[List[Any]]:
        """Return a copy of every stored row of ``title``, header included."""

        with self._store.lock:
            tab = self._store.tab(spreadsheet_id, title)
            return [list(row) for row in tab.rows]


__all__ = ["LocalWorkbookService"]
