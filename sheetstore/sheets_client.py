"""Google Sheets gateway with robust A1 range handling.

This module centralises every direct interaction with the Sheets API used by
the store.  It exposes a small set of primitives (read a range, append rows,
overwrite a range, write several ranges at once, delete or insert rows by the
numeric sheet id, create a tab) and nothing else: the engines in
:mod:`sheetstore.records` and :mod:`sheetstore.groups` compose them.

* Worksheet titles are always single-quoted in A1 notation with embedded
  quotes doubled, so titles with spaces or apostrophes never produce
  "Unable to parse range" errors.
* All writes use ``valueInputOption=RAW``.  Dates are written as
  ``DD/MM/YYYY HH:mm:ss`` text and must not be reinterpreted by the
  spreadsheet locale.
* Every API failure surfaces as :class:`SheetsApiResponseError` wrapping the
  original :class:`googleapiclient.errors.HttpError`.  Nothing is retried.
"""

from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableSequence, Optional, Sequence, Tuple

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from sheetstore.google_credentials import CredentialsFileInvalidError, load_service_account_payload
from sheetstore.local_workbook import LocalWorkbookService
from sheetstore.settings import MEMORY_WORKBOOK, StoreSettings

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = ("https://www.googleapis.com/auth/spreadsheets",)
VALUE_INPUT_OPTION = "RAW"

Rows = List[List[Any]]


class RenderMode(str, enum.Enum):
    """Value render options accepted by ``values.get``."""

    FORMATTED = "FORMATTED_VALUE"
    UNFORMATTED = "UNFORMATTED_VALUE"
    FORMULA = "FORMULA"


class SheetsClientError(RuntimeError):
    """Base error raised for Sheets API failures."""


class SheetsCredentialsError(SheetsClientError):
    """Raised when the provided credential file is invalid or missing."""


class SheetsApiResponseError(SheetsClientError):
    """Raised when the Google API returns an error response."""

    def __init__(self, message: str, *, status: int = 0) -> None:
        super().__init__(message)
        self.status = status


class WorksheetNotFoundError(SheetsClientError):
    """Raised when a tab title is not present in the spreadsheet."""


# ----------------------------------------------------------------------
# A1 helpers
# ----------------------------------------------------------------------
def quote_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if not safe:
        raise SheetsClientError("Worksheet title must not be empty.")
    if len(safe) >= 2 and safe[0] == safe[-1] and safe[0] in {"'", '"'}:
        safe = safe[1:-1].replace("''", "'")
    safe = safe.replace("'", "''")
    return f"'{safe}'"


def column_letter(index: int) -> str:
    """Convert a 1-based column index to its A1 column letters."""

    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def a1_range(title: str, cells: str) -> str:
    return f"{quote_title(title)}!{cells}"


def a1_full_range(title: str, *, columns: int) -> str:
    """Return an A1 range spanning all rows for ``columns`` columns."""

    return a1_range(title, f"A1:{column_letter(max(1, columns))}")


def a1_headers_range(title: str, *, columns: int) -> str:
    return a1_range(title, f"A1:{column_letter(max(1, columns))}1")


def a1_row_range(title: str, row_number: int, *, columns: int) -> str:
    """Return an A1 range covering the 1-based ``row_number``."""

    return a1_rows_range(title, row_number, row_number, columns=columns)


def a1_rows_range(title: str, first_row: int, last_row: int, *, columns: int) -> str:
    if first_row < 1 or last_row < first_row:
        raise ValueError(f"Invalid row span {first_row}..{last_row}")
    last_column = column_letter(max(1, columns))
    return a1_range(title, f"A{first_row}:{last_column}{last_row}")


def a1_column_range(title: str, column_index: int, *, first_row: int = 1) -> str:
    """Return an A1 range for one whole column (0-based ``column_index``)."""

    letter = column_letter(column_index + 1)
    return a1_range(title, f"{letter}{first_row}:{letter}")


def _http_status(exc: HttpError) -> int:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "resp", None), "status", 0)
    try:
        return int(status)
    except (TypeError, ValueError):
        return 0


# ----------------------------------------------------------------------
# Gateway
# ----------------------------------------------------------------------
class SheetsGateway:
    """Thin transport over the Sheets ``values`` and ``batchUpdate`` endpoints."""

    def __init__(self, service) -> None:
        self._service = service

    def _execute(self, request, description: str) -> Dict[str, Any]:
        try:
            result = request.execute()
        except HttpError as exc:
            status = _http_status(exc)
            logger.error("Sheets API %s failed (%s): %s", description, status, exc)
            raise SheetsApiResponseError(f"{description} failed: {exc}", status=status) from exc
        return result if isinstance(result, dict) else {}

    # -- reads ---------------------------------------------------------
    def get_range(
        self,
        spreadsheet_id: str,
        range_spec: str,
        render: RenderMode = RenderMode.UNFORMATTED,
    ) -> Rows:
        """Return the rows of ``range_spec``; trailing blank cells are omitted."""

        request = self._service.spreadsheets().values().get(
            spreadsheetId=spreadsheet_id,
            range=range_spec,
            majorDimension="ROWS",
            valueRenderOption=RenderMode(render).value,
            dateTimeRenderOption="SERIAL_NUMBER",
        )
        result = self._execute(request, "values.get")
        values = result.get("values", [])
        logger.debug("Read %d rows from %s", len(values), range_spec)
        return [list(row) for row in values]

    def list_tabs(self, spreadsheet_id: str) -> Dict[str, int]:
        """Return ``{title: numeric sheet id}`` for every tab."""

        request = self._service.spreadsheets().get(
            spreadsheetId=spreadsheet_id,
            fields="sheets.properties",
            includeGridData=False,
        )
        metadata = self._execute(request, "spreadsheets.get")
        tabs: Dict[str, int] = {}
        for sheet in metadata.get("sheets", []):
            properties = sheet.get("properties", {}) if isinstance(sheet, Mapping) else {}
            title = properties.get("title")
            sheet_id = properties.get("sheetId")
            if isinstance(title, str) and isinstance(sheet_id, int):
                tabs[title] = sheet_id
        return tabs

    def get_numeric_sheet_id(self, spreadsheet_id: str, title: str) -> int:
        """Resolve the numeric id of ``title``.

        Row deletes shift row offsets but never the numeric id, so callers
        resolve it per operation instead of assuming the first tab.
        """

        tabs = self.list_tabs(spreadsheet_id)
        if title not in tabs:
            raise WorksheetNotFoundError(f"Worksheet {title!r} not found in spreadsheet")
        return tabs[title]

    def health_check(self, spreadsheet_id: str) -> None:
        """Confirm the spreadsheet is reachable with the current credentials."""

        self.list_tabs(spreadsheet_id)

    # -- value writes --------------------------------------------------
    def append_rows(self, spreadsheet_id: str, range_spec: str, rows: Sequence[Sequence[Any]]) -> Dict[str, Any]:
        if not rows:
            return {}
        request = self._service.spreadsheets().values().append(
            spreadsheetId=spreadsheet_id,
            range=range_spec,
            valueInputOption=VALUE_INPUT_OPTION,
            insertDataOption="INSERT_ROWS",
            body={"values": [list(row) for row in rows]},
        )
        result = self._execute(request, "values.append")
        logger.debug("Appended %d rows to %s", len(rows), range_spec)
        return result

    def update_range(self, spreadsheet_id: str, range_spec: str, rows: Sequence[Sequence[Any]]) -> Dict[str, Any]:
        request = self._service.spreadsheets().values().update(
            spreadsheetId=spreadsheet_id,
            range=range_spec,
            valueInputOption=VALUE_INPUT_OPTION,
            body={"values": [list(row) for row in rows]},
        )
        return self._execute(request, "values.update")

    def batch_update_values(
        self,
        spreadsheet_id: str,
        updates: Sequence[Tuple[str, Sequence[Sequence[Any]]]],
    ) -> Dict[str, Any]:
        """Write several ranges in a single ``values.batchUpdate`` call."""

        if not updates:
            return {}
        data = [
            {"range": range_spec, "majorDimension": "ROWS", "values": [list(row) for row in rows]}
            for range_spec, rows in updates
        ]
        request = self._service.spreadsheets().values().batchUpdate(
            spreadsheetId=spreadsheet_id,
            body={"valueInputOption": VALUE_INPUT_OPTION, "data": data},
        )
        return self._execute(request, "values.batchUpdate")

    # -- structural writes ---------------------------------------------
    def _batch_update(self, spreadsheet_id: str, requests: List[Dict[str, Any]], description: str) -> Dict[str, Any]:
        request = self._service.spreadsheets().batchUpdate(
            spreadsheetId=spreadsheet_id,
            body={"requests": requests},
        )
        return self._execute(request, description)

    def delete_rows(self, spreadsheet_id: str, sheet_id: int, start_index: int, end_index: int) -> None:
        """Delete rows ``[start_index, end_index)`` (0-based, end exclusive)."""

        self.delete_row_spans(spreadsheet_id, sheet_id, [(start_index, end_index)])

    def delete_row_spans(
        self,
        spreadsheet_id: str,
        sheet_id: int,
        spans: Sequence[Tuple[int, int]],
    ) -> None:
        """Delete several row spans in one request.

        Spans are issued from the bottom of the sheet upwards so that earlier
        indices stay valid while the batch is applied.
        """

        ordered = sorted((span for span in spans if span[1] > span[0]), key=lambda span: span[0], reverse=True)
        if not ordered:
            return
        requests = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": start,
                        "endIndex": end,
                    }
                }
            }
            for start, end in ordered
        ]
        self._batch_update(spreadsheet_id, requests, "deleteDimension")
        logger.debug("Deleted row spans %s from sheet %s", ordered, sheet_id)

    def insert_rows(self, spreadsheet_id: str, sheet_id: int, start_index: int, end_index: int) -> None:
        """Insert blank rows ``[start_index, end_index)`` (0-based)."""

        if end_index <= start_index:
            return
        request = {
            "insertDimension": {
                "range": {
                    "sheetId": sheet_id,
                    "dimension": "ROWS",
                    "startIndex": start_index,
                    "endIndex": end_index,
                },
                "inheritFromBefore": False,
            }
        }
        self._batch_update(spreadsheet_id, [request], "insertDimension")

    def create_tab(self, spreadsheet_id: str, title: str, *, columns: int = 26) -> int:
        """Add a tab called ``title`` and return its numeric sheet id."""

        request = {
            "addSheet": {
                "properties": {
                    "title": title,
                    "gridProperties": {"rowCount": 1000, "columnCount": max(26, columns)},
                }
            }
        }
        result = self._batch_update(spreadsheet_id, [request], "addSheet")
        replies = result.get("replies") or [{}]
        properties = replies[0].get("addSheet", {}).get("properties", {})
        sheet_id = properties.get("sheetId")
        if not isinstance(sheet_id, int):
            sheet_id = self.get_numeric_sheet_id(spreadsheet_id, title)
        logger.info("Created worksheet %r (sheetId=%s)", title, sheet_id)
        return sheet_id


# ----------------------------------------------------------------------
# Factories
# ----------------------------------------------------------------------
def _build_service(credential_path: Optional[Path]):
    try:
        payload = load_service_account_payload(credential_path)
    except CredentialsFileInvalidError as exc:
        raise SheetsCredentialsError(str(exc)) from exc

    try:
        credentials = service_account.Credentials.from_service_account_info(payload, scopes=list(SCOPES))
    except ValueError as exc:
        raise SheetsCredentialsError(str(exc)) from exc

    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


def build_gateway(settings: StoreSettings, *, service=None) -> SheetsGateway:
    """Factory helper used by :mod:`sheetstore.workspace` to construct a gateway."""

    if service is not None:
        return SheetsGateway(service)

    if settings.uses_local_workbook():
        location = settings.workbook_path.strip()
        path = None if location == MEMORY_WORKBOOK else Path(location).expanduser()
        logger.info("Using local workbook backend at %s", path or "memory")
        return SheetsGateway(LocalWorkbookService(path))

    credential_path = Path(settings.credential_path).expanduser() if settings.credential_path else None
    return SheetsGateway(_build_service(credential_path))


__all__ = [
    "RenderMode",
    "SCOPES",
    "SheetsApiResponseError",
    "SheetsClientError",
    "SheetsCredentialsError",
    "SheetsGateway",
    "WorksheetNotFoundError",
    "a1_column_range",
    "a1_full_range",
    "a1_headers_range",
    "a1_range",
    "a1_row_range",
    "a1_rows_range",
    "build_gateway",
    "column_letter",
    "quote_title",
]
