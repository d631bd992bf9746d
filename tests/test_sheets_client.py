from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List

import httplib2
import pytest
from googleapiclient.errors import HttpError

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetstore import sheets_client
from sheetstore.local_workbook import LocalWorkbookService
from sheetstore.settings import MEMORY_WORKBOOK, StoreSettings
from sheetstore.sheets_client import (
    RenderMode,
    SheetsApiResponseError,
    SheetsGateway,
    WorksheetNotFoundError,
)


class _FakeRequest:
    def __init__(self, callback):
        self._callback = callback

    def execute(self):
        return self._callback()


class _FakeValues:
    def __init__(self, service: "_FakeService") -> None:
        self._service = service

    def get(self, **kwargs):  # noqa: D401 - API compatibility
        self._service.calls.append(("values.get", kwargs))
        return _FakeRequest(lambda: {"values": self._service.values})

    def append(self, **kwargs):
        self._service.calls.append(("values.append", kwargs))
        return _FakeRequest(lambda: {"updates": {"updatedRows": len(kwargs["body"]["values"])}})

    def update(self, **kwargs):
        self._service.calls.append(("values.update", kwargs))
        return _FakeRequest(lambda: {})

    def batchUpdate(self, **kwargs):  # noqa: N802 - API compatibility
        self._service.calls.append(("values.batchUpdate", kwargs))
        return _FakeRequest(lambda: {})


class _FakeSpreadsheets:
    def __init__(self, service: "_FakeService") -> None:
        self._service = service

    def values(self) -> _FakeValues:  # noqa: D401 - API compatibility
        return _FakeValues(self._service)

    def get(self, **kwargs):
        self._service.calls.append(("get", kwargs))
        return _FakeRequest(lambda: {"sheets": self._service.sheets})

    def batchUpdate(self, **kwargs):  # noqa: N802 - API compatibility
        self._service.calls.append(("batchUpdate", kwargs))
        return _FakeRequest(self._service.batch_result)


class _FakeService:
    def __init__(self) -> None:
        self.calls: List[tuple[str, Dict[str, Any]]] = []
        self.values: List[List[Any]] = []
        self.sheets: List[Dict[str, Any]] = [
            {"properties": {"title": "Orders", "sheetId": 0}},
            {"properties": {"title": "O'Brien log", "sheetId": 1742}},
        ]
        self.reply: Dict[str, Any] = {}
        self.error: HttpError | None = None

    def spreadsheets(self) -> _FakeSpreadsheets:  # noqa: D401 - API compatibility
        return _FakeSpreadsheets(self)

    def batch_result(self) -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        return self.reply


def _http_error(status: int, message: str) -> HttpError:
    return HttpError(httplib2.Response({"status": str(status)}), message.encode("utf-8"))


def test_quote_title_doubles_embedded_quotes() -> None:
    assert sheets_client.quote_title("Orders") == "'Orders'"
    assert sheets_client.quote_title("Bob's tab") == "'Bob''s tab'"
    assert sheets_client.quote_title("'Already quoted'") == "'Already quoted'"
    with pytest.raises(sheets_client.SheetsClientError):
        sheets_client.quote_title("  ")


def test_column_letters_and_ranges() -> None:
    assert sheets_client.column_letter(1) == "A"
    assert sheets_client.column_letter(26) == "Z"
    assert sheets_client.column_letter(27) == "AA"
    assert sheets_client.column_letter(703) == "AAA"
    assert sheets_client.a1_full_range("Orders", columns=15) == "'Orders'!A1:O"
    assert sheets_client.a1_headers_range("Orders", columns=3) == "'Orders'!A1:C1"
    assert sheets_client.a1_row_range("Orders", 7, columns=2) == "'Orders'!A7:B7"
    assert sheets_client.a1_rows_range("Orders", 2, 4, columns=28) == "'Orders'!A2:AB4"
    assert sheets_client.a1_column_range("Orders", 0, first_row=2) == "'Orders'!A2:A"
    with pytest.raises(ValueError):
        sheets_client.a1_rows_range("Orders", 5, 4, columns=2)


def test_get_range_requests_unformatted_serial_values() -> None:
    service = _FakeService()
    service.values = [["id", "name"], [1, "Bolt"]]
    gateway = SheetsGateway(service)

    rows = gateway.get_range("sheet-1", "'Orders'!A1:B")

    assert rows == [["id", "name"], [1, "Bolt"]]
    _, kwargs = service.calls[0]
    assert kwargs["valueRenderOption"] == "UNFORMATTED_VALUE"
    assert kwargs["dateTimeRenderOption"] == "SERIAL_NUMBER"
    assert kwargs["majorDimension"] == "ROWS"

    gateway.get_range("sheet-1", "'Orders'!1:1", RenderMode.FORMATTED)
    assert service.calls[-1][1]["valueRenderOption"] == "FORMATTED_VALUE"


def test_writes_use_raw_input() -> None:
    service = _FakeService()
    gateway = SheetsGateway(service)

    gateway.append_rows("sheet-1", "'Orders'!A1:B", [[1, "01/03/2024 09:00:00"]])
    gateway.update_range("sheet-1", "'Orders'!A2:B2", [[1, "x"]])
    gateway.batch_update_values("sheet-1", [("'Orders'!A2:B2", [[1, "x"]]), ("'Orders'!A3:B3", [[2, "y"]])])

    append_kwargs = service.calls[0][1]
    assert append_kwargs["valueInputOption"] == "RAW"
    assert append_kwargs["insertDataOption"] == "INSERT_ROWS"
    assert service.calls[1][1]["valueInputOption"] == "RAW"
    batch_body = service.calls[2][1]["body"]
    assert batch_body["valueInputOption"] == "RAW"
    assert [entry["range"] for entry in batch_body["data"]] == ["'Orders'!A2:B2", "'Orders'!A3:B3"]


def test_empty_writes_are_skipped() -> None:
    service = _FakeService()
    gateway = SheetsGateway(service)

    gateway.append_rows("sheet-1", "'Orders'!A1:B", [])
    gateway.batch_update_values("sheet-1", [])
    gateway.delete_row_spans("sheet-1", 0, [(4, 4)])
    gateway.insert_rows("sheet-1", 0, 3, 3)

    assert service.calls == []


def test_delete_row_spans_issue_descending_requests_in_one_call() -> None:
    service = _FakeService()
    gateway = SheetsGateway(service)

    gateway.delete_row_spans("sheet-1", 1742, [(1, 3), (7, 8), (4, 5)])

    assert len(service.calls) == 1
    requests = service.calls[0][1]["body"]["requests"]
    starts = [request["deleteDimension"]["range"]["startIndex"] for request in requests]
    assert starts == [7, 4, 1]
    assert all(request["deleteDimension"]["range"]["sheetId"] == 1742 for request in requests)


def test_insert_rows_does_not_inherit_formatting() -> None:
    service = _FakeService()
    gateway = SheetsGateway(service)

    gateway.insert_rows("sheet-1", 0, 2, 5)

    request = service.calls[0][1]["body"]["requests"][0]["insertDimension"]
    assert request["range"] == {"sheetId": 0, "dimension": "ROWS", "startIndex": 2, "endIndex": 5}
    assert request["inheritFromBefore"] is False


def test_numeric_sheet_id_is_resolved_by_title() -> None:
    gateway = SheetsGateway(_FakeService())

    assert gateway.list_tabs("sheet-1") == {"Orders": 0, "O'Brien log": 1742}
    assert gateway.get_numeric_sheet_id("sheet-1", "O'Brien log") == 1742
    with pytest.raises(WorksheetNotFoundError):
        gateway.get_numeric_sheet_id("sheet-1", "Missing")


def test_create_tab_returns_sheet_id_from_reply() -> None:
    service = _FakeService()
    service.reply = {"replies": [{"addSheet": {"properties": {"title": "New", "sheetId": 99}}}]}
    gateway = SheetsGateway(service)

    assert gateway.create_tab("sheet-1", "New", columns=40) == 99
    properties = service.calls[0][1]["body"]["requests"][0]["addSheet"]["properties"]
    assert properties["title"] == "New"
    assert properties["gridProperties"]["columnCount"] == 40


def test_http_errors_are_wrapped_with_status() -> None:
    service = _FakeService()
    service.error = _http_error(403, "The caller does not have permission")
    gateway = SheetsGateway(service)

    with pytest.raises(SheetsApiResponseError) as excinfo:
        gateway.insert_rows("sheet-1", 0, 1, 2)

    assert excinfo.value.status == 403
    assert isinstance(excinfo.value.__cause__, HttpError)


def test_build_gateway_prefers_injected_service() -> None:
    service = _FakeService()

    gateway = sheets_client.build_gateway(StoreSettings(workbook_path=""), service=service)
    gateway.health_check("sheet-1")

    assert service.calls[0][0] == "get"


def test_build_gateway_uses_memory_workbook() -> None:
    gateway = sheets_client.build_gateway(StoreSettings(workbook_path=MEMORY_WORKBOOK))

    assert isinstance(gateway._service, LocalWorkbookService)
    assert gateway.list_tabs("anything") == {}


def test_build_gateway_reports_missing_credentials(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("SHEETSTORE_SERVICE_ACCOUNT_JSON", raising=False)
    settings = StoreSettings(credential_path=str(tmp_path / "absent.json"), workbook_path="")

    with pytest.raises(sheets_client.SheetsCredentialsError):
        sheets_client.build_gateway(settings)
