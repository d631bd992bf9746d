from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetstore import settings as settings_module
from sheetstore.settings import (
    MEMORY_WORKBOOK,
    StoreSettings,
    load_store_settings,
    parse_spreadsheet_id,
    save_store_settings,
)


@pytest.fixture(autouse=True)
def _clear_environment(monkeypatch) -> None:
    for feature in settings_module.DEFAULT_SPREADSHEET_IDS:
        monkeypatch.delenv(f"SHEETSTORE_SPREADSHEET_{feature.upper()}", raising=False)


def test_parse_spreadsheet_id_accepts_urls() -> None:
    url = "https://docs.google.com/spreadsheets/d/1AbCdEf/edit#gid=0"

    assert parse_spreadsheet_id(url) == "1AbCdEf"
    assert parse_spreadsheet_id("  1AbCdEf?usp=sharing ") == "1AbCdEf"
    assert parse_spreadsheet_id("") == ""


def test_missing_file_is_created_with_defaults(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "store_settings.json"

    loaded = load_store_settings(str(path))

    assert path.exists()
    assert loaded.cache_ttl_seconds == settings_module.DEFAULT_CACHE_TTL_SECONDS
    assert set(json.loads(path.read_text(encoding="utf-8"))["spreadsheet_ids"]) == set(
        settings_module.DEFAULT_SPREADSHEET_IDS
    )


def test_values_are_merged_over_defaults(tmp_path: Path) -> None:
    path = tmp_path / "store_settings.json"
    path.write_text(
        json.dumps(
            {
                "timezone": "Asia/Kolkata",
                "cache_ttl_seconds": 5000,
                "spreadsheet_ids": {"o2d": "https://docs.google.com/spreadsheets/d/sheet-o2d/edit", "todos": 7},
                "unknown": "ignored",
            }
        ),
        encoding="utf-8",
    )

    loaded = load_store_settings(str(path))

    assert loaded.timezone == "Asia/Kolkata"
    assert loaded.cache_ttl_seconds == 600
    assert loaded.spreadsheet_ids["o2d"] == "sheet-o2d"
    assert loaded.spreadsheet_ids["todos"] == ""
    assert loaded.spreadsheet_id("o2d") == "sheet-o2d"


def test_malformed_ttl_falls_back_to_default(tmp_path: Path) -> None:
    path = tmp_path / "store_settings.json"
    path.write_text(json.dumps({"cache_ttl_seconds": "soon"}), encoding="utf-8")

    assert load_store_settings(str(path)).cache_ttl_seconds == settings_module.DEFAULT_CACHE_TTL_SECONDS


def test_environment_overrides_spreadsheet_ids(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SHEETSTORE_SPREADSHEET_CHAT", "https://docs.google.com/spreadsheets/d/chat-book/edit")

    loaded = load_store_settings(str(tmp_path / "store_settings.json"))

    assert loaded.spreadsheet_id("chat") == "chat-book"


def test_unconfigured_feature_raises_key_error() -> None:
    with pytest.raises(KeyError):
        StoreSettings(workbook_path="").spreadsheet_id("users")


def test_local_workbook_uses_feature_names() -> None:
    local = StoreSettings(workbook_path=MEMORY_WORKBOOK)

    assert local.uses_local_workbook()
    assert local.spreadsheet_id("users") == "users"


def test_save_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "store_settings.json"
    original = StoreSettings(timezone="Europe/Berlin", cache_ttl_seconds=0, workbook_path="")
    original.spreadsheet_ids["helpdesk"] = "help-book"

    save_store_settings(original, str(path))
    loaded = load_store_settings(str(path))

    assert loaded.timezone == "Europe/Berlin"
    assert loaded.cache_ttl_seconds == 0
    assert loaded.spreadsheet_ids["helpdesk"] == "help-book"
