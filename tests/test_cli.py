from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sheetstore import cli
from sheetstore.settings import StoreSettings
from sheetstore.workspace import open_workspace


@pytest.fixture
def paths(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda level: tmp_path / "sheetstore.log")
    return tmp_path / "store_settings.json", tmp_path / "workbook.json"


def _run(settings_path: Path, workbook: Path, *argv: str) -> int:
    return cli.main(["--settings", str(settings_path), "--workbook", str(workbook), *argv])


def test_tables_lists_the_catalogue(paths, capsys) -> None:
    settings_path, workbook = paths

    assert _run(settings_path, workbook, "tables") == 0

    output = capsys.readouterr().out
    assert "o2d" in output
    assert "grouped by party_id" in output


def test_init_creates_tabs(paths, capsys) -> None:
    settings_path, workbook = paths

    assert _run(settings_path, workbook, "init", "todos", "users") == 0

    output = capsys.readouterr().out
    assert "todos:" in output
    assert "users:" in output
    assert workbook.exists()


def test_dump_prints_records(paths, capsys) -> None:
    settings_path, workbook = paths
    workspace = open_workspace(StoreSettings(workbook_path=str(workbook)))
    workspace.records("todos").create({"title": "Call supplier", "status": "open"})

    assert _run(settings_path, workbook, "dump", "todos") == 0
    output = capsys.readouterr().out
    assert "title=Call supplier" in output
    assert output.strip().endswith("1 entry")

    assert _run(settings_path, workbook, "dump", "todos", "--json") == 0
    records = json.loads(capsys.readouterr().out)
    assert [record["title"] for record in records] == ["Call supplier"]


def test_dump_groups(paths, capsys) -> None:
    settings_path, workbook = paths
    workspace = open_workspace(StoreSettings(workbook_path=str(workbook)))
    workspace.groups("o2d").create_group({"party_name": "Acme"}, [{"item": "Bolt", "qty": 2}])

    assert _run(settings_path, workbook, "dump", "o2d", "--groups", "--json") == 0

    groups = json.loads(capsys.readouterr().out)
    assert groups[0]["party_name"] == "Acme"
    assert groups[0]["items"][0]["item"] == "Bolt"


def test_unknown_table_is_an_error(paths, capsys) -> None:
    settings_path, workbook = paths

    assert _run(settings_path, workbook, "dump", "nope") == 1
    assert "Unknown table" in capsys.readouterr().err


def test_health_reports_each_feature(paths, capsys) -> None:
    settings_path, workbook = paths

    assert _run(settings_path, workbook, "health") == 0

    output = capsys.readouterr().out
    assert "o2d" in output
    assert "ok" in output
