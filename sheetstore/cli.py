"""Command line helper for inspecting and preparing the store."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from sheetstore import app_paths
from sheetstore.errors import StoreError
from sheetstore.logging_config import configure_logging
from sheetstore.settings import MEMORY_WORKBOOK, load_store_settings
from sheetstore.sheets_client import SheetsClientError
from sheetstore.tables import TABLES
from sheetstore.workspace import Workspace, open_workspace

FAILURES = (StoreError, SheetsClientError, KeyError, ValueError)


def _resolve_workbook(value: str) -> str:
    if value == MEMORY_WORKBOOK:
        return value
    path = Path(value).expanduser()
    if path.parent == Path("."):
        path = app_paths.workbook_path(path.name)
    return str(path)


def _open(args: argparse.Namespace) -> Workspace:
    settings = load_store_settings(args.settings)
    if args.workbook:
        settings.workbook_path = _resolve_workbook(args.workbook)
    return open_workspace(settings)


def command_tables(args: argparse.Namespace) -> int:
    for definition in TABLES.values():
        kind = f"grouped by {definition.layout.group_column}" if definition.layout else "rows"
        print(f"{definition.name:<28} {definition.feature:<11} {definition.title!r:<30} {len(definition.schema):>3} columns, {kind}")
    return 0


def command_init(args: argparse.Namespace) -> int:
    try:
        workspace = _open(args)
        header_maps = workspace.initialise(args.tables or None)
    except FAILURES as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    for name, header_map in header_maps.items():
        print(f"{name}: {header_map.width} columns")
    return 0


def command_dump(args: argparse.Namespace) -> int:
    try:
        workspace = _open(args)
        if args.groups:
            payload = [entity.to_json() for entity in workspace.groups(args.table).list_groups()]
        else:
            payload = workspace.list(args.table)
    except FAILURES as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        return 0
    for entry in payload:
        print(", ".join(f"{key}={value}" for key, value in entry.items() if value not in (None, "")))
    print(f"{len(payload)} entr{'y' if len(payload) == 1 else 'ies'}")
    return 0


def command_health(args: argparse.Namespace) -> int:
    try:
        results = _open(args).health_check()
    except FAILURES as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    for feature, status in results.items():
        print(f"{feature:<11} {status}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SheetStore maintenance tool")
    parser.add_argument("--settings", help="Path to the settings JSON file")
    parser.add_argument(
        "--workbook",
        help=f"Use a local workbook file instead of Google Sheets ({MEMORY_WORKBOOK} keeps it in memory)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every range read")
    subparsers = parser.add_subparsers(dest="command", required=True)

    tables_parser = subparsers.add_parser("tables", help="List the catalogued tables")
    tables_parser.set_defaults(func=command_tables)

    init_parser = subparsers.add_parser("init", help="Create missing tabs and headers")
    init_parser.add_argument("tables", nargs="*", help="Tables to prepare (default: all)")
    init_parser.set_defaults(func=command_init)

    dump_parser = subparsers.add_parser("dump", help="Print the records of a table")
    dump_parser.add_argument("table", help="Table name, see 'tables'")
    dump_parser.add_argument("--json", action="store_true", help="Print JSON instead of one line per record")
    dump_parser.add_argument("--groups", action="store_true", help="Print grouped entities for grouped tables")
    dump_parser.set_defaults(func=command_dump)

    health_parser = subparsers.add_parser("health", help="Check that every configured spreadsheet is reachable")
    health_parser.set_defaults(func=command_health)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
