"""Centralised helpers for managing SheetStore data directories."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

_APP_ENV_VARS: Iterable[str] = ("SHEETSTORE_HOME", "LOCALAPPDATA", "APPDATA")


def _detect_base_directory() -> Path:
    for env_var in _APP_ENV_VARS:
        value = os.environ.get(env_var)
        if not value:
            continue
        base = Path(value).expanduser().resolve()
        if env_var == "SHEETSTORE_HOME":
            return base
        return base / "SheetStore"
    return Path.home().resolve() / ".sheetstore"


APP_DIR: Path = _detect_base_directory()
LOG_DIR: Path = APP_DIR / "logs"
CREDENTIALS_DIR: Path = APP_DIR / "credentials"
WORKBOOK_DIR: Path = APP_DIR / "workbooks"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_app_structure() -> None:
    """Create the base directories required for application data."""

    for directory in (APP_DIR, LOG_DIR, CREDENTIALS_DIR, WORKBOOK_DIR):
        ensure_directory(directory)


def data_path(*parts: str) -> Path:
    """Return a path rooted inside :data:`APP_DIR`, creating parent directories."""

    ensure_app_structure()
    target = APP_DIR.joinpath(*parts)
    if not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    return target


def logs_path(*parts: str) -> Path:
    """Return a path inside :data:`LOG_DIR`."""

    ensure_directory(LOG_DIR)
    return LOG_DIR.joinpath(*parts)


def credentials_path(*parts: str) -> Path:
    """Return a path inside :data:`CREDENTIALS_DIR`."""

    ensure_directory(CREDENTIALS_DIR)
    return CREDENTIALS_DIR.joinpath(*parts)


def workbook_path(*parts: str) -> Path:
    """Return a path inside :data:`WORKBOOK_DIR` for local workbook files."""

    ensure_directory(WORKBOOK_DIR)
    return WORKBOOK_DIR.joinpath(*parts)


__all__ = [
    "APP_DIR",
    "LOG_DIR",
    "CREDENTIALS_DIR",
    "WORKBOOK_DIR",
    "credentials_path",
    "data_path",
    "ensure_app_structure",
    "ensure_directory",
    "logs_path",
    "workbook_path",
]
