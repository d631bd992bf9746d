"""Application configuration helpers for SheetStore."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from sheetstore import app_paths

logger = logging.getLogger(__name__)


DEFAULT_SETTINGS_PATH = os.getenv(
    "SHEETSTORE_SETTINGS_PATH",
    str(app_paths.data_path("store_settings.json")),
)
DEFAULT_CREDENTIALS_PATH = os.getenv(
    "SHEETSTORE_CREDENTIALS_PATH",
    str(app_paths.credentials_path("service_account.json")),
)
DEFAULT_TIMEZONE = os.getenv("SHEETSTORE_TIMEZONE", "UTC")
DEFAULT_WORKBOOK = os.getenv("SHEETSTORE_WORKBOOK", "")
DEFAULT_CACHE_TTL_SECONDS = 30

# Feature name -> spreadsheet id. Each feature keeps its tabs in one workbook.
DEFAULT_SPREADSHEET_IDS: Dict[str, str] = {
    "delegation": "",
    "users": "",
    "todos": "",
    "helpdesk": "",
    "checklists": "",
    "chat": "",
    "o2d": "",
}

# Sentinel accepted in place of a workbook path: keep every tab in memory.
MEMORY_WORKBOOK = ":memory:"


@dataclass
class StoreSettings:
    """Connection and behaviour settings for the spreadsheet store."""

    credential_path: str = DEFAULT_CREDENTIALS_PATH
    timezone: str = DEFAULT_TIMEZONE
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    workbook_path: str = DEFAULT_WORKBOOK
    spreadsheet_ids: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SPREADSHEET_IDS))

    def spreadsheet_id(self, feature: str) -> str:
        """Return the workbook id configured for ``feature``.

        When a local workbook is configured every feature shares it, so the
        feature name itself is used as the spreadsheet id.
        """

        if self.uses_local_workbook():
            return self.spreadsheet_ids.get(feature) or feature
        value = (self.spreadsheet_ids.get(feature) or "").strip()
        if not value:
            raise KeyError(f"No spreadsheet id configured for feature {feature!r}")
        return value

    def uses_local_workbook(self) -> bool:
        return bool(self.workbook_path.strip())

    def to_json(self) -> Dict[str, object]:
        return {
            "credential_path": self.credential_path,
            "timezone": self.timezone,
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "workbook_path": self.workbook_path,
            "spreadsheet_ids": dict(self.spreadsheet_ids),
        }


def parse_spreadsheet_id(value: str) -> str:
    """Normalise a spreadsheet identifier from raw input or URL."""

    if not value:
        return ""
    value = value.strip()
    if "/spreadsheets/d/" in value:
        value = value.split("/spreadsheets/d/", 1)[1]
        value = value.split("/", 1)[0]
    if "?" in value:
        value = value.split("?", 1)[0]
    if "#" in value:
        value = value.split("#", 1)[0]
    return value


def _default_payload() -> Dict[str, object]:
    return StoreSettings().to_json()


def _ensure_settings_file(path: str) -> Dict[str, object]:
    defaults = _default_payload()
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(defaults, handle, indent=2)
        logger.info("Created default store settings at %s", path)
        return json.loads(json.dumps(defaults))

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)

    merged: Dict[str, object] = dict(defaults)
    if not isinstance(data, Mapping):
        logger.warning("Ignoring malformed settings file %s", path)
        return merged

    for key, value in data.items():
        if key == "spreadsheet_ids" and isinstance(value, Mapping):
            ids = dict(DEFAULT_SPREADSHEET_IDS)
            for feature, raw_id in value.items():
                if isinstance(feature, str) and isinstance(raw_id, str):
                    ids[feature] = parse_spreadsheet_id(raw_id)
            merged[key] = ids
        elif key == "cache_ttl_seconds":
            try:
                merged[key] = max(0, min(600, int(value)))
            except (TypeError, ValueError):
                merged[key] = defaults[key]
        elif key in defaults and isinstance(value, str):
            merged[key] = value
    return merged


def _apply_environment(settings: StoreSettings) -> StoreSettings:
    for feature in list(settings.spreadsheet_ids):
        override = os.environ.get(f"SHEETSTORE_SPREADSHEET_{feature.upper()}")
        if override:
            settings.spreadsheet_ids[feature] = parse_spreadsheet_id(override)
    return settings


def load_store_settings(path: Optional[str] = None) -> StoreSettings:
    """Load :class:`StoreSettings` from ``path``, creating it with defaults."""

    data = _ensure_settings_file(path or DEFAULT_SETTINGS_PATH)
    spreadsheet_ids = data.get("spreadsheet_ids")
    settings = StoreSettings(
        credential_path=str(data.get("credential_path") or DEFAULT_CREDENTIALS_PATH),
        timezone=str(data.get("timezone") or DEFAULT_TIMEZONE),
        cache_ttl_seconds=int(data.get("cache_ttl_seconds", DEFAULT_CACHE_TTL_SECONDS)),
        workbook_path=str(data.get("workbook_path") or DEFAULT_WORKBOOK),
        spreadsheet_ids=dict(spreadsheet_ids) if isinstance(spreadsheet_ids, Mapping) else dict(DEFAULT_SPREADSHEET_IDS),
    )
    return _apply_environment(settings)


def save_store_settings(settings: StoreSettings, path: Optional[str] = None) -> None:
    target = path or DEFAULT_SETTINGS_PATH
    directory = os.path.dirname(target)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(target, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "DEFAULT_CACHE_TTL_SECONDS",
    "DEFAULT_CREDENTIALS_PATH",
    "DEFAULT_SETTINGS_PATH",
    "DEFAULT_SPREADSHEET_IDS",
    "DEFAULT_TIMEZONE",
    "MEMORY_WORKBOOK",
    "StoreSettings",
    "load_store_settings",
    "parse_spreadsheet_id",
    "save_store_settings",
]
