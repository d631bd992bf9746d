"""Entry point wiring settings, gateway and engines together."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from sheetstore.cache import TTLCache
from sheetstore.dates import get_zone
from sheetstore.groups import GroupStore
from sheetstore.ids import IdAllocator
from sheetstore.records import RecordStore
from sheetstore.schema import HeaderMap, SchemaManager, TableRef
from sheetstore.settings import StoreSettings, load_store_settings
from sheetstore.sheets_client import SheetsGateway, build_gateway
from sheetstore.tables import TABLES, TableDefinition, get_table

logger = logging.getLogger(__name__)


class Workspace:
    """Engines for every catalogued table, sharing one gateway.

    Writers to the same table inside this process are serialised by a
    per-table lock; other processes writing to the same spreadsheet are not.
    """

    def __init__(
        self,
        gateway: SheetsGateway,
        settings: Optional[StoreSettings] = None,
        *,
        tables: Optional[Dict[str, TableDefinition]] = None,
    ) -> None:
        self.settings = settings or StoreSettings()
        self.gateway = gateway
        self.tz = get_zone(self.settings.timezone)
        self.schema_manager = SchemaManager(gateway)
        self.allocator = IdAllocator(gateway)
        self.cache = TTLCache(self.settings.cache_ttl_seconds)
        self.tables = dict(tables if tables is not None else TABLES)
        self._locks: Dict[str, threading.RLock] = {}
        self._records: Dict[str, RecordStore] = {}
        self._groups: Dict[str, GroupStore] = {}
        self._guard = threading.Lock()

    def definition(self, name: str) -> TableDefinition:
        if name in self.tables:
            return self.tables[name]
        return get_table(name)

    def table_ref(self, name: str) -> TableRef:
        definition = self.definition(name)
        return TableRef(self.settings.spreadsheet_id(definition.feature), definition.title)

    def _lock_for(self, ref: TableRef) -> threading.RLock:
        key = f"{ref.spreadsheet_id}:{ref.title}"
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    def records(self, name: str) -> RecordStore:
        """Return the single-row engine for table ``name``."""

        with self._guard:
            store = self._records.get(name)
        if store is not None:
            return store

        definition = self.definition(name)
        ref = self.table_ref(name)
        store = RecordStore(
            self.gateway,
            self.schema_manager,
            self.allocator,
            ref,
            definition.schema,
            tz=self.tz,
            cache=self.cache,
            lock=self._lock_for(ref),
            name=definition.name,
        )
        with self._guard:
            return self._records.setdefault(name, store)

    def groups(self, name: str) -> GroupStore:
        """Return the grouped-entity engine for table ``name``."""

        definition = self.definition(name)
        if definition.layout is None:
            raise ValueError(f"Table {name!r} does not store grouped entities")
        with self._guard:
            store = self._groups.get(name)
        if store is not None:
            return store
        store = GroupStore(self.records(name), definition.layout)
        with self._guard:
            return self._groups.setdefault(name, store)

    def list(self, name: str, where=None) -> List[dict]:
        """Records of ``name`` in the table's domain order."""

        return self.definition(name).order(self.records(name).list(where))

    def initialise(self, names: Optional[List[str]] = None) -> Dict[str, HeaderMap]:
        """Create or migrate the tabs of ``names`` (default: every table)."""

        header_maps: Dict[str, HeaderMap] = {}
        for name in names or list(self.tables):
            header_maps[name] = self.records(name).open()
            logger.info("Table %s ready with %d columns", name, header_maps[name].width)
        return header_maps

    def health_check(self) -> Dict[str, str]:
        """Probe every configured spreadsheet once; return ``{feature: status}``."""

        results: Dict[str, str] = {}
        for feature in sorted({definition.feature for definition in self.tables.values()}):
            try:
                spreadsheet_id = self.settings.spreadsheet_id(feature)
            except KeyError:
                results[feature] = "not configured"
                continue
            self.gateway.health_check(spreadsheet_id)
            results[feature] = "ok"
        return results


def open_workspace(settings: Optional[StoreSettings] = None, *, service=None) -> Workspace:
    """Build a :class:`Workspace` from ``settings`` (loaded from disk when omitted)."""

    settings = settings or load_store_settings()
    return Workspace(build_gateway(settings, service=service), settings)


__all__ = ["Workspace", "open_workspace"]
