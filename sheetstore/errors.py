"""Exception hierarchy raised by the store engines.

Transport failures are reported by :mod:`sheetstore.sheets_client` through
:class:`~sheetstore.sheets_client.SheetsClientError` and its subclasses; the
classes below cover the failures detected by the store itself.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base error raised when a store operation cannot be completed."""


class RecordNotFoundError(StoreError):
    """Raised when a key scan finishes without a matching row."""

    def __init__(self, table: str, key: object, *, column: str = "id") -> None:
        super().__init__(f"No row with {column}={key!r} in table {table!r}")
        self.table = table
        self.key = key
        self.column = column


class SchemaError(StoreError):
    """Raised when a header expected by the codec is absent or unknown."""


class ValidationError(StoreError):
    """Raised when caller supplied data cannot be written."""


__all__ = ["RecordNotFoundError", "SchemaError", "StoreError", "ValidationError"]
