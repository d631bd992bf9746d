"""Spreadsheet-backed record store used by the operations desk application."""

__version__ = "1.4.0"
