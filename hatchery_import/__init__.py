"""Hatchery workbook bulk import: parse -> validate -> import."""

__version__ = "0.1.0"
