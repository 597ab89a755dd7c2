"""Command line interface (``hatchery-import`` / ``python -m hatchery_import.cli``)."""

from .__main__ import main

__all__ = ["main"]
