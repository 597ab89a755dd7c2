from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""RowData model for the hatchery workbook importer.

RowData represents a single data row of a sheet after header mapping and
cell normalization.
"""

__all__ = [
    "RowData",
]


@dataclass(frozen=True)
class RowData:
    """Logical representation of a single row after normalization.

    ``row_number`` is the 1-based position of the row beneath the header in
    the original sheet. Blank rows are dropped by the parser but still use up
    a number, so issues and errors point at the operator's own row.
    ``sheet_row`` is the absolute 1-based worksheet row (header included).
    """
    row_number: int
    values: dict[str, Any]  # canonical field name -> normalized value
    sheet_row: int | None = None
    raw_values: dict[str, Any] | None = None  # original cell values, keyed like values

    def get(self, field: str, default: Any = None) -> Any:
        return self.values.get(field, default)
