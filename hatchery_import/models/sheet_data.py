from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from .record_type import RecordType
from .row_data import RowData

"""SheetData / DateContext models produced by the workbook parser."""

__all__ = [
    "DateContext",
    "SheetData",
]


@dataclass(frozen=True)
class DateContext:
    """Anchor dates found in the title rows of a sheet."""
    set_date: date | None = None
    candle_date: date | None = None
    hatch_date: date | None = None

    def get(self, anchor: str) -> date | None:
        return getattr(self, anchor, None)

    def is_empty(self) -> bool:
        return self.set_date is None and self.candle_date is None and self.hatch_date is None


@dataclass(frozen=True)
class SheetData:
    """One parsed sheet. Immutable once returned by the parser.

    ``record_type`` is None when no schema matched (or the best match was a
    tie); such sheets are shown to the operator but never validated or
    imported.
    """
    sheet_name: str
    record_type: RecordType | None
    rows: tuple[RowData, ...]
    columns: tuple[str, ...] = ()  # mapped column keys in sheet order
    header_row: int = 1  # 1-based worksheet row of the header
    date_context: DateContext = field(default_factory=DateContext)
    match_score: float = 0.0

    @property
    def is_classified(self) -> bool:
        return self.record_type is not None

    def __len__(self) -> int:
        return len(self.rows)
