from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the JSON-lines error log.

Fixed key set: timestamp, file, sheet, row, error_type, message.
``row`` is the data row number, or -1 for sheet / file level failures.
"""

__all__ = [
    "ErrorRecord",
]

UNKNOWN_ROW = -1


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        file: workbook file name
        sheet: sheet name within the workbook ("" for file level errors)
        row: data row number (1-based), -1 when not tied to a row
        error_type: classification in UPPER_SNAKE_CASE (e.g. DUPLICATE_RECORD)
        message: human readable description
    """
    timestamp: str
    file: str
    sheet: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(file: str, sheet: str, row: int, error_type: str, message: str) -> ErrorRecord:
        """Create a record stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            file=file,
            sheet=sheet,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
