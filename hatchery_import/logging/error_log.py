from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from ..models.error_record import UNKNOWN_ROW, ErrorRecord

"""Error log buffering.

- JSON Lines, fixed key set (see ErrorRecord)
- one file per run: ``<dir>/errors-YYYYMMDD-HHMMSS.log`` (UTC), created lazily
- records are buffered and appended on flush()
"""

__all__ = [
    "ErrorRecord",
    "ErrorLogBuffer",
]

LOGS_DIR = Path("./logs")
TIMESTAMP_FMT = "%Y%m%d-%H%M%S"


class ErrorLogBuffer:
    """In-memory buffer for error records. Flush writes JSON Lines.

    The file path is decided on first access; nothing is written until a
    record has been appended. Not thread safe (sheets run sequentially).
    """
    def __init__(self, directory: Path | str | None = None, *, file_name: str = "") -> None:
        self._directory = Path(directory) if directory is not None else LOGS_DIR
        self._records: list[ErrorRecord] = []
        self._file_path: Path | None = None
        self._written = 0
        self.file_name = file_name  # workbook name stamped on records

    @property
    def file_path(self) -> Path:
        if self._file_path is None:
            self._directory.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now(UTC).strftime(TIMESTAMP_FMT)
            self._file_path = self._directory / f"errors-{stamp}.log"
        return self._file_path

    @property
    def written(self) -> int:
        """Number of records flushed so far."""
        return self._written

    def append(self, record: ErrorRecord) -> None:
        self._records.append(record)

    def record(self, sheet: str, row: int | None, error_type: str, message: str) -> None:
        """Append a record for the current workbook."""
        self.append(ErrorRecord.create(self.file_name, sheet, UNKNOWN_ROW if row is None else row, error_type, message))

    def __len__(self) -> int:
        return len(self._records)

    def flush(self) -> Path | None:
        """Append buffered records; returns the file path, or None when nothing was ever logged."""
        if not self._records:
            return self._file_path
        fp = self.file_path
        with fp.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._written += len(self._records)
        self._records.clear()
        return fp
