from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, BinaryIO

import pandas as pd
from openpyxl import load_workbook

from ..models.record_schema import RecordSchema, get_schemas
from ..models.record_type import RecordType
from ..models.row_data import RowData
from ..models.sheet_data import DateContext, SheetData
from .cells import coerce_cell, find_date_text, is_blank, parse_date

"""Workbook reader: bytes -> ordered list of SheetData.

- Header row: the row among the first HEADER_SCAN_ROWS that matches the most
  schema aliases (first non-empty row when nothing matches).
- Record type: best-match score of the header against every schema; a tie or
  a score below MIN_MATCH_SCORE leaves the sheet unclassified.
- Date context: "set week 3/4/24" style anchors in the first rows.

.xlsx/.xlsm are opened with openpyxl so merged ranges can be expanded;
.csv is read with pandas as a single sheet.
"""

__all__ = [
    "ParseError",
    "parse_file",
    "read_workbook",
    "normalize_sheet",
    "classify_header",
    "extract_date_context",
    "inspect_sheets",
]

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 10
DATE_CONTEXT_SCAN_ROWS = 4
MIN_MATCH_SCORE = 2.0
NAME_HINT_BONUS = 0.5

_DATE_LABELS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("set_date", ("set week", "set date")),
    ("candle_date", ("candelled", "candled", "candle date")),
    ("hatch_date", ("hatch week", "hatch date")),
)


class ParseError(Exception):
    """Raised when the file is unreadable or not a recognized tabular container."""


def _load_bytes(source: Path | str | bytes | BinaryIO, filename: str | None) -> tuple[bytes, str]:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source), filename or "<upload>"
    if isinstance(source, (str, Path)):
        path = Path(source)
        try:
            return path.read_bytes(), filename or path.name
        except OSError as e:
            raise ParseError(f"cannot read file {path}: {e}") from e
    try:
        data = source.read()
    except OSError as e:
        raise ParseError(f"cannot read upload: {e}") from e
    name = filename or Path(str(getattr(source, "name", "<upload>"))).name
    return data, name


def _read_xlsx(data: bytes, name: str) -> dict[str, pd.DataFrame]:
    try:
        wb = load_workbook(io.BytesIO(data), data_only=True)
    except Exception as e:  # openpyxl raises a wide range of errors on corrupt containers
        raise ParseError(f"unreadable workbook {name}: {e}") from e
    frames: dict[str, pd.DataFrame] = {}
    try:
        for ws in wb.worksheets:
            grid = [list(r) for r in ws.iter_rows(values_only=True)]
            # merged ranges: copy the top-left value over the whole range
            for rng in ws.merged_cells.ranges:
                top_left = ws.cell(rng.min_row, rng.min_col).value
                for r in range(rng.min_row, min(rng.max_row, len(grid)) + 1):
                    row = grid[r - 1]
                    for c in range(rng.min_col, min(rng.max_col, len(row)) + 1):
                        row[c - 1] = top_left
            frames[str(ws.title)] = pd.DataFrame(grid, dtype=object)
    finally:
        wb.close()
    return frames


def _read_csv(data: bytes, name: str) -> dict[str, pd.DataFrame]:
    try:
        df = pd.read_csv(
            io.BytesIO(data), header=None, dtype=object, keep_default_na=False, skip_blank_lines=False
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise ParseError(f"unreadable csv {name}: {e}") from e
    return {Path(name).stem: df}


def read_workbook(
    source: Path | str | bytes | BinaryIO, *, filename: str | None = None
) -> dict[str, pd.DataFrame]:
    """Read every sheet of a workbook as a raw header-less DataFrame.

    Sheet order follows the workbook. Raises ParseError for empty input,
    unknown formats and corrupt containers.
    """
    data, name = _load_bytes(source, filename)
    if not data:
        raise ParseError(f"file is empty: {name}")
    if zipfile.is_zipfile(io.BytesIO(data)):
        return _read_xlsx(data, name)
    if name.lower().endswith(".csv"):
        return _read_csv(data, name)
    raise ParseError(f"unrecognized workbook format: {name}")


def _matched_fields(cells: Iterable[Any], schema: RecordSchema) -> set[str]:
    matched: set[str] = set()
    for cell in cells:
        if is_blank(cell):
            continue
        field = schema.match_header(str(cell))
        if field is not None:
            matched.add(field)
    return matched


def classify_header(
    header_cells: list[Any],
    sheet_name: str,
    schemas: Mapping[RecordType, RecordSchema],
) -> tuple[RecordType | None, float]:
    """Best-match record type for a header row.

    Score = distinct schema fields matched, plus NAME_HINT_BONUS when the sheet
    name carries one of the schema's hints. Returns (None, best) on a tie or
    when best < MIN_MATCH_SCORE.
    """
    lowered = sheet_name.lower()
    scores: dict[RecordType, float] = {}
    for record_type, schema in schemas.items():
        score = float(len(_matched_fields(header_cells, schema)))
        if any(hint in lowered for hint in schema.name_hints):
            score += NAME_HINT_BONUS
        scores[record_type] = score
    if not scores:
        return None, 0.0
    best = max(scores.values())
    if best < MIN_MATCH_SCORE:
        return None, best
    winners = [rt for rt, s in scores.items() if s == best]
    if len(winners) > 1:
        logger.debug("sheet=%s ambiguous header tie=%s", sheet_name, [w.value for w in winners])
        return None, best
    return winners[0], best


def _detect_header(grid: list[list[Any]], schemas: Mapping[RecordType, RecordSchema]) -> int | None:
    best_idx: int | None = None
    best_count = 0
    first_non_empty: int | None = None
    for idx, row in enumerate(grid[:HEADER_SCAN_ROWS]):
        if all(is_blank(c) for c in row):
            continue
        if first_non_empty is None:
            first_non_empty = idx
        count = max((len(_matched_fields(row, s)) for s in schemas.values()), default=0)
        if count > best_count:
            best_idx, best_count = idx, count
    if best_idx is not None:
        return best_idx
    return first_non_empty


def extract_date_context(grid: list[list[Any]]) -> DateContext:
    """Scan the first rows for labelled anchor dates.

    The date may be embedded in the label cell ("Set week 3/4/24") or sit in
    the cell to its right.
    """
    found: dict[str, Any] = {}
    for row in grid[:DATE_CONTEXT_SCAN_ROWS]:
        for c, cell in enumerate(row):
            if not isinstance(cell, str):
                continue
            text = cell.lower()
            for anchor, labels in _DATE_LABELS:
                if anchor in found or not any(label in text for label in labels):
                    continue
                value = find_date_text(cell)
                if value is None and c + 1 < len(row):
                    value = parse_date(row[c + 1])
                if value is not None:
                    found[anchor] = value
    return DateContext(**found)


def _column_keys(header_cells: list[Any], schema: RecordSchema | None) -> list[str]:
    keys: list[str] = []
    seen: dict[str, int] = {}
    for idx, cell in enumerate(header_cells):
        if is_blank(cell):
            key = f"column_{idx + 1}"
        else:
            text = str(cell).strip()
            key = (schema.match_header(text) if schema is not None else None) or text
        if key in seen:
            seen[key] += 1
            key = f"{key}_{seen[key]}"
        else:
            seen[key] = 1
        keys.append(key)
    return keys


def normalize_sheet(
    df: pd.DataFrame,
    sheet_name: str,
    schemas: Mapping[RecordType, RecordSchema] | None = None,
    null_sentinels: set[str] | frozenset[str] | None = None,
) -> SheetData:
    """Turn a raw header-less DataFrame into SheetData.

    Steps:
    1. Coerce every cell (blank/sentinel -> None, numeric text -> number)
    2. Detect the header row and classify the sheet
    3. Map header cells to canonical field names (unknown headers kept as text)
    4. Drop blank rows and blank-header empty columns, keeping row numbering
    """
    schemas = schemas if schemas is not None else get_schemas()
    raw_grid = [[None if is_blank(v) else v for v in row] for row in df.itertuples(index=False, name=None)]
    grid = [[coerce_cell(v, null_sentinels) for v in row] for row in raw_grid]
    date_context = extract_date_context(grid)

    header_idx = _detect_header(grid, schemas)
    if header_idx is None:
        logger.warning("sheet=%s is empty", sheet_name)
        return SheetData(sheet_name=sheet_name, record_type=None, rows=(), date_context=date_context)

    header_cells = grid[header_idx]
    record_type, score = classify_header(header_cells, sheet_name, schemas)
    schema = schemas.get(record_type) if record_type is not None else None
    keys = _column_keys(header_cells, schema)

    data_rows = grid[header_idx + 1:]
    raw_rows = raw_grid[header_idx + 1:]
    # trailing / spacer columns: blank header and no data at all
    kept = [
        i for i, cell in enumerate(header_cells)
        if not is_blank(cell) or any(i < len(r) and r[i] is not None for r in data_rows)
    ]

    rows: list[RowData] = []
    for offset, (row, raw) in enumerate(zip(data_rows, raw_rows, strict=False), start=1):
        if all(v is None for v in row):
            continue
        values = {keys[i]: (row[i] if i < len(row) else None) for i in kept}
        raw_values = {keys[i]: (raw[i] if i < len(raw) else None) for i in kept}
        rows.append(
            RowData(
                row_number=offset,
                values=values,
                sheet_row=header_idx + 1 + offset,
                raw_values=raw_values,
            )
        )

    if record_type is None:
        logger.warning("sheet=%s could not be classified (best_score=%.1f); excluded from import", sheet_name, score)
    else:
        logger.debug("sheet=%s type=%s score=%.1f rows=%d", sheet_name, record_type.value, score, len(rows))

    return SheetData(
        sheet_name=sheet_name,
        record_type=record_type,
        rows=tuple(rows),
        columns=tuple(keys[i] for i in kept),
        header_row=header_idx + 1,
        date_context=date_context,
        match_score=score,
    )


def parse_file(
    source: Path | str | bytes | BinaryIO,
    *,
    filename: str | None = None,
    null_sentinels: Iterable[str] | None = None,
    extra_aliases: Mapping[str, Mapping[str, Iterable[str]]] | None = None,
) -> list[SheetData]:
    """Parse a workbook into one SheetData per sheet, in workbook order.

    Args:
        source: path, raw bytes or a binary stream (.xlsx, .xlsm or .csv)
        filename: name used for format detection and messages when
            ``source`` is not a path
        null_sentinels: cell texts treated as empty (case-insensitive);
            None keeps the built-in set
        extra_aliases: record type value -> field -> additional header
            aliases from the config file

    Returns:
        One SheetData per sheet. Sheets whose header cannot be matched to a
        record type come back with ``record_type=None`` and no rows.

    Raises:
        ParseError: the file is empty, of an unknown format or corrupt
    """
    schemas = get_schemas(extra_aliases)
    sentinels = {s.strip().upper() for s in null_sentinels} if null_sentinels is not None else None
    raw = read_workbook(source, filename=filename)
    return [normalize_sheet(df, name, schemas, sentinels) for name, df in raw.items()]


def _printable(value: Any) -> Any:
    return value.isoformat() if hasattr(value, "isoformat") else value


def inspect_sheets(sheets: Iterable[SheetData], sample_rows: int = 3) -> list[str]:
    """Human readable overview of parsed sheets (header mapping + first rows)."""
    lines: list[str] = []
    for sd in sheets:
        kind = sd.record_type.value if sd.record_type is not None else "unclassified"
        lines.append(
            f"SHEET: {sd.sheet_name} type={kind} score={sd.match_score:g} "
            f"header_row={sd.header_row} rows={len(sd.rows)}"
        )
        lines.append(f"  columns={list(sd.columns)}")
        if not sd.date_context.is_empty():
            anchors = {k: _printable(v) for k, v in vars(sd.date_context).items() if v is not None}
            lines.append(f"  date_context={anchors}")
        for row in sd.rows[:sample_rows]:
            lines.append(f"  row {row.row_number}: {({k: _printable(v) for k, v in row.values.items()})}")
    return lines
