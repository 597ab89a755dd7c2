from __future__ import annotations

import math
import numbers
import re
from datetime import date, datetime
from typing import Any

"""Cell value helpers shared by the parser, validator and record builders.

Spreadsheet cells arrive as a mix of numbers, numeric text, datetimes,
NaN and free text. These helpers give one interpretation of each.
"""

__all__ = [
    "DEFAULT_NULL_SENTINELS",
    "is_blank",
    "coerce_cell",
    "parse_number",
    "parse_date",
    "find_date_text",
]

# Upper-cased strings treated as an empty cell
DEFAULT_NULL_SENTINELS = frozenset({"N/A", "NA", "NULL", "NONE", "-", "--", "#N/A"})

_NUMERIC_TEXT = re.compile(r"^[+-]?(\d{1,3}(,\d{3})+|\d+)(\.\d+)?\s*%?$|^[+-]?\.\d+\s*%?$")
_DATE_TEXT = re.compile(r"(\d{1,2}/\d{1,2}/\d{2,4}|\d{4}-\d{2}-\d{2})")
_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d", "%d-%b-%Y", "%d %b %Y", "%b %d %Y")


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    # pandas.NaT / numpy.nan variants
    try:
        return bool(value != value)
    except (TypeError, ValueError):
        return False


def _numeric_text_value(text: str) -> int | float | None:
    if not _NUMERIC_TEXT.match(text):
        return None
    cleaned = text.replace(",", "").replace("%", "").strip()
    digits = cleaned.lstrip("+-")
    # keep zero-padded identifiers such as "0012" as text
    if len(digits) > 1 and digits.startswith("0") and "." not in digits:
        return None
    if "." in cleaned:
        return float(cleaned)
    return int(cleaned)


def coerce_cell(value: Any, null_sentinels: frozenset[str] | set[str] | None = None) -> Any:
    """Normalize one raw cell value.

    - NaN / None / blank text / null sentinel -> None
    - numeric text ("1,234", " 85.5% ") -> int or float
    - integral floats stay floats; other values pass through (text stripped)
    """
    if is_blank(value):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        sentinels = DEFAULT_NULL_SENTINELS if null_sentinels is None else null_sentinels
        if stripped.upper() in sentinels:
            return None
        number = _numeric_text_value(stripped)
        if number is not None:
            return number
        return re.sub(r"\s+", " ", stripped)
    if isinstance(value, bool):
        return value
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        return float(value)
    return value


def parse_number(value: Any) -> float | None:
    """Numeric interpretation of a cell, or None when blank / not numeric."""
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        return float(value)
    if isinstance(value, str):
        number = _numeric_text_value(value.strip())
        return None if number is None else float(number)
    return None


def _expand_year(d: date, text: str) -> date:
    # two digit years: 00-49 -> 20xx, 50-99 -> 19xx
    parts = re.split(r"[/]", text)
    if len(parts) == 3 and len(parts[2]) == 2:
        yy = int(parts[2])
        return d.replace(year=(2000 + yy) if yy < 50 else (1900 + yy))
    return d


def parse_date(value: Any) -> date | None:
    """Date interpretation of a cell (datetime, date or date text)."""
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt).date()
            except ValueError:
                continue
            return _expand_year(parsed, text) if fmt == "%m/%d/%y" else parsed
    return None


def find_date_text(text: str) -> date | None:
    """Extract the first date embedded in free text, e.g. "Set week 3/4/24"."""
    m = _DATE_TEXT.search(text)
    if m is None:
        return None
    return parse_date(m.group(1))
