from __future__ import annotations

import re
from collections.abc import Callable, Collection, Iterable, Mapping, Sequence
from typing import Any

from ..excel.cells import is_blank, parse_date, parse_number
from ..models.record_schema import SCHEMAS, FieldKind, FieldSpec, RecordSchema
from ..models.record_type import QAKind, RecordType
from ..models.row_data import RowData
from ..models.validation_issue import Severity, ValidationIssue, ValidationSummary

"""Row validator: rows + record type -> ordered list of ValidationIssue.

Every row is checked independently and the pass always completes. Output is
grouped by row (original order) and, within a row, ordered by the schema's
field order (fields outside the schema last, alphabetically), keeping
emission order for several issues on the same field. No clock or random
input is read, so identical input gives an identical list.
"""

__all__ = [
    "validate",
    "summarize",
    "has_blocking_errors",
    "qa_kinds_present",
]

BATCH_NUMBER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_\-/ ]*$")
KNOWN_BREEDS = frozenset({"cobb", "ross", "hubbard", "arbor acres", "indian river"})
KNOWN_BATCH_STATUSES = frozenset({"planned", "setting", "incubating", "hatching", "completed", "cancelled"})
LOW_FERTILITY_PERCENT = 70.0
HIGH_WEIGHT_LOSS_PERCENT = 15.0
TEMPERATURE_RANGE_F = (90.0, 110.0)
MAX_FLOCK_AGE_WEEKS = 80


def _fmt(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class _RowIssues:
    """Collects the issues of one row before ordering them."""

    def __init__(self, row: int, values: Mapping[str, Any]) -> None:
        self.row = row
        self.values = values
        self._items: list[ValidationIssue] = []
        self.invalid: set[str] = set()  # fields that already failed a format check

    def error(self, column: str, message: str, suggestion: str | None = None) -> None:
        self._add(column, Severity.ERROR, message, suggestion)
        self.invalid.add(column)

    def warning(self, column: str, message: str, suggestion: str | None = None) -> None:
        self._add(column, Severity.WARNING, message, suggestion)

    def _add(self, column: str, severity: Severity, message: str, suggestion: str | None) -> None:
        self._items.append(
            ValidationIssue(
                row=self.row,
                column=column,
                value=self.values.get(column),
                severity=severity,
                message=message,
                suggestion=suggestion,
            )
        )

    def number(self, field: str) -> float | None:
        """Parsed number for a field that passed its format check."""
        if field in self.invalid:
            return None
        return parse_number(self.values.get(field))

    def ordered(self, schema: RecordSchema) -> list[ValidationIssue]:
        order = schema.field_order
        ranked = sorted(
            enumerate(self._items),
            key=lambda pair: (
                (0, order[pair[1].column], "") if pair[1].column in order else (1, 0, pair[1].column),
                pair[0],
            ),
        )
        return [issue for _, issue in ranked]


def _check_field(spec: FieldSpec, issues: _RowIssues, known_flocks: Collection[int] | None) -> None:
    value = issues.values.get(spec.name)
    if is_blank(value):
        if spec.required:
            issues.error(spec.name, "Required field is missing", f"Fill in the '{spec.aliases[0]}' column")
        return

    kind = spec.kind
    if kind is FieldKind.TEXT:
        return
    if kind is FieldKind.DATE:
        if parse_date(value) is None:
            issues.error(spec.name, f"Not a valid date: {_fmt(value)}", "Use MM/DD/YYYY")
        return
    if kind is FieldKind.CODE:
        text = _fmt(value) if isinstance(value, (int, float)) else str(value)
        if not BATCH_NUMBER_PATTERN.match(text.strip()):
            issues.error(spec.name, f"Invalid identifier format: {text}", "Use letters, digits, '-', '_' or '/'")
        return

    number = parse_number(value)
    if number is None:
        issues.error(spec.name, "Must be a number")
        return

    if kind is FieldKind.FLOCK_ID:
        if number <= 0 or not number.is_integer():
            issues.error(spec.name, "Flock number must be a positive whole number")
            return
        if known_flocks is not None and int(number) not in known_flocks:
            issues.warning(
                spec.name,
                f"Flock #{int(number)} is not a known flock",
                "Enable create-missing-entities or add the flock before importing",
            )
    elif kind is FieldKind.COUNT:
        if number < 0:
            issues.error(spec.name, "Count cannot be negative")
        elif not number.is_integer():
            issues.error(spec.name, "Must be a whole number")
    elif kind is FieldKind.NUMBER:
        if number < 0:
            issues.error(spec.name, "Value cannot be negative")
    elif kind is FieldKind.PERCENT:
        if number < 0 or number > 100:
            issues.error(spec.name, "Percentage must be between 0 and 100", "Enter percentages as 0-100, not 0-1")
    elif kind is FieldKind.TEMPERATURE:
        low, high = TEMPERATURE_RANGE_F
        if number < low or number > high:
            issues.warning(spec.name, f"Temperature outside normal range ({_fmt(low)}-{_fmt(high)}°F)")


def _fertile_eggs(issues: _RowIssues) -> float | None:
    size = issues.number("sample_size")
    infertile = issues.number("infertile_eggs")
    if size is None or infertile is None:
        return None
    if infertile > size:
        issues.error("infertile_eggs", "Infertile eggs cannot exceed sample size")
        return None
    return size - infertile


def _check_mortality(issues: _RowIssues, fields: Sequence[str], fertile: float | None) -> None:
    if fertile is None:
        return
    present = [f for f in fields if issues.number(f) is not None]
    if not present:
        return
    total = sum(issues.number(f) or 0.0 for f in present)
    if total > fertile:
        issues.error(
            present[0],
            f"Mortality total {_fmt(total)} exceeds fertile eggs {_fmt(fertile)}",
            "Check the dead / pipped counts against sample size minus infertile",
        )


def _check_flock(issues: _RowIssues) -> None:
    age = issues.number("age_weeks")
    if age is not None and age > MAX_FLOCK_AGE_WEEKS:
        issues.warning("age_weeks", f"Flock age {_fmt(age)} weeks is unusually high", "Verify this is correct")
    breed = issues.values.get("breed")
    if not is_blank(breed) and str(breed).strip().lower() not in KNOWN_BREEDS:
        issues.warning("breed", f"Unknown breed: {breed}")


def _check_batch(issues: _RowIssues) -> None:
    set_date = parse_date(issues.values.get("set_date"))
    hatch_date = parse_date(issues.values.get("expected_hatch_date"))
    if set_date is not None and hatch_date is not None and hatch_date <= set_date:
        issues.error("expected_hatch_date", "Expected hatch date must be after set date")
    status = issues.values.get("status")
    if not is_blank(status) and str(status).strip().lower() not in KNOWN_BATCH_STATUSES:
        issues.warning("status", f"Unknown batch status: {status}")


def _check_fertility(issues: _RowIssues) -> None:
    _check_mortality(issues, ("early_dead", "late_dead"), _fertile_eggs(issues))
    fertility = issues.number("fertility_percent")
    if fertility is not None and fertility <= 100 and fertility < LOW_FERTILITY_PERCENT:
        issues.warning("fertility_percent", f"Low fertility: {_fmt(fertility)}%", "Verify this is correct")


def _check_residue(issues: _RowIssues) -> None:
    _check_mortality(
        issues, ("early_dead", "mid_dead", "late_dead", "pipped_not_hatched"), _fertile_eggs(issues)
    )


def _check_egg_pack(issues: _RowIssues) -> None:
    total = issues.number("total_eggs_pulled")
    if total is None:
        return
    defects = ("stained", "dirty", "cracked", "small", "large")
    exceeded = False
    for field in defects:
        count = issues.number(field)
        if count is not None and count > total:
            issues.error(field, "Defect count exceeds total eggs pulled")
            exceeded = True
    if not exceeded:
        graded = sum(issues.number(f) or 0.0 for f in ("stained", "dirty", "cracked"))
        if graded > total:
            issues.warning("total_eggs_pulled", "Stained + dirty + cracked add up to more than eggs pulled")


def qa_kinds_present(values: Mapping[str, Any], schema: RecordSchema | None = None) -> list[QAKind]:
    """Measurement groups with at least one filled cell, in QAKind order."""
    schema = schema or SCHEMAS[RecordType.QA_MONITORING]
    present: set[QAKind] = set()
    for spec in schema.fields:
        if spec.qa_kind is not None and not is_blank(values.get(spec.name)):
            present.add(spec.qa_kind)
    return [kind for kind in QAKind if kind in present]


def _check_qa(issues: _RowIssues) -> None:
    kinds = qa_kinds_present(issues.values)
    if not kinds:
        issues.error("measurement", "Row has no temperature, weight loss or specific gravity measurement")
    elif len(kinds) > 1:
        issues.error(
            "measurement",
            "Row mixes measurement groups: " + ", ".join(k.value for k in kinds),
            "Split temperature, weight loss and specific gravity checks into separate rows",
        )
    loss = issues.number("percent_loss")
    if loss is not None and HIGH_WEIGHT_LOSS_PERCENT < loss <= 100:
        issues.warning(
            "percent_loss", f"Weight loss exceeds {_fmt(HIGH_WEIGHT_LOSS_PERCENT)}% - verify accuracy"
        )


def _check_clears_injected(issues: _RowIssues) -> None:
    total = issues.number("total_eggs_set")
    if total is None:
        return
    injected = issues.number("injected_count")
    clears = issues.number("clears_count")
    if injected is not None and injected > total:
        issues.error("injected_count", "Injected eggs cannot exceed total eggs set")
        return
    if clears is not None and clears > total:
        issues.error("clears_count", "Clears cannot exceed total eggs set")
        return
    if injected is not None and clears is not None and injected + clears > total:
        issues.error("clears_count", "Clears + injected exceed total eggs set")


_CROSS_CHECKS: dict[RecordType, Callable[[_RowIssues], None]] = {
    RecordType.FLOCK: _check_flock,
    RecordType.BATCH: _check_batch,
    RecordType.FERTILITY: _check_fertility,
    RecordType.RESIDUE: _check_residue,
    RecordType.EGG_PACK: _check_egg_pack,
    RecordType.QA_MONITORING: _check_qa,
    RecordType.CLEARS_INJECTED: _check_clears_injected,
}


def validate(
    rows: Iterable[RowData | Mapping[str, Any]],
    record_type: RecordType,
    *,
    known_flocks: Collection[int] | None = None,
    schemas: Mapping[RecordType, RecordSchema] | None = None,
) -> list[ValidationIssue]:
    """Validate every row of one sheet against its record type schema.

    Args:
        rows: RowData from the parser or plain field -> value mappings.
            Plain mappings are numbered by their 1-based position; RowData
            keeps the row number assigned by the parser.
        record_type: schema and cross-field rules to apply
        known_flocks: flock numbers already in the store; enables the
            "unknown flock" plausibility warning
        schemas: schema table with configured aliases (built-in when None)

    Returns:
        Every issue found, ordered by row and then by schema field order.
        An empty list means the rows are ready to import.
    """
    schema = (schemas or SCHEMAS)[record_type]
    cross_check = _CROSS_CHECKS[record_type]
    result: list[ValidationIssue] = []
    for position, row in enumerate(rows, start=1):
        if isinstance(row, RowData):
            row_number, values = row.row_number, row.values
        else:
            row_number, values = position, row
        issues = _RowIssues(row_number, values)
        for spec in schema.fields:
            _check_field(spec, issues, known_flocks)
        cross_check(issues)
        result.extend(issues.ordered(schema))
    return result


def summarize(issues: Iterable[ValidationIssue]) -> ValidationSummary:
    return ValidationSummary.from_issues(issues)


def has_blocking_errors(issues: Iterable[ValidationIssue]) -> bool:
    return any(issue.severity is Severity.ERROR for issue in issues)
