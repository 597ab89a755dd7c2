from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

"""Validation issue models.

Issues are returned as data, never raised. ERROR severity blocks the import
of the whole sheet; WARNING is informational.
"""

__all__ = [
    "Severity",
    "ValidationIssue",
    "ValidationSummary",
]


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationIssue:
    """A single rule failure tied to one row and one field.

    Attributes:
        row: 1-based data row number in the original sheet
        column: canonical field name
        value: offending cell value (None when missing)
        severity: ERROR (blocks import) or WARNING
        message: human readable description
        suggestion: optional hint for fixing the cell
    """
    row: int
    column: str
    value: Any
    severity: Severity
    message: str
    suggestion: str | None = None

    @property
    def is_blocking(self) -> bool:
        return self.severity is Severity.ERROR


@dataclass(frozen=True)
class ValidationSummary:
    error_count: int
    warning_count: int

    @property
    def blocked(self) -> bool:
        return self.error_count > 0

    @classmethod
    def from_issues(cls, issues: Iterable[ValidationIssue]) -> ValidationSummary:
        errors = warnings = 0
        for issue in issues:
            if issue.severity is Severity.ERROR:
                errors += 1
            else:
                warnings += 1
        return cls(error_count=errors, warning_count=warnings)
