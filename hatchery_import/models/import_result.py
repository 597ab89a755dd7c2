from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .record_type import RecordType
from .validation_issue import ValidationSummary

"""Import outcome models and the per-sheet status state machine.

State transitions:
    pending -> parsed -> validating -> (blocked | ready)
    ready -> importing -> (completed | failed | timed_out)

``failed`` is also reachable from parsed / validating when the sheet cannot
be processed at all. Terminal states have no outgoing transitions.
"""

__all__ = [
    "SheetStatus",
    "InvalidTransitionError",
    "SheetState",
    "RowError",
    "ImportResult",
    "SheetValidation",
    "RunResult",
]


class SheetStatus(Enum):
    """Lifecycle of one sheet inside an import run.

    - PENDING: queued, nothing done yet
    - PARSED: classified sheet handed to the queue
    - VALIDATING: RowValidator running
    - BLOCKED: at least one error-severity issue; never imported
    - READY: validation passed
    - IMPORTING: BulkImporter running
    - COMPLETED / FAILED / TIMED_OUT: terminal import outcomes
    """
    PENDING = "pending"
    PARSED = "parsed"
    VALIDATING = "validating"
    BLOCKED = "blocked"
    READY = "ready"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]


_TRANSITIONS: dict[SheetStatus, frozenset[SheetStatus]] = {
    SheetStatus.PENDING: frozenset({SheetStatus.PARSED}),
    SheetStatus.PARSED: frozenset({SheetStatus.VALIDATING, SheetStatus.FAILED}),
    SheetStatus.VALIDATING: frozenset({SheetStatus.BLOCKED, SheetStatus.READY, SheetStatus.FAILED}),
    SheetStatus.READY: frozenset({SheetStatus.IMPORTING}),
    SheetStatus.IMPORTING: frozenset({SheetStatus.COMPLETED, SheetStatus.FAILED, SheetStatus.TIMED_OUT}),
    SheetStatus.BLOCKED: frozenset(),
    SheetStatus.COMPLETED: frozenset(),
    SheetStatus.FAILED: frozenset(),
    SheetStatus.TIMED_OUT: frozenset(),
}


class InvalidTransitionError(Exception):
    def __init__(self, sheet_name: str, current: SheetStatus, target: SheetStatus) -> None:
        super().__init__(f"sheet {sheet_name!r}: cannot move from {current.value} to {target.value}")
        self.sheet_name = sheet_name
        self.current = current
        self.target = target


class SheetState:
    """Mutable status holder enforcing the transition table."""

    def __init__(self, sheet_name: str) -> None:
        self.sheet_name = sheet_name
        self.status = SheetStatus.PENDING
        self.history: list[SheetStatus] = [SheetStatus.PENDING]

    def advance(self, target: SheetStatus) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.sheet_name, self.status, target)
        self.status = target
        self.history.append(target)


@dataclass(frozen=True)
class RowError:
    row: int  # data row number; -1 when the failure is not tied to a row
    message: str


@dataclass(frozen=True)
class ImportResult:
    """Outcome of one import attempt for one sheet.

    ``success + failure + skipped + unprocessed == total`` always holds.
    """
    sheet_name: str
    record_type: RecordType
    status: SheetStatus
    total: int
    success: int = 0
    failure: int = 0
    skipped: int = 0
    unprocessed: int = 0
    errors: tuple[RowError, ...] = ()
    elapsed_seconds: float = 0.0
    fatal_error: str | None = None

    @property
    def accounted(self) -> int:
        return self.success + self.failure + self.skipped + self.unprocessed


@dataclass(frozen=True)
class SheetValidation:
    """Validation outcome of one classified sheet."""
    sheet_name: str
    record_type: RecordType
    summary: ValidationSummary


@dataclass(frozen=True)
class RunResult:
    """Aggregate of one workbook run."""
    file_name: str
    results: tuple[ImportResult, ...] = ()
    blocked: tuple[SheetValidation, ...] = ()
    validated: tuple[SheetValidation, ...] = ()  # ready sheets of a validate-only run
    unclassified: tuple[str, ...] = ()
    elapsed_seconds: float = 0.0
    statuses: dict[str, SheetStatus] = field(default_factory=dict)

    def count(self, status: SheetStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def success(self) -> int:
        return sum(r.success for r in self.results)

    @property
    def failure(self) -> int:
        return sum(r.failure for r in self.results)

    @property
    def skipped(self) -> int:
        return sum(r.skipped for r in self.results)

    @property
    def unprocessed(self) -> int:
        return sum(r.unprocessed for r in self.results)

    @property
    def fully_imported(self) -> bool:
        """True when nothing was blocked, failed, timed out or left behind."""
        if self.blocked:
            return False
        return all(r.status is SheetStatus.COMPLETED and r.failure == 0 and r.unprocessed == 0 for r in self.results)
