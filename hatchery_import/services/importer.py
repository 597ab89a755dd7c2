from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from datetime import date
from typing import Any

from ..db.store import (
    DuplicateRecordError,
    EntityRefs,
    RecordStore,
    StatementTimeoutError,
    StoreError,
    StoreUnavailableError,
)
from ..excel.cells import is_blank
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import ImportConfig
from ..models.import_result import ImportResult, RowError, SheetStatus
from ..models.record_schema import SCHEMAS, RecordSchema
from ..models.record_type import EntityKind, RecordType
from ..models.records import Record, RecordBuildError, build_record
from ..models.row_data import RowData
from ..models.sheet_data import DateContext, SheetData
from ..models.validation_issue import ValidationIssue
from ..validation.validator import has_blocking_errors, validate
from .progress import ProgressEvent, ProgressStream

"""BulkImporter: validated rows -> store writes, one row at a time.

Empty fields are filled first (row value > config.default_values > sheet
date context > global default run date / sample size) and the filled rows
are validated as a whole, so defaults go through the same checks as cell
values. Then per row (in sheet order, after the deadline check):
1. build the typed record
2. duplicate check on the natural key (skip or fail per skip_duplicates)
3. resolve parents in fixed order flock -> machine -> batch, creating them
   only when create_missing_entities is set
4. insert

A row failure never stops the sheet. StoreUnavailableError does: the row is
counted as a failure and the rest as unprocessed. The deadline is checked
between rows, so committed rows stay committed when a sheet times out; a
sheet whose last write ends past the deadline is still reported timed out.
The store gets the remaining budget before each row to bound one write.
"""

__all__ = [
    "SheetBlockedError",
    "UnresolvedReferenceError",
    "BulkImporter",
    "fill_defaults",
]

logger = logging.getLogger(__name__)


class SheetBlockedError(Exception):
    """Raised when rows handed to the importer still carry blocking validation errors."""

    def __init__(self, sheet_name: str, issues: Sequence[ValidationIssue]) -> None:
        errors = sum(1 for i in issues if i.is_blocking)
        super().__init__(f"sheet {sheet_name!r} has {errors} blocking validation error(s)")
        self.sheet_name = sheet_name
        self.issues = list(issues)


class UnresolvedReferenceError(Exception):
    """A referenced flock / machine / batch does not exist and may not be created."""


def fill_defaults(
    values: Mapping[str, Any],
    schema: RecordSchema,
    config: ImportConfig,
    date_context: DateContext | None,
    run_date: date,
) -> dict[str, Any]:
    """Return a copy of ``values`` with empty fields filled by precedence.

    Args:
        values: canonical field -> cell value of one row
        schema: field table of the row's record type
        config: supplies ``default_values`` and ``sample_size``
        date_context: dates found above the header, may be None
        run_date: last-resort value for date fields with a run-date default

    Returns:
        New dict; fields the row already fills are never overwritten.
    """
    filled = dict(values)
    for name, value in config.default_values.items():
        if is_blank(filled.get(name)):
            filled[name] = value
    for spec in schema.fields:
        if not is_blank(filled.get(spec.name)):
            continue
        if spec.context_date and date_context is not None and date_context.get(spec.context_date):
            filled[spec.name] = date_context.get(spec.context_date)
        elif spec.global_default == "run_date":
            filled[spec.name] = run_date
        elif spec.global_default == "sample_size":
            filled[spec.name] = config.sample_size
    return filled


def _record_date(record: Record) -> date:
    for attr in ("set_date", "analysis_date", "inspection_date", "check_date"):
        value = getattr(record, attr, None)
        if value is not None:
            return value
    return date.today()


class BulkImporter:
    """Writes rows of one sheet through a RecordStore.

    ``clock`` returns monotonic seconds and is only read at row boundaries;
    tests pass a fake clock to drive the timeout. ``progress`` is the event
    stream every import publishes on.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        clock: Callable[[], float] = time.monotonic,
        error_log: ErrorLogBuffer | None = None,
        progress: ProgressStream | None = None,
        schemas: Mapping[RecordType, RecordSchema] | None = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.error_log = error_log
        self.progress = progress if progress is not None else ProgressStream()
        self.schemas = dict(schemas) if schemas is not None else dict(SCHEMAS)

    def prepare_rows(
        self,
        rows: Sequence[RowData | Mapping[str, Any]],
        record_type: RecordType,
        config: ImportConfig,
        date_context: DateContext | None = None,
    ) -> list[RowData]:
        """Default-filled copies of ``rows`` ready for validation and import.

        Plain mappings are numbered by their 1-based position; RowData keeps
        the parser's row number, sheet row and raw values.
        """
        schema = self.schemas[record_type]
        run_date = config.run_date or date.today()
        prepared = []
        for position, row in enumerate(rows, start=1):
            if isinstance(row, RowData):
                filled = fill_defaults(row.values, schema, config, date_context, run_date)
                prepared.append(replace(row, values=filled))
            else:
                prepared.append(RowData(position, fill_defaults(row, schema, config, date_context, run_date)))
        return prepared

    def import_sheet(self, sheet: SheetData, config: ImportConfig) -> ImportResult:
        """Import a parsed sheet, using its record type and date context.

        Raises:
            ValueError: the sheet was never classified
            SheetBlockedError: a default-filled row fails validation
        """
        if sheet.record_type is None:
            raise ValueError(f"sheet {sheet.sheet_name!r} has no record type")
        return self.import_rows(
            sheet.rows, sheet.record_type, config, sheet_name=sheet.sheet_name, date_context=sheet.date_context
        )

    def import_rows(
        self,
        rows: Sequence[RowData | Mapping[str, Any]],
        record_type: RecordType,
        config: ImportConfig,
        *,
        sheet_name: str = "",
        date_context: DateContext | None = None,
    ) -> ImportResult:
        """Import every row of one sheet and account for each of them.

        Args:
            rows: RowData from the parser, or plain field -> value mappings
                (numbered 1..n)
            record_type: target record type; must equal ``config.record_type``
            config: per-sheet options (duplicates, entity creation, defaults,
                timeout, progress subscriber)
            sheet_name: used in results, log lines and error-log records
            date_context: sheet-level dates used as defaults for empty date cells

        Returns:
            ImportResult where success + failure + skipped + unprocessed == total.

        Raises:
            ValueError: ``record_type`` disagrees with ``config.record_type``
            SheetBlockedError: a row still has a blocking validation error
                after defaults are filled; nothing is written
        """
        if config.record_type is not record_type:
            raise ValueError(
                f"record type {record_type.value!r} does not match config for {config.record_type.value!r}"
            )
        rows = self.prepare_rows(rows, record_type, config, date_context)
        issues = validate(rows, record_type, schemas=self.schemas)
        if has_blocking_errors(issues):
            raise SheetBlockedError(sheet_name, issues)

        total = len(rows)
        start = self.clock()
        deadline = start + config.timeout_seconds

        success = failure = skipped = unprocessed = 0
        errors: list[RowError] = []
        status = SheetStatus.COMPLETED
        fatal_error: str | None = None

        unsubscribe = self.progress.subscribe(self._guarded(config.on_progress)) if config.on_progress else None
        logger.info("sheet=%s type=%s importing %d rows", sheet_name, record_type.value, total)
        try:
            for index, row in enumerate(rows):
                now = self.clock()
                if now >= deadline:
                    status = SheetStatus.TIMED_OUT
                    unprocessed = total - index
                    fatal_error = f"timed out after {config.timeout_seconds:g}s"
                    logger.warning(
                        "sheet=%s timed out after %d/%d rows; %d left unprocessed",
                        sheet_name, index, total, unprocessed,
                    )
                    self._log_error(sheet_name, None, "TIMEOUT", f"{unprocessed} rows not processed")
                    break

                row_number = row.row_number
                self.store.set_statement_timeout(deadline - now)
                try:
                    inserted = self._import_row(row.values, record_type, config)
                except StoreUnavailableError as e:
                    failure += 1
                    errors.append(RowError(row_number, str(e)))
                    unprocessed = total - index - 1
                    if isinstance(e, StatementTimeoutError):
                        status = SheetStatus.TIMED_OUT
                        fatal_error = f"timed out after {config.timeout_seconds:g}s"
                        logger.warning("sheet=%s row=%d write cancelled at the deadline: %s", sheet_name,
                                       row_number, e)
                        self._log_error(sheet_name, row_number, "TIMEOUT", str(e))
                    else:
                        status = SheetStatus.FAILED
                        fatal_error = str(e)
                        logger.error("sheet=%s row=%d store unavailable: %s", sheet_name, row_number, e)
                        self._log_error(sheet_name, row_number, "STORE_UNAVAILABLE", str(e))
                    self.progress.publish(ProgressEvent(sheet_name, index + 1, total))
                    break
                except (StoreError, UnresolvedReferenceError, RecordBuildError) as e:
                    failure += 1
                    errors.append(RowError(row_number, str(e)))
                    logger.debug("sheet=%s row=%d failed: %s", sheet_name, row_number, e)
                    self._log_error(sheet_name, row_number, _error_type(e), str(e))
                else:
                    if inserted:
                        success += 1
                    else:
                        skipped += 1
                self.progress.publish(ProgressEvent(sheet_name, index + 1, total))
            else:
                if total and self.clock() >= deadline:
                    # the last write finished past the deadline
                    status = SheetStatus.TIMED_OUT
                    fatal_error = f"timed out after {config.timeout_seconds:g}s"
                    logger.warning("sheet=%s last row finished after the %gs deadline", sheet_name,
                                   config.timeout_seconds)
                    self._log_error(sheet_name, None, "TIMEOUT", "deadline passed during the last row")
        finally:
            self.store.set_statement_timeout(None)
            if unsubscribe is not None:
                unsubscribe()

        elapsed = self.clock() - start
        result = ImportResult(
            sheet_name=sheet_name,
            record_type=record_type,
            status=status,
            total=total,
            success=success,
            failure=failure,
            skipped=skipped,
            unprocessed=unprocessed,
            errors=tuple(errors),
            elapsed_seconds=elapsed,
            fatal_error=fatal_error,
        )
        logger.info(
            "sheet=%s status=%s success=%d failure=%d skipped=%d unprocessed=%d",
            sheet_name, status.value, success, failure, skipped, unprocessed,
        )
        return result

    def _import_row(self, values: Mapping[str, Any], record_type: RecordType, config: ImportConfig) -> bool:
        """Import one default-filled row; False when it was skipped as a duplicate."""
        record = build_record(record_type, values)
        key = record.natural_key()
        if self.store.has_record(record_type, key):
            if config.skip_duplicates:
                return False
            raise DuplicateRecordError(f"{record_type.value} {_describe_key(key)} already exists")
        refs = self._resolve(record, config)
        self.store.insert_record(record, refs, key)
        return True

    def _resolve(self, record: Record, config: ImportConfig) -> EntityRefs:
        flock_id = machine_id = batch_id = None
        flock_number = getattr(record, "flock_number", None)
        machine_number = getattr(record, "machine_number", None)

        if EntityKind.FLOCK in record.requires and flock_number is not None:
            flock_id = self.store.find_flock(flock_number)
            if flock_id is None:
                if not config.create_missing_entities:
                    raise UnresolvedReferenceError(f"Flock #{flock_number} not found")
                flock_id = self.store.create_flock(flock_number)
                logger.info("created flock #%s", flock_number)

        if EntityKind.MACHINE in record.requires and machine_number:
            machine_id = self.store.find_machine(machine_number)
            if machine_id is None:
                if not config.create_missing_entities:
                    raise UnresolvedReferenceError(f"Machine {machine_number} not found")
                machine_id = self.store.create_machine(machine_number)
                logger.info("created machine %s", machine_number)

        if EntityKind.BATCH in record.requires and flock_id is not None:
            batch_number = getattr(record, "batch_number", None)
            batch_id = self.store.find_batch(flock_id, batch_number)
            if batch_id is None:
                if not config.create_missing_entities:
                    if batch_number:
                        raise UnresolvedReferenceError(f"Batch {batch_number} not found for Flock #{flock_number}")
                    raise UnresolvedReferenceError(f"No batch found for Flock #{flock_number}")
                batch_number = batch_number or f"Batch-{flock_number}"
                batch_id = self.store.create_batch(flock_id, batch_number, _record_date(record), machine_id)
                logger.info("created batch %s for flock #%s", batch_number, flock_number)

        return EntityRefs(flock_id=flock_id, machine_id=machine_id, batch_id=batch_id)

    def _log_error(self, sheet_name: str, row: int | None, error_type: str, message: str) -> None:
        if self.error_log is not None:
            self.error_log.record(sheet_name, row, error_type, message)

    @staticmethod
    def _guarded(callback: Callable[[ProgressEvent], None]) -> Callable[[ProgressEvent], None]:
        # a broken progress callback must not leave rows unaccounted
        def deliver(event: ProgressEvent) -> None:
            try:
                callback(event)
            except Exception:
                logger.exception("progress callback failed for sheet=%s", event.sheet_name)

        return deliver


def _describe_key(key: tuple[Any, ...]) -> str:
    return "(" + ", ".join(v.isoformat() if isinstance(v, date) else str(v) for v in key) + ")"


def _error_type(error: Exception) -> str:
    if isinstance(error, DuplicateRecordError):
        return "DUPLICATE_RECORD"
    if isinstance(error, UnresolvedReferenceError):
        return "UNRESOLVED_REFERENCE"
    if isinstance(error, RecordBuildError):
        return "RECORD_BUILD"
    return "STORE_ERROR"
