from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from ..db.store import RecordStore
from ..excel.reader import parse_file
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import AppConfig
from ..models.import_result import (
    ImportResult,
    RunResult,
    SheetState,
    SheetStatus,
    SheetValidation,
)
from ..models.record_schema import get_schemas
from ..models.sheet_data import SheetData
from ..models.validation_issue import ValidationIssue, ValidationSummary
from ..validation.validator import validate
from .importer import BulkImporter, SheetBlockedError
from .progress import RowProgressBar, SheetProgressIndicator
from .summary import render_sheet_line, render_validation_line

"""Workbook orchestration: parsed sheets -> validation gate -> import, one sheet at a time.

ImportQueue owns the per-sheet loop. Each sheet walks the SheetStatus state
machine; a blocked sheet never reaches the importer and any exception raised
while handling one sheet becomes that sheet's failed result, so the queue
always moves on to the next sheet.
"""

__all__ = [
    "ImportQueue",
    "process_workbook",
    "select_sheets",
]

logger = logging.getLogger(__name__)

MAX_LOGGED_ISSUES = 20


@dataclass
class _SheetTask:
    sheet: SheetData
    state: SheetState


class ImportQueue:
    """Sequential per-sheet import tasks for one workbook."""

    def __init__(
        self,
        importer: BulkImporter,
        app_config: AppConfig,
        *,
        validate_only: bool = False,
        run_date: date | None = None,
        show_progress: bool | None = None,
        file_name: str = "",
    ) -> None:
        self.importer = importer
        self.app_config = app_config
        self.validate_only = validate_only
        self.run_date = run_date
        self.show_progress = show_progress
        self.file_name = file_name
        self.schemas = get_schemas(app_config.column_aliases)
        self._tasks: list[_SheetTask] = []
        self._unclassified: list[str] = []

    def add(self, sheet: SheetData) -> None:
        if sheet.record_type is None:
            logger.warning("sheet=%s could not be classified; skipped", sheet.sheet_name)
            self._unclassified.append(sheet.sheet_name)
            return
        self._tasks.append(_SheetTask(sheet, SheetState(sheet.sheet_name)))

    def extend(self, sheets: Iterable[SheetData]) -> None:
        for sheet in sheets:
            self.add(sheet)

    @property
    def states(self) -> dict[str, SheetStatus]:
        return {t.sheet.sheet_name: t.state.status for t in self._tasks}

    def run(self) -> RunResult:
        start = self.importer.clock()
        results: list[ImportResult] = []
        blocked: list[SheetValidation] = []
        validated: list[SheetValidation] = []
        indicator = SheetProgressIndicator(self.file_name, len(self._tasks), enabled=self.show_progress)

        for task in self._tasks:
            indicator.start_sheet(task.sheet.sheet_name)
            outcome = self._run_task(task)
            if isinstance(outcome, ImportResult):
                results.append(outcome)
                logger.info(render_sheet_line(outcome))
                indicator.finish_sheet(outcome.status.value, outcome.success)
            elif task.state.status is SheetStatus.BLOCKED:
                blocked.append(outcome)
                indicator.finish_sheet("blocked")
            else:
                validated.append(outcome)
                indicator.finish_sheet("ready")

        return RunResult(
            file_name=self.file_name,
            results=tuple(results),
            blocked=tuple(blocked),
            validated=tuple(validated),
            unclassified=tuple(self._unclassified),
            elapsed_seconds=self.importer.clock() - start,
            statuses=self.states,
        )

    def _run_task(self, task: _SheetTask) -> ImportResult | SheetValidation:
        sheet, state = task.sheet, task.state
        record_type = sheet.record_type
        assert record_type is not None  # unclassified sheets never become tasks
        state.advance(SheetStatus.PARSED)

        state.advance(SheetStatus.VALIDATING)
        config = self.app_config.import_config(record_type, run_date=self.run_date)
        try:
            rows = self.importer.prepare_rows(sheet.rows, record_type, config, sheet.date_context)
            issues = validate(rows, record_type, schemas=self.schemas)
        except Exception as e:
            logger.exception("sheet=%s validation crashed", sheet.sheet_name)
            state.advance(SheetStatus.FAILED)
            return self._failed(sheet, f"validation failed: {e}")

        summary = ValidationSummary.from_issues(issues)
        logger.info(render_validation_line(sheet.sheet_name, summary))
        self._log_issues(sheet.sheet_name, issues)
        verdict = SheetValidation(sheet.sheet_name, record_type, summary)
        if summary.blocked:
            state.advance(SheetStatus.BLOCKED)
            return verdict
        state.advance(SheetStatus.READY)
        if self.validate_only:
            return verdict

        state.advance(SheetStatus.IMPORTING)
        bar = RowProgressBar(sheet.sheet_name, len(sheet.rows), enabled=self.show_progress)
        unsubscribe = self.importer.progress.subscribe(bar)
        try:
            result = self.importer.import_sheet(sheet, config)
        except SheetBlockedError as e:
            result = self._failed(sheet, str(e))
        except Exception as e:
            logger.exception("sheet=%s import crashed", sheet.sheet_name)
            result = self._failed(sheet, f"import failed: {e}")
        finally:
            unsubscribe()
            bar.close()
        state.advance(result.status)
        return result

    def _failed(self, sheet: SheetData, message: str) -> ImportResult:
        assert sheet.record_type is not None
        if self.importer.error_log is not None:
            self.importer.error_log.record(sheet.sheet_name, None, "SHEET_FAILED", message)
        total = len(sheet.rows)
        return ImportResult(
            sheet_name=sheet.sheet_name,
            record_type=sheet.record_type,
            status=SheetStatus.FAILED,
            total=total,
            unprocessed=total,
            fatal_error=message,
        )

    def _log_issues(self, sheet_name: str, issues: Sequence[ValidationIssue]) -> None:
        error_log = self.importer.error_log
        for n, issue in enumerate(issues):
            if issue.is_blocking and error_log is not None:
                error_log.record(sheet_name, issue.row, "VALIDATION_ERROR", f"{issue.column}: {issue.message}")
            if n < MAX_LOGGED_ISSUES:
                log = logger.warning if issue.is_blocking else logger.info
                log("sheet=%s row=%d %s=%r %s: %s", sheet_name, issue.row, issue.column, issue.value,
                    issue.severity.value, issue.message)
        if len(issues) > MAX_LOGGED_ISSUES:
            logger.info("sheet=%s %d more issue(s) not shown", sheet_name, len(issues) - MAX_LOGGED_ISSUES)


def select_sheets(sheets: Sequence[SheetData], sheet_names: Iterable[str] | None) -> list[SheetData]:
    """Sheets to process, in workbook order. Unknown names are logged and ignored."""
    if sheet_names is None:
        return list(sheets)
    wanted = list(dict.fromkeys(sheet_names))
    present = {s.sheet_name for s in sheets}
    for name in wanted:
        if name not in present:
            logger.warning("sheet=%s not found in workbook", name)
    return [s for s in sheets if s.sheet_name in wanted]


def process_workbook(
    path: Path | str,
    app_config: AppConfig,
    store: RecordStore,
    *,
    sheet_names: Iterable[str] | None = None,
    validate_only: bool = False,
    run_date: date | None = None,
    clock: Callable[[], float] = time.monotonic,
    error_log: ErrorLogBuffer | None = None,
    show_progress: bool | None = None,
) -> RunResult:
    """Parse one workbook and run every selected sheet through the queue.

    Args:
        path: workbook (.xlsx, .xlsm or .csv) to import
        app_config: loaded run configuration
        store: target RecordStore (PostgresStore, or InMemoryStore for dry runs)
        sheet_names: restrict the run to these sheets; None means all
        validate_only: stop every sheet after validation
        run_date: default for empty date fields (today when None)
        clock: monotonic clock for per-sheet deadlines
        error_log: buffer for JSON-lines error records; one is created in
            ``app_config.error_log_dir`` when None
        show_progress: force progress bars on or off (TTY detection when None)

    Returns:
        RunResult with one entry per imported, blocked, validated or
        unclassified sheet. The error log is flushed before returning.

    Raises:
        ParseError: the workbook cannot be read; fatal for the run
    """
    path = Path(path)
    sheets = parse_file(path, null_sentinels=app_config.null_sentinels, extra_aliases=app_config.column_aliases)
    logger.info("file=%s sheets=%d", path.name, len(sheets))

    if error_log is None:
        error_log = ErrorLogBuffer(app_config.error_log_dir, file_name=path.name)
    else:
        error_log.file_name = path.name
    importer = BulkImporter(store, clock=clock, error_log=error_log, schemas=get_schemas(app_config.column_aliases))
    queue = ImportQueue(
        importer, app_config, validate_only=validate_only, run_date=run_date,
        show_progress=show_progress, file_name=path.name,
    )
    queue.extend(select_sheets(sheets, sheet_names))
    run = queue.run()

    try:
        log_path = error_log.flush()
    except OSError as e:
        logger.warning("failed writing error log: %s", e)
    else:
        if log_path is not None:
            logger.info("error log: %s", log_path)
    return run
