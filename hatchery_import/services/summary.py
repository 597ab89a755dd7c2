from __future__ import annotations

from ..models.import_result import ImportResult, RunResult, SheetStatus
from ..models.validation_issue import ValidationSummary

"""Line rendering for the operator report.

Formats (space separated key=value, parsed by scripts and contract tests):
    VALIDATION sheet=<name> errors=<n> warnings=<n> status=<blocked|ready>
    SHEET name=<name> status=<status> success=<n> failure=<n> skipped=<n> unprocessed=<n>
    SUMMARY sheets=<n> completed=<n> failed=<n> timed_out=<n> blocked=<n> unclassified=<n>
            success=<n> failure=<n> skipped=<n> unprocessed=<n> elapsed_sec=<x>
"""

__all__ = [
    "format_seconds",
    "render_validation_line",
    "render_sheet_line",
    "render_summary_line",
]


def format_seconds(seconds: float) -> str:
    """Plain decimal without exponent; integral values have no fraction."""
    if seconds == 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    if seconds < 0.01:
        return f"{seconds:.6f}".rstrip("0").rstrip(".")
    return f"{seconds:.3f}".rstrip("0").rstrip(".")


def _quote(name: str) -> str:
    # sheet names may contain spaces; keep one token per field
    return name.replace(" ", "_") if name else "-"


def render_validation_line(sheet_name: str, summary: ValidationSummary) -> str:
    status = "blocked" if summary.blocked else "ready"
    return (
        f"VALIDATION sheet={_quote(sheet_name)} errors={summary.error_count} "
        f"warnings={summary.warning_count} status={status}"
    )


def render_sheet_line(result: ImportResult) -> str:
    """Render the SHEET line for one imported sheet.

    Format:
    SHEET name={name} status={completed|failed|timed_out} success={n}
    failure={n} skipped={n} unprocessed={n}

    Args:
        result: outcome of one import_rows call

    Returns:
        Single line; spaces in the sheet name become underscores.
    """
    return (
        f"SHEET name={_quote(result.sheet_name)} status={result.status.value} "
        f"success={result.success} failure={result.failure} "
        f"skipped={result.skipped} unprocessed={result.unprocessed}"
    )


def render_summary_line(run: RunResult) -> str:
    """Render the SUMMARY line closing a run.

    Format:
    SUMMARY sheets={n} completed={n} failed={n} timed_out={n} blocked={n}
    unclassified={n} success={n} failure={n} skipped={n} unprocessed={n}
    elapsed_sec={seconds}

    Args:
        run: aggregated RunResult of one workbook

    Returns:
        Single line. ``sheets`` counts every sheet of the workbook, imported
        or not; elapsed seconds never use exponent notation.

    Examples:
        >>> render_summary_line(RunResult(file_name="wb.xlsx", elapsed_seconds=2.0))
        'SUMMARY sheets=0 completed=0 failed=0 timed_out=0 blocked=0 unclassified=0 success=0 failure=0 skipped=0 unprocessed=0 elapsed_sec=2'
    """
    sheets = len(run.results) + len(run.blocked) + len(run.validated) + len(run.unclassified)
    return (
        f"SUMMARY sheets={sheets} "
        f"completed={run.count(SheetStatus.COMPLETED)} "
        f"failed={run.count(SheetStatus.FAILED)} "
        f"timed_out={run.count(SheetStatus.TIMED_OUT)} "
        f"blocked={len(run.blocked)} "
        f"unclassified={len(run.unclassified)} "
        f"success={run.success} "
        f"failure={run.failure} "
        f"skipped={run.skipped} "
        f"unprocessed={run.unprocessed} "
        f"elapsed_sec={format_seconds(run.elapsed_seconds)}"
    )
