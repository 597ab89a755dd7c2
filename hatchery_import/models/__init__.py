"""Domain models for the hatchery workbook importer."""

from .config_models import AppConfig, DatabaseConfig, ImportConfig
from .import_result import ImportResult, RowError, RunResult, SheetStatus
from .record_type import QAKind, RecordType
from .row_data import RowData
from .sheet_data import DateContext, SheetData
from .validation_issue import Severity, ValidationIssue, ValidationSummary

__all__ = [
    # Configuration models
    "AppConfig",
    "DatabaseConfig",
    "ImportConfig",
    # Parsed input
    "RecordType",
    "QAKind",
    "RowData",
    "DateContext",
    "SheetData",
    # Validation
    "Severity",
    "ValidationIssue",
    "ValidationSummary",
    # Import outcome
    "ImportResult",
    "RowError",
    "RunResult",
    "SheetStatus",
]
