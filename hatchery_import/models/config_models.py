from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from .record_type import RecordType

if TYPE_CHECKING:
    from ..services.progress import ProgressEvent

"""Configuration dataclasses.

``AppConfig`` is what the YAML loader produces for a whole run;
``ImportConfig`` is the per-sheet options object handed to the importer.
"""

__all__ = [
    "DEFAULT_SAMPLE_SIZE",
    "DEFAULT_TIMEOUT_SECONDS",
    "DatabaseConfig",
    "ImportConfig",
    "AppConfig",
]

DEFAULT_SAMPLE_SIZE = 648
DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection fallback.

    Environment variables (and .env) take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    """Options for one import_rows call.

    Attributes:
        record_type: target record type of the sheet
        skip_duplicates: True -> rows whose natural key exists are skipped;
            False -> they fail with a duplicate error
        create_missing_entities: create unknown flocks / machines / batches
        default_values: field -> value used when the row leaves it empty
        sample_size: global default for sample size fields
        on_progress: optional subscriber for ProgressEvent
        timeout_seconds: per-sheet deadline, checked between rows
        run_date: global default for date fields (today when None)
    """
    record_type: RecordType
    skip_duplicates: bool = True
    create_missing_entities: bool = False
    default_values: Mapping[str, Any] = field(default_factory=dict)
    sample_size: int = DEFAULT_SAMPLE_SIZE
    on_progress: Callable[[ProgressEvent], None] | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    run_date: date | None = None


@dataclass(frozen=True)
class AppConfig:
    """Root configuration for a CLI run (config/import.yml)."""
    skip_duplicates: bool = True
    create_missing_entities: bool = False
    sample_size: int = DEFAULT_SAMPLE_SIZE
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    default_values: dict[str, dict[str, Any]] = field(default_factory=dict)  # record type -> field -> value
    null_sentinels: frozenset[str] | None = None  # upper-cased
    column_aliases: dict[str, dict[str, list[str]]] = field(default_factory=dict)
    error_log_dir: str = "./logs"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    def import_config(
        self,
        record_type: RecordType,
        *,
        on_progress: Callable[[ProgressEvent], None] | None = None,
        run_date: date | None = None,
    ) -> ImportConfig:
        """Per-sheet ImportConfig; default_values are looked up by record type value."""
        return ImportConfig(
            record_type=record_type,
            skip_duplicates=self.skip_duplicates,
            create_missing_entities=self.create_missing_entities,
            default_values=dict(self.default_values.get(record_type.value, {})),
            sample_size=self.sample_size,
            on_progress=on_progress,
            timeout_seconds=self.timeout_seconds,
            run_date=run_date,
        )
