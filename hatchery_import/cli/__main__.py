from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from ..config.loader import ConfigError, load_config_or_default
from ..db.pg_store import PostgresStore
from ..db.store import InMemoryStore, RecordStore, StoreError, StoreUnavailableError
from ..excel.reader import ParseError, inspect_sheets, parse_file
from ..logging.init import log_summary, setup_logging
from ..models.import_result import RunResult
from ..services.orchestrator import process_workbook
from ..services.summary import render_summary_line

"""CLI entrypoint: hatchery-import WORKBOOK [options].

Exit codes:
    0  every selected sheet imported (or validated) without a problem
    2  partial: a sheet was blocked / failed / timed out, or a row failed
    1  fatal: bad config, unreadable workbook, database unreachable
"""

__all__ = [
    "EXIT_SUCCESS_ALL",
    "EXIT_PARTIAL_FAILURE",
    "EXIT_FATAL",
    "main",
]

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; override=True so its connection settings win over the process env."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="hatchery-import", description="Hatchery workbook bulk importer")
    p.add_argument("workbook", type=Path, help="Workbook to import (.xlsx / .xlsm / .csv)")
    p.add_argument("--config", type=Path, default=None, help="YAML config (default: config/import.yml if present)")
    p.add_argument("--sheets", nargs="+", metavar="NAME", default=None, help="Only process these sheets")
    p.add_argument("--validate-only", action="store_true", help="Validate sheets without importing")
    p.add_argument("--inspect-data", action="store_true", help="Print detected sheet types & first rows then exit")
    p.add_argument("--dry-run", action="store_true", help="Import into an in-memory store (no database)")
    p.add_argument("--init-schema", action="store_true", help="Create the database tables if missing")
    p.add_argument("--timeout", type=float, default=None, metavar="SEC", help="Per-sheet import timeout")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _inspect_data(workbook: Path, cfg) -> int:
    try:
        sheets = parse_file(workbook, null_sentinels=cfg.null_sentinels, extra_aliases=cfg.column_aliases)
    except ParseError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    print(f"FILE: {workbook.name}")
    for line in inspect_sheets(sheets):
        print(line)
    return EXIT_SUCCESS_ALL


def _exit_code(run: RunResult, validate_only: bool) -> int:
    if not run.results and not run.blocked and not run.validated:
        # nothing classified / selected
        return EXIT_PARTIAL_FAILURE
    if validate_only:
        return EXIT_PARTIAL_FAILURE if run.blocked else EXIT_SUCCESS_ALL
    return EXIT_SUCCESS_ALL if run.fully_imported else EXIT_PARTIAL_FAILURE


def main(argv: list[str] | None = None) -> int:
    # only read sys.argv when argv is None ([] must stay empty under pytest)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(debug=args.debug)
    if args.debug:
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config_or_default(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    if args.timeout is not None:
        cfg = replace(cfg, timeout_seconds=args.timeout)

    workbook: Path = args.workbook
    if not workbook.exists():
        logger.error(f"workbook not found: {workbook}")
        return EXIT_FATAL

    if args.inspect_data:
        return _inspect_data(workbook, cfg)

    store: RecordStore
    pg = None
    if args.dry_run or args.validate_only:
        store = InMemoryStore()
        mode = "dry-run" if args.dry_run else "validate-only"
    else:
        try:
            pg = PostgresStore.connect(cfg.database)
            if args.init_schema:
                pg.ensure_schema()
        except (StoreUnavailableError, StoreError) as e:
            logger.error(f"database: {e}")
            if pg is not None:
                pg.close()
            return EXIT_FATAL
        store = pg
        mode = "live"

    logger.info(f"mode={mode} workbook={workbook}")
    try:
        run = process_workbook(
            workbook, cfg, store, sheet_names=args.sheets, validate_only=args.validate_only,
        )
    except ParseError as e:
        logger.error(f"parse: {e}")
        return EXIT_FATAL
    finally:
        if pg is not None:
            pg.close()

    summary_line = render_summary_line(run)
    # log_summary adds the "SUMMARY " label itself
    log_summary(summary_line[len("SUMMARY "):])
    return _exit_code(run, args.validate_only)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
