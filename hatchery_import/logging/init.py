from __future__ import annotations

import logging
import sys

"""Logging initialization with labeled prefixes (INFO|WARN|ERROR|SUMMARY).

The application logger is the package logger ``hatchery_import``, so every
module logger created with ``logging.getLogger(__name__)`` inside the
package is routed through the same handler and formatter.
"""

__all__ = [
    "SUMMARY_LEVEL",
    "LOGGER_NAME",
    "LabeledFormatter",
    "setup_logging",
    "get_logger",
    "log_summary",
    "reset_logging",
]

# Custom SUMMARY level (between INFO=20 and WARNING=30)
SUMMARY_LEVEL = 25
LOGGER_NAME = "hatchery_import"

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """Formats records as ``LABEL message``.

    Tracebacks (``logger.exception``) are appended only in debug mode,
    whatever the level of the record carrying them.
    """

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
        SUMMARY_LEVEL: "SUMMARY",
    }

    def __init__(self, debug: bool = False) -> None:
        super().__init__()
        self.debug = debug

    def format(self, record: logging.LogRecord) -> str:
        level_label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        message = f"{level_label} {record.getMessage()}"
        if record.exc_info and self.debug:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(debug: bool = False) -> logging.Logger:
    """Configure the application logger (stdout, labeled prefixes).

    Idempotent: a second call only adjusts the level.
    """
    global _logger

    level = logging.DEBUG if debug else logging.INFO
    if _logger is not None:
        _logger.setLevel(level)
        for handler in _logger.handlers:
            handler.setLevel(level)
            if isinstance(handler.formatter, LabeledFormatter):
                handler.formatter.debug = debug
        return _logger

    logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(LabeledFormatter(debug=debug))
    logger.addHandler(handler)

    # avoid duplicate output through the root logger
    logger.propagate = False

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    if _logger is None:
        return setup_logging()
    return _logger


def log_summary(message: str) -> None:
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Drop handlers and forget the configured logger. Mainly for tests."""
    global _logger
    if _logger is not None:
        for handler in _logger.handlers[:]:
            _logger.removeHandler(handler)
        _logger.propagate = True
        _logger.setLevel(logging.NOTSET)
    _logger = None
