"""Row validation for parsed sheets."""

from .validator import has_blocking_errors, summarize, validate

__all__ = [
    "validate",
    "summarize",
    "has_blocking_errors",
]
