"""Unified error hierarchy for sheets-rewrite.

All custom exception classes are defined in domain-specific modules within
this package. This __init__.py re-exports everything for convenient access.

Usage:
    from sheets_rewrite.core.errors import ErrorKind, CompletionError

    try:
        await scheduler.submit(operation)
    except RewriteError as e:
        print(e.kind, e.user_message)
"""

from sheets_rewrite.core.errors.base import (
    ERROR_MAPPINGS,
    ErrorKind,
    ErrorMapping,
    ErrorSeverity,
    RewriteError,
    coerce_error_kind,
    get_error_mapping,
)
from sheets_rewrite.core.errors.completion import (
    CompletionError,
    ConfigurationError,
    InvalidRequestError,
)
from sheets_rewrite.core.errors.scheduler import (
    ExecutionTimeoutError,
    QueueClearedError,
    QueueFullError,
    QueueTimeoutError,
    SchedulerError,
)

__all__ = [
    # Kinds / registry
    "ERROR_MAPPINGS",
    "ErrorKind",
    "ErrorMapping",
    "ErrorSeverity",
    "RewriteError",
    "coerce_error_kind",
    "get_error_mapping",
    # Completion / configuration errors
    "CompletionError",
    "ConfigurationError",
    "InvalidRequestError",
    # Scheduler errors
    "SchedulerError",
    "QueueFullError",
    "QueueTimeoutError",
    "ExecutionTimeoutError",
    "QueueClearedError",
]
