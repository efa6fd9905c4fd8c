"""Error kinds and the static error-kind registry.

Every failure that leaves the execution core is expressed as one member of
the closed ``ErrorKind`` enumeration. ``ERROR_MAPPINGS`` holds the static
configuration for each kind (HTTP status equivalent, severity, and the
user-facing and log messages); it is process-wide and never mutated.

Usage:
    from sheets_rewrite.core.errors.base import ErrorKind, get_error_mapping

    mapping = get_error_mapping(ErrorKind.RATE_LIMITED)
    mapping.http_status  # 429
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Union


class ErrorKind(str, Enum):
    """Closed set of classified failure categories."""

    INVALID_PROMPT = "INVALID_PROMPT"
    INVALID_TEXT = "INVALID_TEXT"
    API_UNAVAILABLE = "API_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"


class ErrorSeverity(str, Enum):
    """Severity levels used to route error records to a log level."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ErrorMapping:
    """Static configuration entry for one error kind."""

    http_status: int
    severity: ErrorSeverity
    user_message: str
    log_message: str


ERROR_MAPPINGS: Mapping[ErrorKind, ErrorMapping] = MappingProxyType(
    {
        ErrorKind.INVALID_PROMPT: ErrorMapping(
            http_status=400,
            severity=ErrorSeverity.LOW,
            user_message="The prompt parameter is required and must be a non-empty string",
            log_message="Request validation failed: invalid prompt parameter",
        ),
        ErrorKind.INVALID_TEXT: ErrorMapping(
            http_status=400,
            severity=ErrorSeverity.LOW,
            user_message="The main text parameter is required and must be a non-empty string",
            log_message="Request validation failed: invalid text parameter",
        ),
        ErrorKind.API_UNAVAILABLE: ErrorMapping(
            http_status=503,
            severity=ErrorSeverity.HIGH,
            user_message="The AI service is temporarily unavailable. Please try again later.",
            log_message="Completion API is unavailable or misconfigured",
        ),
        ErrorKind.RATE_LIMITED: ErrorMapping(
            http_status=429,
            severity=ErrorSeverity.MEDIUM,
            user_message="Rate limit exceeded. Please wait a moment before trying again.",
            log_message="Rate limit exceeded for completion API",
        ),
        ErrorKind.TIMEOUT: ErrorMapping(
            http_status=408,
            severity=ErrorSeverity.MEDIUM,
            user_message="Request timed out. Please try again.",
            log_message="Request to completion API timed out",
        ),
        ErrorKind.INTERNAL_ERROR: ErrorMapping(
            http_status=500,
            severity=ErrorSeverity.CRITICAL,
            user_message="An internal error occurred. Please try again later.",
            log_message="Internal server error occurred",
        ),
        ErrorKind.METHOD_NOT_ALLOWED: ErrorMapping(
            http_status=405,
            severity=ErrorSeverity.LOW,
            user_message="Only POST requests are allowed",
            log_message="Invalid HTTP method used",
        ),
    }
)


def coerce_error_kind(value: Union[str, ErrorKind, None]) -> Optional[ErrorKind]:
    """Return the ErrorKind named by ``value``, or None if it names none."""
    if value is None or isinstance(value, ErrorKind):
        return value
    try:
        return ErrorKind(str(value).strip().upper())
    except ValueError:
        return None


def get_error_mapping(kind: Union[str, ErrorKind, None]) -> ErrorMapping:
    """Look up the static entry for ``kind``; unmapped kinds get INTERNAL_ERROR."""
    resolved = coerce_error_kind(kind)
    if resolved is None:
        return ERROR_MAPPINGS[ErrorKind.INTERNAL_ERROR]
    return ERROR_MAPPINGS.get(resolved, ERROR_MAPPINGS[ErrorKind.INTERNAL_ERROR])


class RewriteError(Exception):
    """Base class for every classified failure raised by the core.

    Attributes:
        kind: The classified error kind.
        message: Human-readable description (internal; never shown to users).
    """

    default_kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind

    @property
    def http_status(self) -> int:
        return get_error_mapping(self.kind).http_status

    @property
    def user_message(self) -> str:
        return get_error_mapping(self.kind).user_message
