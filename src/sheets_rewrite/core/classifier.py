"""Error classification for the execution core.

Raw failures of the remote completion call arrive in arbitrary shapes:
httpx status errors, transport errors, OS-level connection errors, SDK
exceptions carrying ``status``/``code`` attributes. This module is the one
boundary where those shapes are inspected. ``classify_failure`` reduces a
raw exception to a ``RawFailure`` (status, code, name, message) exactly
once and maps it onto the closed ``ErrorKind`` enumeration; every
downstream component (retry executor, scheduler, service) sees only
``RewriteError`` instances.

Classification order (first match wins):
    1. HTTP status equivalent: 400 → INVALID_TEXT, 401/403 → API_UNAVAILABLE,
       408 → TIMEOUT, 429 → RATE_LIMITED, 503 → API_UNAVAILABLE,
       anything else → INTERNAL_ERROR
    2. Low-level code: ECONNREFUSED/ENOTFOUND/ECONNRESET → API_UNAVAILABLE,
       ETIMEDOUT → TIMEOUT
    3. Error name: TimeoutError → TIMEOUT, ValidationError → INVALID_TEXT
    4. Default → INTERNAL_ERROR

The module also builds the user-facing/internal error pair for a kind and
routes internal records to the log at the kind's severity.
"""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import socket
import traceback
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional, Tuple, Union

import httpx
import pydantic

from sheets_rewrite.core.context import get_endpoint, get_request_id
from sheets_rewrite.core.errors import (
    CompletionError,
    ErrorKind,
    ErrorSeverity,
    RewriteError,
    coerce_error_kind,
    get_error_mapping,
)
from sheets_rewrite.core.observability.redaction import sanitize_error

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
TRANSIENT_CODES = frozenset({"ECONNREFUSED", "ENOTFOUND", "ETIMEDOUT", "ECONNRESET"})
TRANSIENT_NAMES = frozenset({"TimeoutError", "NetworkError"})

_STATUS_KINDS: Dict[int, ErrorKind] = {
    400: ErrorKind.INVALID_TEXT,
    401: ErrorKind.API_UNAVAILABLE,
    403: ErrorKind.API_UNAVAILABLE,
    408: ErrorKind.TIMEOUT,
    429: ErrorKind.RATE_LIMITED,
    503: ErrorKind.API_UNAVAILABLE,
}

_CODE_KINDS: Dict[str, ErrorKind] = {
    "ECONNREFUSED": ErrorKind.API_UNAVAILABLE,
    "ENOTFOUND": ErrorKind.API_UNAVAILABLE,
    "ECONNRESET": ErrorKind.API_UNAVAILABLE,
    "ETIMEDOUT": ErrorKind.TIMEOUT,
}

_NAME_KINDS: Dict[str, ErrorKind] = {
    "TimeoutError": ErrorKind.TIMEOUT,
    "ValidationError": ErrorKind.INVALID_TEXT,
}

_SEVERITY_LEVELS: Dict[ErrorSeverity, int] = {
    ErrorSeverity.LOW: logging.INFO,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


# ---------------------------------------------------------------------------
# Boundary conversion
# ---------------------------------------------------------------------------


def _status_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _code_of(error: BaseException) -> Optional[str]:
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code
    if isinstance(error, socket.gaierror):
        return "ENOTFOUND"
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return "ETIMEDOUT"
    if isinstance(error, (httpx.ConnectError, ConnectionRefusedError)):
        return "ECONNREFUSED"
    if isinstance(error, (httpx.RemoteProtocolError, httpx.ReadError, ConnectionResetError)):
        return "ECONNRESET"
    if isinstance(error, OSError) and error.errno is not None:
        name = errno.errorcode.get(error.errno)
        if name in TRANSIENT_CODES:
            return name
    return None


def _name_of(error: BaseException) -> str:
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return "TimeoutError"
    if isinstance(error, pydantic.ValidationError):
        return "ValidationError"
    if isinstance(error, httpx.NetworkError):
        return "NetworkError"
    return type(error).__name__


@dataclass(frozen=True)
class RawFailure:
    """The classifiable facets of a raw failure, extracted once."""

    message: str
    status: Optional[int] = None
    code: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "RawFailure":
        return cls(
            message=str(error) or type(error).__name__,
            status=_status_of(error),
            code=_code_of(error),
            name=_name_of(error),
        )


def determine_error_kind(raw: Union[RawFailure, BaseException, None]) -> ErrorKind:
    """Map a raw failure onto the closed ErrorKind enumeration."""
    if raw is None:
        return ErrorKind.INTERNAL_ERROR
    if isinstance(raw, BaseException):
        raw = RawFailure.from_exception(raw)

    if raw.status is not None:
        return _STATUS_KINDS.get(raw.status, ErrorKind.INTERNAL_ERROR)
    if raw.code:
        return _CODE_KINDS.get(raw.code, ErrorKind.INTERNAL_ERROR)
    if raw.name:
        return _NAME_KINDS.get(raw.name, ErrorKind.INTERNAL_ERROR)
    return ErrorKind.INTERNAL_ERROR


def classify_failure(error: BaseException) -> RewriteError:
    """Convert any exception into a classified RewriteError.

    Already-classified errors pass through unchanged. Anything else is
    reduced to a RawFailure and wrapped in a CompletionError that keeps the
    original as ``__cause__``.
    """
    if isinstance(error, RewriteError):
        return error

    raw = RawFailure.from_exception(error)
    classified = CompletionError(
        raw.message,
        determine_error_kind(raw),
        status=raw.status,
        code=raw.code,
        name=raw.name,
    )
    classified.__cause__ = error
    return classified.with_traceback(error.__traceback__)


def is_transient(error: RewriteError) -> bool:
    """True if the error's status, code or name is in a standard transient set."""
    status = getattr(error, "status", None)
    code = getattr(error, "code", None)
    name = getattr(error, "name", None)
    return status in TRANSIENT_STATUSES or code in TRANSIENT_CODES or name in TRANSIENT_NAMES


# ---------------------------------------------------------------------------
# User-facing / internal error records
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ErrorContext:
    """Request details attached to internal error records."""

    timestamp: str = field(default_factory=_utc_now)
    request_id: Optional[str] = None
    endpoint: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ApiError:
    """User-safe error: a stable kind plus its user message."""

    kind: ErrorKind
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.kind.value, "message": self.message}


@dataclass(frozen=True)
class InternalErrorRecord:
    """Richer error record destined for the log only."""

    kind: ErrorKind
    message: str
    severity: ErrorSeverity
    context: ErrorContext
    original_error: Optional[Dict[str, Any]] = None
    stack: Optional[str] = None

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "code": self.kind.value,
            "message": self.message,
            "severity": self.severity.value,
            "timestamp": self.context.timestamp,
            "requestId": self.context.request_id,
            "endpoint": self.context.endpoint,
            "hasOriginalError": self.original_error is not None,
            "errorType": (self.original_error or {}).get("name"),
        }


class ApiErrorResult(NamedTuple):
    api_error: ApiError
    http_status: int
    internal_error: InternalErrorRecord


def _resolve_context(context: Union[ErrorContext, Mapping[str, Any], None]) -> ErrorContext:
    if isinstance(context, ErrorContext):
        resolved = context
    else:
        values = {k: v for k, v in dict(context or {}).items() if v is not None}
        resolved = ErrorContext(**values)
    # Fall back to the request-scoped context for anything the caller omitted
    if resolved.request_id is None and get_request_id():
        resolved = ErrorContext(**{**resolved.to_dict(), "request_id": get_request_id()})
    if resolved.endpoint is None and get_endpoint():
        resolved = ErrorContext(**{**resolved.to_dict(), "endpoint": get_endpoint()})
    return resolved


def _stack_of(error: Any) -> Optional[str]:
    if not isinstance(error, BaseException) or error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def create_api_error(
    kind: Union[ErrorKind, str],
    raw_error: Any = None,
    context: Union[ErrorContext, Mapping[str, Any], None] = None,
) -> ApiErrorResult:
    """Build the user-facing error and the internal log record for ``kind``.

    Args:
        kind: Error kind (unmapped values fall back to INTERNAL_ERROR).
        raw_error: Optional original failure; a sanitized copy is attached.
        context: Optional request context (fields may be partial).

    Returns:
        ApiErrorResult(api_error, http_status, internal_error)
    """
    resolved_kind = coerce_error_kind(kind) or ErrorKind.INTERNAL_ERROR
    mapping = get_error_mapping(resolved_kind)

    internal = InternalErrorRecord(
        kind=resolved_kind,
        message=mapping.log_message,
        severity=mapping.severity,
        context=_resolve_context(context),
        original_error=sanitize_error(raw_error),
        stack=_stack_of(raw_error),
    )
    return ApiErrorResult(
        api_error=ApiError(kind=resolved_kind, message=mapping.user_message),
        http_status=mapping.http_status,
        internal_error=internal,
    )


AlertHook = Callable[[InternalErrorRecord], None]


def log_error(
    record: InternalErrorRecord,
    *,
    include_stack: bool = True,
    alert: Optional[AlertHook] = None,
    log: Optional[logging.Logger] = None,
) -> None:
    """Log an internal error record at the level of its severity.

    Critical records are additionally handed to ``alert`` when given.
    Stack traces are only logged when ``include_stack`` is set, which the
    service turns off in production.
    """
    target = log or logger
    level = _SEVERITY_LEVELS.get(record.severity, logging.ERROR)
    target.log(
        level,
        "API Error (%s): %s",
        record.severity.value.capitalize(),
        json.dumps(record.to_log_dict()),
    )

    if record.severity is ErrorSeverity.CRITICAL and alert is not None:
        alert(record)

    if record.stack and include_stack:
        target.error("Stack trace: %s", record.stack)


def handle_error(
    kind: Union[ErrorKind, str],
    raw_error: Any = None,
    context: Union[ErrorContext, Mapping[str, Any], None] = None,
    *,
    include_stack: bool = True,
    alert: Optional[AlertHook] = None,
) -> Tuple[ApiError, int]:
    """Create and log an error for ``kind``; return the user-facing pair."""
    result = create_api_error(kind, raw_error, context)
    log_error(result.internal_error, include_stack=include_stack, alert=alert)
    return result.api_error, result.http_status


def error_to_response(error: BaseException) -> Tuple[Dict[str, Any], int]:
    """Convert any exception into the stable error payload and HTTP status.

    Unknown exception shapes are classified first, so callers always get a
    ``{"code", "message"}`` pair from the closed kind set.
    """
    classified = classify_failure(error)
    mapping = get_error_mapping(classified.kind)
    api_error = ApiError(kind=classified.kind, message=mapping.user_message)
    return {"success": False, "error": api_error.to_dict()}, mapping.http_status


def _header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    for key, value in headers.items():
        if str(key).lower() == name:
            return str(value)
    return None


def create_error_context(
    headers: Optional[Mapping[str, Any]] = None,
    *,
    endpoint: Optional[str] = None,
    remote_addr: Optional[str] = None,
    body: Optional[Mapping[str, Any]] = None,
) -> ErrorContext:
    """Build an ErrorContext from incoming request details.

    The request id comes from the ``x-request-id`` header, then the body's
    ``requestId``/``request_id``, then the request-scoped context. The
    origin address prefers ``x-forwarded-for`` over the socket address.
    """
    headers = headers or {}
    body = body or {}
    request_id = (
        _header(headers, "x-request-id")
        or body.get("requestId")
        or body.get("request_id")
        or get_request_id()
        or None
    )
    return ErrorContext(
        request_id=request_id,
        endpoint=endpoint or get_endpoint() or None,
        user_agent=_header(headers, "user-agent"),
        ip=_header(headers, "x-forwarded-for") or remote_addr,
    )
