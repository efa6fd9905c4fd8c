"""Sensitive data redaction and error sanitization.

Provides pattern-based redaction for credentials in free text, field-name
based stripping for structured data, and the two error snapshots the core
retains: the compact per-attempt snapshot kept by the retry executor and the
richer sanitized copy attached to internal error records.
"""

import json
import re
import traceback
from typing import Any, Dict, Final, List, Optional, Tuple

SENSITIVE_FIELD_TERMS: Final[Tuple[str, ...]] = (
    "key",
    "token",
    "password",
    "secret",
    "authorization",
)
"""Substrings that mark a field name as sensitive (matched case-insensitively)."""

SENSITIVE_PATTERNS: Final[List[Tuple[str, str]]] = [
    # API keys and tokens
    (r"(?i)(api[_-]?key|apikey)\s*[:=]\s*['\"]?([a-zA-Z0-9_\-]{20,})['\"]?", "API_KEY"),
    (r"(?i)bearer\s+([a-zA-Z0-9_\-\.]+)", "BEARER_TOKEN"),
    (r"csk-[a-zA-Z0-9]{20,}", "COMPLETION_API_KEY"),
    (r"sk-[a-zA-Z0-9_\-]{20,}", "API_KEY"),
    # Passwords
    (r"(?i)(password|passwd|pwd)\s*[:=]\s*['\"]?([^\s'\"]{4,})['\"]?", "PASSWORD"),
    # Generic secrets in key contexts
    (
        r"(?i)(token|secret|credential)\s*[:=]\s*['\"]?([a-zA-Z0-9+/_\-]{20,}={0,2})['\"]?",
        "SECRET",
    ),
]
"""Patterns for credentials that may leak into free-text messages."""

_SNAPSHOT_FIELDS: Final[Tuple[str, ...]] = ("name", "message", "code", "status")


def is_sensitive_field(name: Any) -> bool:
    """Return True if ``name`` contains any of SENSITIVE_FIELD_TERMS."""
    lowered = str(name).lower()
    return any(term in lowered for term in SENSITIVE_FIELD_TERMS)


def redact_text(text: str, *, redaction_format: str = "[REDACTED:{label}]") -> str:
    """Replace credential-looking substrings in ``text``."""
    result = text
    for pattern, label in SENSITIVE_PATTERNS:
        result = re.sub(pattern, redaction_format.format(label=label), result)
    return result


def redact_sensitive_data(data: Any, *, max_depth: int = 10) -> Any:
    """Recursively redact sensitive data from strings, dicts, and lists.

    Dict values under sensitive field names are replaced wholesale; strings
    anywhere in the structure are scanned for credential patterns.

    Args:
        data: The data to redact (string, dict, list, or nested structure)
        max_depth: Maximum recursion depth

    Returns:
        A copy of the data with sensitive values redacted

    Example:
        >>> redact_sensitive_data({"api_key": "csk-abc...", "model": "llama3.1-8b"})
        {'api_key': '[REDACTED]', 'model': 'llama3.1-8b'}
    """
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, str):
        return redact_text(data)

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if is_sensitive_field(key):
                result[key] = "[REDACTED]"
            else:
                result[key] = redact_sensitive_data(value, max_depth=max_depth - 1)
        return result

    if isinstance(data, (list, tuple)):
        items = [redact_sensitive_data(item, max_depth=max_depth - 1) for item in data]
        return type(data)(items) if isinstance(data, tuple) else items

    return data


def redact_for_logging(data: Any) -> str:
    """Redact and serialize ``data`` as JSON for a log line."""
    redacted = redact_sensitive_data(data)
    try:
        return json.dumps(redacted, default=str)
    except (TypeError, ValueError):
        return str(redacted)


def _error_field(error: BaseException, field: str) -> Any:
    if field == "name":
        return getattr(error, "name", None) or type(error).__name__
    if field == "message":
        message = getattr(error, "message", None)
        return redact_text(str(message if message is not None else error))
    if field == "status":
        status = getattr(error, "status", None)
        return status if status is not None else getattr(error, "status_code", None)
    value = getattr(error, field, None)
    return value.value if hasattr(value, "value") else value


def _format_stack(error: BaseException) -> Optional[str]:
    if error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def error_snapshot(error: Optional[BaseException], *, include_stack: bool = False) -> Optional[Dict[str, Any]]:
    """Compact snapshot kept in a retry attempt log.

    Only name, message, code and status are preserved; the stack trace is
    added when ``include_stack`` is set (never in production).
    """
    if error is None:
        return None
    snapshot: Dict[str, Any] = {field: _error_field(error, field) for field in _SNAPSHOT_FIELDS}
    if include_stack:
        snapshot["stack"] = _format_stack(error)
    return snapshot


def sanitize_error(error: Any) -> Optional[Dict[str, Any]]:
    """Sanitized copy of a raw error for an internal log record.

    Keeps name, message, code and status plus any other primitive-valued
    attribute whose name does not match SENSITIVE_FIELD_TERMS. Accepts
    exceptions as well as plain mappings (e.g. decoded error payloads).
    """
    if error is None:
        return None

    if isinstance(error, dict):
        attributes = dict(error)
        sanitized: Dict[str, Any] = {
            field: attributes.get(field) for field in _SNAPSHOT_FIELDS
        }
    else:
        attributes = dict(vars(error)) if hasattr(error, "__dict__") else {}
        if isinstance(error, BaseException):
            sanitized = {field: _error_field(error, field) for field in _SNAPSHOT_FIELDS}
        else:
            sanitized = {"name": type(error).__name__, "message": redact_text(str(error))}

    for key, value in attributes.items():
        if key.startswith("_") or is_sensitive_field(key):
            continue
        if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
            value = value.value
        if isinstance(value, str):
            sanitized[key] = redact_text(value)
        elif isinstance(value, (bool, int, float)):
            sanitized[key] = value
    return sanitized
