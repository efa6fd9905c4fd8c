"""Parsing and normalization helpers for configuration values.

Every parser returns ``None`` for a value it cannot interpret so callers can
keep the previous setting and record a warning instead of failing startup.
"""

import logging
from typing import Any, FrozenSet, Iterable, Optional, Union

from sheets_rewrite.core.errors import ErrorKind, coerce_error_kind

logger = logging.getLogger(__name__)

_VALID_ENVIRONMENTS = {"development", "production", "testing"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _try_parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"true", "1", "yes", "on"}:
        return True
    if normalized in {"false", "0", "no", "off"}:
        return False
    return None


def _try_parse_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _try_parse_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _try_parse_positive_int(value: Any) -> Optional[int]:
    parsed = _try_parse_int(value)
    return parsed if parsed is not None and parsed >= 1 else None


def _try_parse_non_negative_int(value: Any) -> Optional[int]:
    parsed = _try_parse_int(value)
    return parsed if parsed is not None and parsed >= 0 else None


def _try_parse_positive_float(value: Any) -> Optional[float]:
    parsed = _try_parse_float(value)
    return parsed if parsed is not None and parsed > 0 else None


def _try_parse_non_negative_float(value: Any) -> Optional[float]:
    parsed = _try_parse_float(value)
    return parsed if parsed is not None and parsed >= 0 else None


def _try_parse_fraction(value: Any) -> Optional[float]:
    parsed = _try_parse_float(value)
    return parsed if parsed is not None and 0 <= parsed <= 1 else None


def _try_parse_error_kinds(value: Union[str, Iterable[Any]]) -> Optional[FrozenSet[ErrorKind]]:
    """Parse a list (TOML) or comma-separated string (env) of error kinds."""
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        return None
    kinds = set()
    for item in items:
        if isinstance(item, str) and not item.strip():
            continue
        kind = coerce_error_kind(item)
        if kind is None:
            return None
        kinds.add(kind)
    return frozenset(kinds)


def _normalize_environment(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in _VALID_ENVIRONMENTS:
        logger.warning(
            "Invalid environment '%s'. Falling back to 'development'. Valid options: %s",
            value,
            ", ".join(sorted(_VALID_ENVIRONMENTS)),
        )
        return "development"
    return normalized


def _try_parse_log_level(value: Any) -> Optional[str]:
    normalized = str(value).strip().upper()
    return normalized if normalized in _VALID_LOG_LEVELS else None
