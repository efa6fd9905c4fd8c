"""Domain-specific configuration: completion API settings, environment
profiles, and the per-table field parsers used by the TOML/env loader.

Queue, retry and performance settings reuse the dataclasses defined next to
the components they configure (``QueueConfig``, ``RetryConfig``,
``PerformanceThresholds``).
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional

from sheets_rewrite.config.parsing import (
    _try_parse_error_kinds,
    _try_parse_float,
    _try_parse_fraction,
    _try_parse_int,
    _try_parse_non_negative_float,
    _try_parse_non_negative_int,
    _try_parse_positive_float,
    _try_parse_positive_int,
)
from sheets_rewrite.core.errors import ErrorKind

DEFAULT_BASE_URL = "https://api.cerebras.ai/v1"
DEFAULT_MODEL = "llama3.1-8b"
API_KEY_ENV_VAR = "CEREBRAS_API_KEY"


@dataclass
class CompletionConfig:
    """Settings for the remote text-completion API.

    Attributes:
        api_key: Bearer credential (required to construct a client)
        base_url: OpenAI-compatible API root
        model: Model identifier
        temperature: Sampling temperature
        max_tokens: Completion length cap
        request_timeout_seconds: HTTP timeout for one request
    """

    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    max_tokens: int = 1500
    request_timeout_seconds: float = 25.0


def _try_parse_str(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


Parser = Callable[[Any], Any]

QUEUE_FIELDS: Dict[str, Parser] = {
    "max_concurrent": _try_parse_positive_int,
    "max_queue_size": _try_parse_non_negative_int,
    "request_timeout_ms": _try_parse_positive_float,
    "queue_timeout_ms": _try_parse_positive_float,
}

RETRY_FIELDS: Dict[str, Parser] = {
    "max_retries": _try_parse_non_negative_int,
    "base_delay": _try_parse_non_negative_float,
    "max_delay": _try_parse_non_negative_float,
    "backoff_multiplier": _try_parse_positive_float,
    "jitter_factor": _try_parse_fraction,
    "retryable_errors": _try_parse_error_kinds,
    "timeout_ms": _try_parse_non_negative_float,
}

COMPLETION_FIELDS: Dict[str, Parser] = {
    "api_key": _try_parse_str,
    "base_url": _try_parse_str,
    "model": _try_parse_str,
    "temperature": _try_parse_float,
    "max_tokens": _try_parse_int,
    "request_timeout_seconds": _try_parse_float,
}

PERFORMANCE_FIELDS: Dict[str, Parser] = {
    "fast_response": _try_parse_float,
    "acceptable_response": _try_parse_float,
    "slow_response": _try_parse_float,
    "low_error_rate": _try_parse_float,
    "high_error_rate": _try_parse_float,
    "healthy_queue_size": _try_parse_int,
    "unhealthy_queue_size": _try_parse_int,
}


def apply_overrides(
    target: Any,
    data: Mapping[str, Any],
    parsers: Mapping[str, Parser],
    *,
    source: str,
) -> List[str]:
    """Set each recognized key of ``data`` on ``target``.

    Unknown keys and unparseable values are skipped, leaving the previous
    value in place.

    Returns:
        Warnings describing every skipped key
    """
    warnings: List[str] = []
    for key, raw_value in data.items():
        parser = parsers.get(key)
        if parser is None:
            warnings.append(f"Ignoring unknown key '{key}' in {source}")
            continue
        value = parser(raw_value)
        if value is None:
            warnings.append(f"Ignoring invalid value for '{key}' in {source}: {raw_value!r}")
            continue
        setattr(target, key, value)
    return warnings


# Tuned settings applied by every environment profile
TUNED_QUEUE: Dict[str, Any] = {
    "max_concurrent": 3,
    "max_queue_size": 25,
    "request_timeout_ms": 25000,
    "queue_timeout_ms": 45000,
}

TUNED_RETRY: Dict[str, Any] = {
    "max_retries": 3,
    "base_delay": 800,
    "max_delay": 20000,
    "backoff_multiplier": 1.8,
    "jitter_factor": 0.15,
    "retryable_errors": frozenset(
        {
            ErrorKind.RATE_LIMITED,
            ErrorKind.TIMEOUT,
            ErrorKind.API_UNAVAILABLE,
            ErrorKind.INTERNAL_ERROR,
        }
    ),
    "timeout_ms": 25000,
}

ENVIRONMENT_PROFILES: Dict[str, Dict[str, Any]] = {
    "development": {"max_retries": 2, "base_delay": 500, "timeout_ms": 15000},
    "production": {"max_retries": 3, "base_delay": 800, "timeout_ms": 25000},
    "testing": {"max_retries": 1, "base_delay": 100, "timeout_ms": 5000},
}
