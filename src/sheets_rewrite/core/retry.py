"""Classified retry with exponential backoff and jitter.

``RetryExecutor`` runs an async operation up to ``max_retries + 1`` times.
Each attempt races the operation against ``timeout_ms``; failures are
classified once through ``classify_failure`` and only retryable kinds are
re-attempted. Every attempt is recorded in an immutable attempt log that is
returned with the terminal ``RetryResult``; the executor itself keeps no
per-call state.

Delay before attempt ``k + 1`` (``k`` failed attempts so far)::

    delay = min(base_delay * backoff_multiplier ** (k - 1), max_delay)
    delay += delay * jitter_factor * (U - 0.5)      # U ~ Uniform[0, 1)
    delay = max(0, round(delay))

All durations are milliseconds; they are converted to seconds only when
handed to ``sleep_func``.
"""

import asyncio
import dataclasses
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional, Protocol, Tuple

from sheets_rewrite.core.classifier import classify_failure, is_transient
from sheets_rewrite.core.concurrency import race_with_timeout
from sheets_rewrite.core.errors import CompletionError, ErrorKind, RewriteError, coerce_error_kind
from sheets_rewrite.core.observability.redaction import error_snapshot

logger = logging.getLogger(__name__)


class SleepFunc(Protocol):
    """Async sleep taking seconds, injectable for tests."""

    async def __call__(self, seconds: float) -> None: ...


DEFAULT_RETRYABLE_ERRORS: FrozenSet[ErrorKind] = frozenset(
    {ErrorKind.RATE_LIMITED, ErrorKind.TIMEOUT, ErrorKind.API_UNAVAILABLE}
)


@dataclass
class RetryConfig:
    """Retry policy.

    Attributes:
        max_retries: Retries after the first attempt (attempts = max_retries + 1)
        base_delay: Delay before the first retry, in ms
        max_delay: Upper bound on the pre-jitter delay, in ms
        backoff_multiplier: Growth factor per retry
        jitter_factor: Fraction of the delay spread symmetrically as jitter
        retryable_errors: Error kinds that are re-attempted
        timeout_ms: Per-attempt time bound
    """

    max_retries: int = 3
    base_delay: float = 1000
    max_delay: float = 30000
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1
    retryable_errors: FrozenSet[ErrorKind] = field(
        default_factory=lambda: DEFAULT_RETRYABLE_ERRORS
    )
    timeout_ms: float = 30000

    def __post_init__(self) -> None:
        kinds = set()
        for value in self.retryable_errors:
            kind = coerce_error_kind(value)
            if kind is None:
                raise ValueError(f"Unknown error kind in retryable_errors: {value!r}")
            kinds.add(kind)
        self.retryable_errors = frozenset(kinds)
        if self.max_retries < 0:
            raise ValueError(f"max_retries must not be negative: {self.max_retries!r}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("base_delay and max_delay must not be negative")
        if self.backoff_multiplier <= 0:
            raise ValueError(f"backoff_multiplier must be positive: {self.backoff_multiplier!r}")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError(f"jitter_factor must be between 0 and 1: {self.jitter_factor!r}")
        if self.timeout_ms < 0:
            raise ValueError(f"timeout_ms must not be negative: {self.timeout_ms!r}")


@dataclass(frozen=True)
class RetryAttempt:
    """One execution attempt.

    ``delay`` is the delay slept before this attempt (0 for the first) and
    ``error`` the sanitized snapshot of its failure, if it failed.
    """

    attempt_number: int
    delay: float
    timestamp: float
    error: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class RetryResult:
    """Terminal outcome of ``RetryExecutor.execute``."""

    success: bool
    attempts: Tuple[RetryAttempt, ...]
    total_duration: float
    value: Any = None
    error: Optional[RewriteError] = None

    @property
    def retry_count(self) -> int:
        return max(len(self.attempts) - 1, 0)

    def unwrap(self) -> Any:
        """Return the value, or raise the last classified error."""
        if self.success:
            return self.value
        if self.error is not None:
            raise self.error
        raise RewriteError("Operation failed without a recorded error")


class RetryExecutor:
    """Runs operations under a classified retry policy.

    Example:
        >>> executor = RetryExecutor(RetryConfig(max_retries=2, base_delay=200))
        >>> result = await executor.execute(lambda: client.complete(prompt), label="rewrite")
        >>> text = result.unwrap()

    Testing example:
        >>> sleeps = []
        >>> async def fake_sleep(s): sleeps.append(s)
        >>> executor = RetryExecutor(config, rng=random.Random(7), sleep_func=fake_sleep)
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        *,
        rng: Optional[random.Random] = None,
        sleep_func: Optional[SleepFunc] = None,
        include_stack: bool = True,
    ):
        """Initialize the executor.

        Args:
            config: Retry policy (defaults to RetryConfig())
            rng: Injectable Random instance for deterministic jitter
            sleep_func: Injectable async sleep (seconds) for time control
            include_stack: Keep stack traces in attempt snapshots; the
                service turns this off in production
        """
        self._config = dataclasses.replace(config) if config else RetryConfig()
        self._rng = rng or random.Random()
        self._sleep = sleep_func or asyncio.sleep
        self.include_stack = include_stack

    def is_retryable(self, error: RewriteError) -> bool:
        """Configured kind, or a standard transient status/code/name."""
        return error.kind in self._config.retryable_errors or is_transient(error)

    def calculate_delay(self, attempt_index: int) -> float:
        """Delay in ms after ``attempt_index`` failed attempts (1-based)."""
        config = self._config
        delay = min(
            config.base_delay * config.backoff_multiplier ** (attempt_index - 1),
            config.max_delay,
        )
        if config.jitter_factor:
            delay += delay * config.jitter_factor * (self._rng.random() - 0.5)
        return max(0, round(delay))

    async def _attempt(self, operation: Callable[[], Awaitable[Any]], timeout_ms: float) -> Any:
        return await race_with_timeout(
            operation(),
            timeout_ms / 1000.0,
            on_timeout=lambda: CompletionError(
                f"Operation timed out after {timeout_ms:.0f}ms",
                ErrorKind.TIMEOUT,
                name="TimeoutError",
            ),
        )

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        label: Optional[str] = None,
    ) -> RetryResult:
        """Run ``operation`` until it succeeds or the policy gives up.

        Never raises for operation failures; inspect ``RetryResult.success``
        or call ``unwrap()``.

        Args:
            operation: Niladic callable returning an awaitable
            label: Optional label used in retry log lines

        Returns:
            RetryResult with the value or last classified error and the
            full attempt log
        """
        config = self._config
        max_attempts = config.max_retries + 1
        attempts = []
        started = time.monotonic()
        delay: float = 0
        last_error: Optional[RewriteError] = None

        for attempt_number in range(1, max_attempts + 1):
            timestamp = time.time() * 1000.0
            try:
                value = await self._attempt(operation, config.timeout_ms)
            except Exception as e:
                last_error = classify_failure(e)
                attempts.append(
                    RetryAttempt(
                        attempt_number=attempt_number,
                        delay=delay,
                        timestamp=timestamp,
                        error=error_snapshot(last_error, include_stack=self.include_stack),
                    )
                )
            else:
                attempts.append(
                    RetryAttempt(attempt_number=attempt_number, delay=delay, timestamp=timestamp)
                )
                return RetryResult(
                    success=True,
                    value=value,
                    attempts=tuple(attempts),
                    total_duration=(time.monotonic() - started) * 1000.0,
                )

            if attempt_number >= max_attempts or not self.is_retryable(last_error):
                break

            delay = self.calculate_delay(attempt_number)
            logger.warning(
                "Retry attempt %d/%d for %s after %sms delay. Error: %s",
                attempt_number,
                config.max_retries,
                label or "operation",
                delay,
                last_error.message,
            )
            await self._sleep(delay / 1000.0)

        return RetryResult(
            success=False,
            error=last_error,
            attempts=tuple(attempts),
            total_duration=(time.monotonic() - started) * 1000.0,
        )

    def update_config(self, **changes: Any) -> RetryConfig:
        """Override policy fields for subsequent ``execute`` calls.

        Raises:
            TypeError: If a field name is unknown
            ValueError: If a value is out of range; the current configuration is kept
        """
        self._config = dataclasses.replace(self._config, **changes)
        return self.get_config()

    def get_config(self) -> RetryConfig:
        """Return a copy of the current policy."""
        return dataclasses.replace(self._config)


__all__ = [
    "DEFAULT_RETRYABLE_ERRORS",
    "RetryAttempt",
    "RetryConfig",
    "RetryExecutor",
    "RetryResult",
    "SleepFunc",
]
