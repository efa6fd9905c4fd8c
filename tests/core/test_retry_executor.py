"""Unit tests for the retry executor.

Tests cover:
- RetryConfig defaults, retryable kind coercion and range validation
- Backoff delays with jitter disabled and bounded jitter
- Non-retryable failures short-circuit after one attempt
- Exhaustion yields max_retries + 1 attempts with the last error
- Per-attempt timeout produces a synthetic TIMEOUT failure
- Attempt snapshots, unwrap(), retry logging and runtime reconfiguration
"""

import asyncio
import logging
import random

import pytest

from conftest import make_status_error
from sheets_rewrite.core.errors import CompletionError, ErrorKind, InvalidRequestError
from sheets_rewrite.core.retry import (
    DEFAULT_RETRYABLE_ERRORS,
    RetryConfig,
    RetryExecutor,
)


def failing_then(value, failures):
    """Operation that raises each of ``failures`` in turn, then returns ``value``."""
    remaining = list(failures)
    calls = []

    async def operation():
        calls.append(len(calls) + 1)
        if remaining:
            raise remaining.pop(0)
        return value

    operation.calls = calls
    return operation


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_defaults(self):
        """Library defaults."""
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.base_delay == 1000
        assert config.max_delay == 30000
        assert config.backoff_multiplier == 2.0
        assert config.jitter_factor == 0.1
        assert config.timeout_ms == 30000
        assert config.retryable_errors == DEFAULT_RETRYABLE_ERRORS

    def test_retryable_errors_accept_names(self):
        """Kind names are coerced to ErrorKind."""
        config = RetryConfig(retryable_errors=["timeout", "RATE_LIMITED"])
        assert config.retryable_errors == frozenset({ErrorKind.TIMEOUT, ErrorKind.RATE_LIMITED})

    def test_unknown_kind_rejected(self):
        """Unknown kind names raise ValueError."""
        with pytest.raises(ValueError):
            RetryConfig(retryable_errors=["NOPE"])

    @pytest.mark.parametrize(
        "changes",
        [
            {"max_retries": -1},
            {"base_delay": -1},
            {"max_delay": -5},
            {"backoff_multiplier": 0},
            {"jitter_factor": 1.5},
            {"jitter_factor": -0.1},
            {"timeout_ms": -1},
        ],
    )
    def test_out_of_range_values_rejected(self, changes):
        """Out-of-range policy values raise ValueError at construction."""
        with pytest.raises(ValueError):
            RetryConfig(**changes)

    def test_zero_retries_allowed(self):
        """max_retries=0 means a single attempt."""
        assert RetryConfig(max_retries=0).max_retries == 0

    def test_update_config_rejects_invalid_policy(self):
        """update_config validates and keeps the previous policy on error."""
        executor = RetryExecutor(RetryConfig(max_retries=2))
        with pytest.raises(ValueError):
            executor.update_config(max_retries=-1)
        assert executor.get_config().max_retries == 2


class TestBackoff:
    """Tests for delay computation."""

    @pytest.mark.asyncio
    async def test_delays_without_jitter(self, sleep_recorder):
        """Two failures then success record delays 0, 10, 20."""
        config = RetryConfig(max_retries=2, base_delay=10, backoff_multiplier=2, jitter_factor=0)
        executor = RetryExecutor(config, sleep_func=sleep_recorder)
        operation = failing_then(
            "ok",
            [
                CompletionError("busy", ErrorKind.RATE_LIMITED),
                CompletionError("busy", ErrorKind.RATE_LIMITED),
            ],
        )

        result = await executor.execute(operation)

        assert result.success is True
        assert result.value == "ok"
        assert len(result.attempts) == 3
        assert [a.delay for a in result.attempts] == [0, 10, 20]
        assert sleep_recorder.calls == [0.01, 0.02]
        assert result.retry_count == 2

    def test_delay_capped_at_max(self):
        """Pre-jitter delay never exceeds max_delay."""
        executor = RetryExecutor(
            RetryConfig(base_delay=1000, max_delay=3000, backoff_multiplier=2, jitter_factor=0)
        )
        assert [executor.calculate_delay(k) for k in range(1, 5)] == [1000, 2000, 3000, 3000]

    def test_jitter_bounds(self):
        """Jitter stays within +/- half of jitter_factor of the delay."""
        executor = RetryExecutor(
            RetryConfig(base_delay=1000, jitter_factor=0.2), rng=random.Random(42)
        )
        for _ in range(200):
            delay = executor.calculate_delay(1)
            assert 900 <= delay <= 1100
            assert delay == int(delay)

    def test_jitter_deterministic_with_seeded_rng(self):
        """Seeded rng produces reproducible delays."""
        first = RetryExecutor(RetryConfig(), rng=random.Random(7))
        second = RetryExecutor(RetryConfig(), rng=random.Random(7))
        assert [first.calculate_delay(k) for k in (1, 2, 3)] == [
            second.calculate_delay(k) for k in (1, 2, 3)
        ]


class TestTermination:
    """Tests for when the retry loop stops."""

    @pytest.mark.asyncio
    async def test_non_retryable_stops_after_one_attempt(self, sleep_recorder):
        """Input errors are never retried."""
        executor = RetryExecutor(RetryConfig(max_retries=5), sleep_func=sleep_recorder)
        operation = failing_then("never", [InvalidRequestError("bad", ErrorKind.INVALID_PROMPT)] * 6)

        result = await executor.execute(operation)

        assert result.success is False
        assert len(result.attempts) == 1
        assert result.error.kind == ErrorKind.INVALID_PROMPT
        assert sleep_recorder.calls == []

    @pytest.mark.asyncio
    async def test_http_400_not_retried(self, sleep_recorder):
        """A raw 400 classifies as non-retryable."""
        executor = RetryExecutor(RetryConfig(max_retries=3), sleep_func=sleep_recorder)
        operation = failing_then("never", [make_status_error(400)] * 4)

        result = await executor.execute(operation)

        assert len(result.attempts) == 1
        assert result.error.kind == ErrorKind.INVALID_TEXT

    @pytest.mark.asyncio
    async def test_exhaustion(self, sleep_recorder):
        """Exhausting retries yields max_retries + 1 attempts and the last error."""
        errors = [CompletionError(f"down {i}", ErrorKind.API_UNAVAILABLE) for i in range(4)]
        executor = RetryExecutor(RetryConfig(max_retries=3, jitter_factor=0), sleep_func=sleep_recorder)

        result = await executor.execute(failing_then("never", errors))

        assert result.success is False
        assert len(result.attempts) == 4
        assert result.error is errors[-1]
        assert len(sleep_recorder.calls) == 3

    @pytest.mark.asyncio
    async def test_transient_status_retried_outside_configured_kinds(self, sleep_recorder):
        """A 502 is retried via the transient status set."""
        executor = RetryExecutor(
            RetryConfig(max_retries=1, retryable_errors=[]), sleep_func=sleep_recorder
        )
        result = await executor.execute(failing_then("ok", [make_status_error(502)]))
        assert result.success is True
        assert len(result.attempts) == 2

    @pytest.mark.asyncio
    async def test_unwrap_raises_last_error(self, sleep_recorder):
        """unwrap() raises the classified last error."""
        executor = RetryExecutor(RetryConfig(max_retries=0), sleep_func=sleep_recorder)
        result = await executor.execute(failing_then("never", [make_status_error(503)]))
        with pytest.raises(CompletionError) as exc_info:
            result.unwrap()
        assert exc_info.value.kind == ErrorKind.API_UNAVAILABLE


class TestAttemptTimeout:
    """Tests for the per-attempt timeout."""

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(self, sleep_recorder):
        """A slow attempt fails with a TIMEOUT error."""
        executor = RetryExecutor(
            RetryConfig(max_retries=0, timeout_ms=20), sleep_func=sleep_recorder
        )

        async def slow():
            await asyncio.sleep(1)
            return "late"

        result = await executor.execute(slow)

        assert result.success is False
        assert result.error.kind == ErrorKind.TIMEOUT
        assert result.error.message == "Operation timed out after 20ms"

    @pytest.mark.asyncio
    async def test_timeout_then_success(self, sleep_recorder):
        """A timed-out attempt is retried."""
        executor = RetryExecutor(
            RetryConfig(max_retries=1, timeout_ms=20, jitter_factor=0), sleep_func=sleep_recorder
        )
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                await asyncio.sleep(1)
            return "fast"

        result = await executor.execute(flaky)
        assert result.success is True
        assert result.value == "fast"
        assert result.attempts[0].error["message"] == "Operation timed out after 20ms"


class TestAttemptLog:
    """Tests for attempt snapshots and logging."""

    @pytest.mark.asyncio
    async def test_snapshot_fields(self, sleep_recorder):
        """Failed attempts keep name, message, code and status."""
        executor = RetryExecutor(
            RetryConfig(max_retries=1, jitter_factor=0),
            sleep_func=sleep_recorder,
            include_stack=False,
        )
        result = await executor.execute(failing_then("ok", [make_status_error(429)]))

        snapshot = result.attempts[0].error
        assert set(snapshot) == {"name", "message", "code", "status"}
        assert snapshot["status"] == 429
        assert result.attempts[1].error is None

    @pytest.mark.asyncio
    async def test_stack_included_outside_production(self, sleep_recorder):
        """Stack traces are kept when include_stack is on."""
        executor = RetryExecutor(RetryConfig(max_retries=0), sleep_func=sleep_recorder)
        result = await executor.execute(failing_then("never", [make_status_error(503)]))
        assert "stack" in result.attempts[0].error

    @pytest.mark.asyncio
    async def test_retry_warning_logged(self, caplog, sleep_recorder):
        """Each scheduled retry logs a warning with the label."""
        executor = RetryExecutor(
            RetryConfig(max_retries=1, base_delay=10, jitter_factor=0), sleep_func=sleep_recorder
        )
        with caplog.at_level(logging.WARNING, logger="sheets_rewrite.core.retry"):
            await executor.execute(
                failing_then("ok", [CompletionError("busy", ErrorKind.RATE_LIMITED)]),
                label="rewrite req_1",
            )
        assert "Retry attempt 1/1 for rewrite req_1 after 10ms delay" in caplog.text


class TestReconfiguration:
    """Tests for update_config / get_config."""

    def test_update_config(self):
        """Overrides apply and get_config returns a copy."""
        executor = RetryExecutor()
        executor.update_config(max_retries=1, base_delay=50)
        config = executor.get_config()
        assert config.max_retries == 1
        assert config.base_delay == 50

        config.max_retries = 9
        assert executor.get_config().max_retries == 1

    def test_unknown_field_rejected(self):
        """Unknown fields raise TypeError."""
        with pytest.raises(TypeError):
            RetryExecutor().update_config(retries=2)
