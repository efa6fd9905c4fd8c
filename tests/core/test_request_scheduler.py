"""Unit tests for the bounded FIFO request scheduler.

Tests cover:
- QueueConfig range validation
- Concurrency bound, strict FIFO dispatch and slot reuse after cancellation
- Admission control (QueueFullError leaves the backlog unchanged)
- Queue-wait and execution timeouts (non-cancelling)
- clear(), stats snapshots and health evaluation
- Failure classification and monitor hooks
- Runtime reconfiguration applies only to newly admitted tasks
"""

import asyncio

import pytest

from conftest import make_status_error
from sheets_rewrite.core.concurrency import QueueConfig, RequestScheduler, race_with_timeout
from sheets_rewrite.core.errors import (
    CompletionError,
    ErrorKind,
    ExecutionTimeoutError,
    QueueClearedError,
    QueueFullError,
    QueueTimeoutError,
)
from sheets_rewrite.core.observability import PerformanceMonitor


class Gate:
    """Operations that block until released, tracking peak concurrency."""

    def __init__(self):
        self.event = asyncio.Event()
        self.running = 0
        self.peak = 0
        self.started = []

    def operation(self, value):
        async def run():
            self.started.append(value)
            self.running += 1
            self.peak = max(self.peak, self.running)
            try:
                await self.event.wait()
                return value
            finally:
                self.running -= 1

        return run

    def release(self):
        self.event.set()


async def settle_loop(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestQueueConfig:
    """Tests for QueueConfig validation."""

    @pytest.mark.parametrize(
        "changes",
        [
            {"max_concurrent": 0},
            {"max_concurrent": -2},
            {"max_queue_size": -1},
            {"request_timeout_ms": 0},
            {"queue_timeout_ms": -10},
        ],
    )
    def test_out_of_range_values_rejected(self, changes):
        """Out-of-range values raise ValueError at construction."""
        with pytest.raises(ValueError):
            QueueConfig(**changes)

    def test_zero_queue_size_allowed(self):
        """A zero backlog is valid."""
        assert QueueConfig(max_queue_size=0).max_queue_size == 0

    def test_update_config_rejects_zero_concurrency(self):
        """update_config validates and keeps the previous configuration on error."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=2))
        with pytest.raises(ValueError):
            scheduler.update_config(max_concurrent=0)
        assert scheduler.get_config().max_concurrent == 2


class TestRaceWithTimeout:
    """Tests for the non-cancelling timeout race."""

    @pytest.mark.asyncio
    async def test_result_before_timeout(self):
        """Fast awaitables return their value."""

        async def fast():
            return 7

        assert await race_with_timeout(fast(), 1, on_timeout=RuntimeError) == 7

    @pytest.mark.asyncio
    async def test_timeout_leaves_operation_running(self):
        """The timeout raises but the operation keeps running to completion."""
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.05)
            finished.set()
            return "late"

        with pytest.raises(RuntimeError):
            await race_with_timeout(slow(), 0.01, on_timeout=lambda: RuntimeError("too slow"))

        await asyncio.wait_for(finished.wait(), 1)
        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_disabled_timeout(self):
        """None disables the bound."""

        async def fast():
            return "ok"

        assert await race_with_timeout(fast(), None, on_timeout=RuntimeError) == "ok"


class TestConcurrencyBound:
    """Tests for max_concurrent and FIFO dispatch."""

    @pytest.mark.asyncio
    async def test_never_exceeds_max_concurrent(self):
        """Peak concurrency equals max_concurrent."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=3, max_queue_size=20))
        gate = Gate()

        futures = [scheduler.enqueue(gate.operation(i)) for i in range(10)]
        await settle_loop()
        assert scheduler.active_count == 3
        assert scheduler.queued_count == 7

        gate.release()
        results = await asyncio.gather(*futures)

        assert results == list(range(10))
        assert gate.peak == 3
        assert scheduler.active_count == 0
        assert scheduler.queued_count == 0

    @pytest.mark.asyncio
    async def test_fifo_with_single_slot(self):
        """Tasks start in enqueue order."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=1))
        order = []

        def op(value):
            async def run():
                order.append(value)
                await asyncio.sleep(0)
                return value

            return run

        await asyncio.gather(*(scheduler.enqueue(op(i)) for i in range(6)))
        assert order == list(range(6))

    @pytest.mark.asyncio
    async def test_cancelled_runner_frees_its_slot(self):
        """Cancelling a running task dispatches the next backlogged one."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=1))
        gate = Gate()
        first = scheduler.enqueue(gate.operation("first"))

        async def quick():
            return "second"

        second = scheduler.enqueue(quick)
        await settle_loop()
        assert scheduler.queued_count == 1

        for runner in list(scheduler._runners):
            runner.cancel()
        await settle_loop()

        assert first.cancelled()
        assert await asyncio.wait_for(second, 1) == "second"
        assert scheduler.active_count == 0

    @pytest.mark.asyncio
    async def test_two_active_two_queued_one_rejected(self):
        """Five submissions against 2/2 limits: 2 active, 2 queued, 1 rejected."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=2, max_queue_size=2))
        gate = Gate()

        futures = [scheduler.enqueue(gate.operation(i)) for i in range(5)]
        await settle_loop()

        stats = scheduler.get_stats()
        assert stats.active_requests == 2
        assert stats.queued_requests == 2
        assert futures[4].done()
        assert isinstance(futures[4].exception(), QueueFullError)

        gate.release()
        assert await asyncio.gather(*futures[:4]) == [0, 1, 2, 3]


class TestAdmission:
    """Tests for queue-full rejection."""

    @pytest.mark.asyncio
    async def test_queue_full_leaves_backlog_unchanged(self):
        """A rejected task never enters the backlog."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=1, max_queue_size=1))
        gate = Gate()
        scheduler.enqueue(gate.operation("a"))
        scheduler.enqueue(gate.operation("b"))
        await settle_loop()

        before = scheduler.queued_count
        rejected = scheduler.enqueue(gate.operation("c"), label="third")

        assert scheduler.queued_count == before == 1
        error = rejected.exception()
        assert error.kind == ErrorKind.RATE_LIMITED
        assert error.label == "third"
        assert "c" not in gate.started
        gate.release()
        await settle_loop(10)

    @pytest.mark.asyncio
    async def test_zero_queue_size_rejects_everything(self):
        """max_queue_size=0 rejects every submission."""
        scheduler = RequestScheduler(QueueConfig(max_queue_size=0))

        async def op():
            return 1

        with pytest.raises(QueueFullError):
            await scheduler.submit(op)


class TestTimeouts:
    """Tests for queue-wait and execution timeouts."""

    @pytest.mark.asyncio
    async def test_queue_timeout(self):
        """A task waiting longer than queue_timeout_ms is rejected and removed."""
        scheduler = RequestScheduler(
            QueueConfig(max_concurrent=1, queue_timeout_ms=20, request_timeout_ms=5000)
        )
        gate = Gate()
        first = scheduler.enqueue(gate.operation("first"))
        waiting = scheduler.enqueue(gate.operation("waiting"))

        with pytest.raises(QueueTimeoutError) as exc_info:
            await waiting
        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert scheduler.queued_count == 0

        gate.release()
        assert await first == "first"
        assert "waiting" not in gate.started

    @pytest.mark.asyncio
    async def test_execution_timeout_does_not_cancel(self):
        """The caller sees ExecutionTimeoutError while the operation keeps running."""
        scheduler = RequestScheduler(QueueConfig(request_timeout_ms=20))
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.06)
            finished.set()
            return "late"

        with pytest.raises(ExecutionTimeoutError) as exc_info:
            await scheduler.submit(slow)
        assert exc_info.value.kind == ErrorKind.TIMEOUT

        stats = scheduler.get_stats()
        assert stats.total_errors == 1
        assert stats.active_requests == 0

        await asyncio.wait_for(finished.wait(), 1)

    @pytest.mark.asyncio
    async def test_timeout_frees_slot_for_next_task(self):
        """A timed-out task releases its slot immediately."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=1, request_timeout_ms=20))

        async def slow():
            await asyncio.sleep(0.2)

        async def fast():
            return "next"

        slow_future = scheduler.enqueue(slow)
        fast_future = scheduler.enqueue(fast)

        with pytest.raises(ExecutionTimeoutError):
            await slow_future
        assert await asyncio.wait_for(fast_future, 0.1) == "next"


class TestClear:
    """Tests for clear()."""

    @pytest.mark.asyncio
    async def test_clear_rejects_backlog_only(self):
        """Queued tasks are rejected; active tasks complete."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=1))
        gate = Gate()
        active = scheduler.enqueue(gate.operation("active"))
        queued = [scheduler.enqueue(gate.operation(i)) for i in range(3)]
        await settle_loop()

        assert scheduler.clear("shutting down") == 3
        assert scheduler.queued_count == 0
        for future in queued:
            error = future.exception()
            assert isinstance(error, QueueClearedError)
            assert error.message == "shutting down"

        gate.release()
        assert await active == "active"


class TestStats:
    """Tests for stats and health."""

    @pytest.mark.asyncio
    async def test_get_stats_is_idempotent(self):
        """Repeated snapshots without intervening events are equal."""
        scheduler = RequestScheduler()

        async def op():
            return 1

        await scheduler.submit(op)
        assert scheduler.get_stats() == scheduler.get_stats()

    @pytest.mark.asyncio
    async def test_counters(self):
        """Processed and error counters track completions."""
        scheduler = RequestScheduler()

        async def ok():
            return 1

        async def boom():
            raise make_status_error(503)

        await scheduler.submit(ok)
        with pytest.raises(CompletionError):
            await scheduler.submit(boom)

        stats = scheduler.get_stats()
        assert stats.total_processed == 2
        assert stats.total_errors == 1
        assert stats.error_rate == 0.5
        assert stats.to_dict()["total_processed"] == 2
        assert stats.to_dict()["error_rate"] == 0.5

    def test_fresh_scheduler_is_healthy(self):
        """No traffic means healthy."""
        assert RequestScheduler().is_healthy() is True

    @pytest.mark.asyncio
    async def test_high_error_rate_unhealthy(self):
        """An error rate of 50% or more is unhealthy."""
        scheduler = RequestScheduler()

        async def boom():
            raise ValueError("bad")

        with pytest.raises(CompletionError):
            await scheduler.submit(boom)
        assert scheduler.is_healthy() is False

    @pytest.mark.asyncio
    async def test_backlog_near_capacity_unhealthy(self):
        """A backlog at 80% of capacity is unhealthy."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=1, max_queue_size=5))
        gate = Gate()
        for i in range(5):
            scheduler.enqueue(gate.operation(i))
        await settle_loop()

        assert scheduler.queued_count == 4
        assert scheduler.is_healthy() is False
        gate.release()
        await settle_loop(20)


class TestFailureHandling:
    """Tests for classification and cancellation."""

    @pytest.mark.asyncio
    async def test_raw_failures_are_classified(self):
        """Raw exceptions reach the caller as classified errors."""
        scheduler = RequestScheduler()

        async def limited():
            raise make_status_error(429)

        with pytest.raises(CompletionError) as exc_info:
            await scheduler.submit(limited)
        assert exc_info.value.kind == ErrorKind.RATE_LIMITED
        assert exc_info.value.status == 429

    @pytest.mark.asyncio
    async def test_cancelled_backlog_future_is_skipped(self):
        """A caller-cancelled queued future is never dispatched."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=1))
        gate = Gate()
        first = scheduler.enqueue(gate.operation("first"))
        second = scheduler.enqueue(gate.operation("second"))
        third = scheduler.enqueue(gate.operation("third"))
        await settle_loop()

        second.cancel()
        gate.release()

        assert await first == "first"
        assert await third == "third"
        assert gate.started == ["first", "third"]


class TestMonitorHook:
    """Tests for the optional performance monitor."""

    @pytest.mark.asyncio
    async def test_completions_recorded(self):
        """Each completion feeds one metric to the monitor."""
        monitor = PerformanceMonitor()
        scheduler = RequestScheduler(name="rewrite", monitor=monitor)

        async def ok():
            return 1

        async def boom():
            raise CompletionError("down", ErrorKind.API_UNAVAILABLE)

        await scheduler.submit(ok, label="first")
        with pytest.raises(CompletionError):
            await scheduler.submit(boom)

        stats = monitor.get_stats()
        assert stats.total_requests == 2
        assert stats.failed_requests == 1
        assert monitor.get_error_breakdown()[0]["code"] == "API_UNAVAILABLE"


class TestReconfiguration:
    """Tests for update_config / get_config."""

    @pytest.mark.asyncio
    async def test_update_applies_to_new_tasks_only(self):
        """Admitted tasks keep their snapshotted timeouts."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=1, request_timeout_ms=5000))
        gate = Gate()
        first = scheduler.enqueue(gate.operation("first"))
        await settle_loop()

        scheduler.update_config(request_timeout_ms=10)
        await asyncio.sleep(0.05)
        assert not first.done()

        gate.release()
        assert await first == "first"
        assert scheduler.get_config().request_timeout_ms == 10

    @pytest.mark.asyncio
    async def test_raising_concurrency_takes_effect_on_next_dispatch(self):
        """A larger max_concurrent is used when the next task is admitted."""
        scheduler = RequestScheduler(QueueConfig(max_concurrent=1))
        gate = Gate()
        scheduler.enqueue(gate.operation(0))
        scheduler.enqueue(gate.operation(1))
        await settle_loop()
        assert scheduler.active_count == 1

        scheduler.update_config(max_concurrent=3)
        scheduler.enqueue(gate.operation(2))
        await settle_loop()
        assert scheduler.active_count == 3

        gate.release()
        await settle_loop(20)

    def test_get_config_returns_copy(self):
        """Mutating the returned config does not affect the scheduler."""
        scheduler = RequestScheduler()
        config = scheduler.get_config()
        config.max_concurrent = 99
        assert scheduler.get_config().max_concurrent == 5
