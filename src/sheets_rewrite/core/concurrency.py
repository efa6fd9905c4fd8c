"""
Bounded-concurrency request scheduling for sheets-rewrite.

Provides admission control, strict FIFO dispatch, and independent
queue-wait and execution timeouts for async operations, all on a single
event loop. There is no thread pool: "concurrent" means several operations
are awaiting I/O at once. Every mutation of the backlog and the active set
happens in plain (non-async) methods that run to completion between
suspension points, so no lock is needed.

Timeouts are cooperative: they settle the caller-facing future but do not
interrupt the underlying operation, whose late result is discarded.

Example:
    from sheets_rewrite.core.concurrency import QueueConfig, RequestScheduler

    scheduler = RequestScheduler(QueueConfig(max_concurrent=3, max_queue_size=25))
    text = await scheduler.submit(lambda: client.complete(prompt), label="rewrite")

    # Or keep the future and await it later
    future = scheduler.enqueue(fetch_summary)
    print(scheduler.get_stats())
    summary = await future
"""

import asyncio
import dataclasses
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set, TypeVar

from sheets_rewrite.core.classifier import classify_failure
from sheets_rewrite.core.context import new_request_id
from sheets_rewrite.core.errors import (
    ExecutionTimeoutError,
    QueueClearedError,
    QueueFullError,
    QueueTimeoutError,
    RewriteError,
)
from sheets_rewrite.core.observability.performance import MetricEntry, PerformanceMonitor

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Non-cancelling timeout race
# ---------------------------------------------------------------------------


def _discard_orphan(task: "asyncio.Future[Any]") -> None:
    """Retrieve the outcome of an operation whose caller already gave up."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug("Discarded late failure of timed-out operation: %s", error)
    else:
        logger.debug("Discarded late result of timed-out operation")


async def race_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: Optional[float],
    *,
    on_timeout: Callable[[], BaseException],
) -> T:
    """Await ``awaitable`` but give up after ``timeout_seconds``.

    Unlike ``asyncio.wait_for`` the awaitable is not cancelled when the
    timeout fires: it keeps running and its eventual outcome is discarded.
    Cancelling the caller does cancel the awaitable.

    Args:
        awaitable: Coroutine or future to race.
        timeout_seconds: Bound in seconds; None or <= 0 disables the race.
        on_timeout: Factory for the exception raised when the bound fires.

    Returns:
        The awaitable's result if it finished first.

    Raises:
        The exception built by ``on_timeout`` when the bound fires first,
        or whatever the awaitable raised.
    """
    task = asyncio.ensure_future(awaitable)
    if timeout_seconds is None or timeout_seconds <= 0:
        return await task

    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    task.add_done_callback(_discard_orphan)
    raise on_timeout()


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


@dataclass
class QueueConfig:
    """Configuration for a request scheduler.

    Attributes:
        max_concurrent: Maximum number of operations executing at once
        max_queue_size: Maximum number of backlogged (not yet dispatched) tasks
        request_timeout_ms: Execution bound per dispatched task
        queue_timeout_ms: Bound on how long a task may stay backlogged
    """

    max_concurrent: int = 5
    max_queue_size: int = 100
    request_timeout_ms: float = 30000
    queue_timeout_ms: float = 60000

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1: {self.max_concurrent!r}")
        if self.max_queue_size < 0:
            raise ValueError(f"max_queue_size must not be negative: {self.max_queue_size!r}")
        if self.request_timeout_ms <= 0 or self.queue_timeout_ms <= 0:
            raise ValueError("request_timeout_ms and queue_timeout_ms must be positive")


@dataclass(frozen=True)
class QueueStats:
    """Point-in-time snapshot of scheduler state and counters."""

    active_requests: int
    queued_requests: int
    total_processed: int
    total_errors: int
    average_processing_time: float

    @property
    def error_rate(self) -> float:
        if self.total_processed == 0:
            return 0.0
        return self.total_errors / self.total_processed

    def to_dict(self) -> Dict[str, Any]:
        return {**dataclasses.asdict(self), "error_rate": self.error_rate}


@dataclass
class QueuedTask:
    """A unit of work owned by the scheduler from enqueue until settlement.

    The timeouts are copied from the configuration at admission time, so a
    later ``update_config`` never changes the bounds of an admitted task.
    """

    id: str
    operation: Operation
    future: "asyncio.Future[Any]"
    enqueued_at: float
    request_timeout_ms: float
    queue_timeout_ms: float
    label: Optional[str] = None
    queue_timer: Optional[asyncio.TimerHandle] = None

    def describe(self) -> str:
        return f"{self.id} ({self.label})" if self.label else self.id


def _settle(
    future: "asyncio.Future[Any]",
    *,
    result: Any = None,
    error: Optional[BaseException] = None,
) -> bool:
    """Resolve or reject ``future`` unless it already settled.

    Returns:
        True if this call settled the future, False if it was a no-op.
    """
    if future.done():
        return False
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)
    return True


class RequestScheduler:
    """Bounded FIFO scheduler for async operations.

    Accepts niladic async callables, keeps at most ``max_concurrent`` of
    them executing, holds up to ``max_queue_size`` more in arrival order,
    and rejects anything beyond that immediately with QueueFullError.

    Example:
        >>> scheduler = RequestScheduler(QueueConfig(max_concurrent=2, max_queue_size=2))
        >>> futures = [scheduler.enqueue(slow_call) for _ in range(5)]
        >>> scheduler.get_stats().active_requests, scheduler.get_stats().queued_requests
        (2, 2)
        >>> futures[4].exception()
        QueueFullError('Request queue is full')
    """

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        *,
        name: str = "",
        monitor: Optional[PerformanceMonitor] = None,
    ):
        """Initialize the scheduler.

        Args:
            config: Queue configuration (defaults to QueueConfig())
            name: Optional name for logging
            monitor: Optional performance monitor fed on every completion
        """
        self._config = dataclasses.replace(config) if config else QueueConfig()
        self.name = name
        self._monitor = monitor
        self._backlog: "OrderedDict[str, QueuedTask]" = OrderedDict()
        self._active: Set[str] = set()
        self._runners: Set["asyncio.Task[None]"] = set()
        self._total_processed = 0
        self._total_errors = 0
        self._total_processing_time = 0.0

    @property
    def active_count(self) -> int:
        """Number of tasks currently executing."""
        return len(self._active)

    @property
    def queued_count(self) -> int:
        """Number of tasks waiting in the backlog."""
        return len(self._backlog)

    def enqueue(self, operation: Operation, label: Optional[str] = None) -> "asyncio.Future[Any]":
        """Admit ``operation`` and return the future of its result.

        Must be called from within the running event loop. If the backlog is
        full the returned future is already rejected with QueueFullError and
        the backlog is left untouched.

        Args:
            operation: Niladic callable returning an awaitable
            label: Optional human-readable label for diagnostics

        Returns:
            Future resolved with the operation's result, or rejected with a
            classified RewriteError
        """
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[Any]" = loop.create_future()
        config = self._config

        if len(self._backlog) >= config.max_queue_size:
            logger.warning(
                "Rejected request%s: queue full (%d/%d)",
                f" ({label})" if label else "",
                len(self._backlog),
                config.max_queue_size,
            )
            future.set_exception(QueueFullError(max_queue_size=config.max_queue_size, label=label))
            return future

        task = QueuedTask(
            id=new_request_id("task"),
            operation=operation,
            future=future,
            enqueued_at=time.monotonic(),
            request_timeout_ms=config.request_timeout_ms,
            queue_timeout_ms=config.queue_timeout_ms,
            label=label,
        )
        self._backlog[task.id] = task
        task.queue_timer = loop.call_later(
            config.queue_timeout_ms / 1000.0, self._expire_queued, task.id
        )

        self._dispatch()
        return future

    async def submit(self, operation: Operation, label: Optional[str] = None) -> Any:
        """Enqueue ``operation`` and wait for its result."""
        return await self.enqueue(operation, label)

    def _expire_queued(self, task_id: str) -> None:
        task = self._backlog.pop(task_id, None)
        if task is None:
            return
        logger.warning(
            "Request %s timed out after %.0fms in queue", task.describe(), task.queue_timeout_ms
        )
        _settle(
            task.future,
            error=QueueTimeoutError(
                timeout_ms=task.queue_timeout_ms, task_id=task.id, label=task.label
            ),
        )

    def _dispatch(self) -> None:
        """Start backlogged tasks, oldest first, while slots are free."""
        while self._backlog and len(self._active) < self._config.max_concurrent:
            _, task = self._backlog.popitem(last=False)
            if task.queue_timer is not None:
                task.queue_timer.cancel()
            # Caller cancelled its future while the task was waiting
            if task.future.done():
                continue

            self._active.add(task.id)
            runner = asyncio.get_running_loop().create_task(self._execute(task))
            self._runners.add(runner)
            runner.add_done_callback(self._runners.discard)

    async def _execute(self, task: QueuedTask) -> None:
        started = time.monotonic()
        timeout_ms = task.request_timeout_ms
        try:
            result = await race_with_timeout(
                task.operation(),
                timeout_ms / 1000.0,
                on_timeout=lambda: ExecutionTimeoutError(
                    timeout_ms=timeout_ms, task_id=task.id, label=task.label
                ),
            )
        except asyncio.CancelledError:
            self._active.discard(task.id)
            task.future.cancel()
            self._dispatch()
            raise
        except Exception as e:
            self._complete(task, started, error=classify_failure(e))
        else:
            self._complete(task, started, result=result)

    def _complete(
        self,
        task: QueuedTask,
        started: float,
        *,
        result: Any = None,
        error: Optional[RewriteError] = None,
    ) -> None:
        self._active.discard(task.id)

        finished = time.monotonic()
        processing_ms = (finished - started) * 1000.0
        queue_ms = (started - task.enqueued_at) * 1000.0
        self._total_processed += 1
        self._total_processing_time += processing_ms
        if error is not None:
            self._total_errors += 1

        _settle(task.future, result=result, error=error)

        if error is None:
            logger.info("Request %s completed in %.0fms", task.describe(), processing_ms)
        else:
            logger.error(
                "Request %s failed after %.0fms: %s", task.describe(), processing_ms, error.message
            )

        if self._monitor is not None:
            self._monitor.record_metric(
                MetricEntry(
                    request_id=task.id,
                    endpoint=task.label or self.name or "scheduler",
                    total_duration=queue_ms + processing_ms,
                    queue_time=queue_ms,
                    processing_time=processing_ms,
                    response_time=processing_ms,
                    success=error is None,
                    error_kind=error.kind.value if error is not None else None,
                )
            )

        self._dispatch()

    def get_stats(self) -> QueueStats:
        """Snapshot of current counts and accumulated counters."""
        average = (
            self._total_processing_time / self._total_processed if self._total_processed else 0.0
        )
        return QueueStats(
            active_requests=len(self._active),
            queued_requests=len(self._backlog),
            total_processed=self._total_processed,
            total_errors=self._total_errors,
            average_processing_time=average,
        )

    def is_healthy(self) -> bool:
        """Backlog below 80% of capacity, error rate below 50%, and average
        processing time below 80% of the execution timeout."""
        stats = self.get_stats()
        return (
            stats.queued_requests < self._config.max_queue_size * 0.8
            and stats.error_rate < 0.5
            and stats.average_processing_time < self._config.request_timeout_ms * 0.8
        )

    def clear(self, reason: str = "Queue cleared") -> int:
        """Reject every backlogged task with ``reason``; active tasks are untouched.

        Returns:
            Number of tasks rejected
        """
        cleared = 0
        while self._backlog:
            _, task = self._backlog.popitem(last=False)
            if task.queue_timer is not None:
                task.queue_timer.cancel()
            if _settle(task.future, error=QueueClearedError(reason, task_id=task.id, label=task.label)):
                cleared += 1
        if cleared:
            logger.info("Cleared %d queued request(s): %s", cleared, reason)
        return cleared

    def update_config(self, **changes: Any) -> QueueConfig:
        """Override configuration fields; applies to subsequently admitted tasks.

        Raises:
            TypeError: If a field name is unknown
            ValueError: If a value is out of range; the current configuration is kept
        """
        self._config = dataclasses.replace(self._config, **changes)
        return self.get_config()

    def get_config(self) -> QueueConfig:
        """Return a copy of the current configuration."""
        return dataclasses.replace(self._config)


__all__ = [
    "Operation",
    "QueueConfig",
    "QueueStats",
    "QueuedTask",
    "RequestScheduler",
    "race_with_timeout",
]
