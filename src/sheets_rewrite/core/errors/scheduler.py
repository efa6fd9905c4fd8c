"""Scheduler-local error classes.

These are raised into the caller-facing future of a queued task when the
scheduler itself, rather than the operation, decides the outcome.
"""

from __future__ import annotations

from typing import Optional

from sheets_rewrite.core.errors.base import ErrorKind, RewriteError


class SchedulerError(RewriteError):
    """Base class for failures decided by the scheduler.

    Attributes:
        task_id: Id of the affected task, if one was assigned.
        label: Diagnostic label of the affected task.
    """

    def __init__(
        self,
        message: str,
        *,
        task_id: Optional[str] = None,
        label: Optional[str] = None,
    ):
        super().__init__(message)
        self.task_id = task_id
        self.label = label


class QueueFullError(SchedulerError):
    """The backlog already holds ``max_queue_size`` tasks.

    Attributes:
        max_queue_size: Backlog capacity at the time of rejection.
    """

    default_kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str = "Request queue is full",
        *,
        max_queue_size: Optional[int] = None,
        label: Optional[str] = None,
    ):
        super().__init__(message, label=label)
        self.max_queue_size = max_queue_size


class QueueTimeoutError(SchedulerError):
    """The task stayed backlogged longer than the queue-wait timeout.

    Attributes:
        timeout_ms: The queue-wait bound that was exceeded.
    """

    default_kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str = "Queue timeout",
        *,
        timeout_ms: Optional[float] = None,
        task_id: Optional[str] = None,
        label: Optional[str] = None,
    ):
        super().__init__(message, task_id=task_id, label=label)
        self.timeout_ms = timeout_ms


class ExecutionTimeoutError(SchedulerError):
    """The dispatched operation did not finish within the execution timeout.

    Attributes:
        timeout_ms: The execution bound that was exceeded.
    """

    default_kind = ErrorKind.TIMEOUT

    def __init__(
        self,
        message: str = "Request timeout",
        *,
        timeout_ms: Optional[float] = None,
        task_id: Optional[str] = None,
        label: Optional[str] = None,
    ):
        super().__init__(message, task_id=task_id, label=label)
        self.timeout_ms = timeout_ms


class QueueClearedError(SchedulerError):
    """The backlog was cleared before the task was dispatched."""

    default_kind = ErrorKind.API_UNAVAILABLE
