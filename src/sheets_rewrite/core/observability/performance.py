"""Rolling performance statistics and health recommendations.

Completion records are kept in a ``RollingWindow`` bounded both by entry
count and by age. Statistics, recommendations and health are computed on
demand over the retained window; nothing is precomputed.
"""

import dataclasses
import logging
import math
import time
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
"""Returns the current wall time in milliseconds."""

E = TypeVar("E")

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_RETENTION_MS = 3_600_000
DEFAULT_CLEANUP_INTERVAL_MS = 300_000


def _wall_clock_ms() -> float:
    return time.time() * 1000.0


@dataclass
class PerformanceThresholds:
    """Latency (ms), error-rate (%) and queue-size thresholds."""

    fast_response: float = 3000
    acceptable_response: float = 8000
    slow_response: float = 15000
    low_error_rate: float = 5
    high_error_rate: float = 20
    healthy_queue_size: int = 5
    unhealthy_queue_size: int = 15


@dataclass(frozen=True)
class MetricEntry:
    """One completion record.

    ``timestamp`` (ms) is assigned by the monitor at record time.
    """

    request_id: str
    endpoint: str
    total_duration: float
    queue_time: float = 0.0
    processing_time: float = 0.0
    response_time: float = 0.0
    request_size: int = 0
    response_size: int = 0
    retry_count: int = 0
    success: bool = True
    error_kind: Optional[str] = None
    status_code: Optional[int] = None
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class PerformanceStats:
    """Statistics over the retained window.

    Latencies are ms, ``error_rate`` is a percentage and ``throughput`` is
    requests per minute.
    """

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    error_rate: float = 0.0
    throughput: float = 0.0
    last_updated: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class RollingWindow(Generic[E]):
    """Time-series buffer capped by entry count and retention age.

    The oldest entry is dropped on append once ``max_entries`` is reached;
    entries older than ``retention_ms`` are dropped by ``evict`` which runs
    explicitly and lazily on every read.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        retention_ms: float = DEFAULT_RETENTION_MS,
        *,
        timestamp_of: Callable[[E], float],
        clock: Optional[Clock] = None,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.retention_ms = retention_ms
        self._timestamp_of = timestamp_of
        self._clock = clock or _wall_clock_ms
        self._entries: Deque[E] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: E) -> None:
        self._entries.append(entry)

    def evict(self, now: Optional[float] = None) -> int:
        """Drop expired entries; returns how many were dropped."""
        cutoff = (self._clock() if now is None else now) - self.retention_ms
        dropped = 0
        # Entries are appended in timestamp order, so expiry is a prefix
        while self._entries and self._timestamp_of(self._entries[0]) <= cutoff:
            self._entries.popleft()
            dropped += 1
        return dropped

    def snapshot(self) -> List[E]:
        """Entries still inside the retention window, oldest first."""
        self.evict()
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


def percentile(sorted_values: List[float], pct: float) -> float:
    """Nearest-rank percentile of an ascending list (0 when empty)."""
    if not sorted_values:
        return 0.0
    index = math.ceil(pct / 100.0 * len(sorted_values)) - 1
    return sorted_values[max(0, index)]


class PerformanceMonitor:
    """Records completion metrics and derives health from them.

    Example:
        >>> monitor = PerformanceMonitor()
        >>> monitor.record_metric(MetricEntry(request_id="req_1", endpoint="rewrite", total_duration=1200))
        >>> monitor.get_stats().average_response_time
        1200.0
    """

    def __init__(
        self,
        thresholds: Optional[PerformanceThresholds] = None,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        retention_ms: float = DEFAULT_RETENTION_MS,
        cleanup_interval_ms: float = DEFAULT_CLEANUP_INTERVAL_MS,
        clock: Optional[Clock] = None,
    ):
        self.thresholds = thresholds or PerformanceThresholds()
        self.cleanup_interval_ms = cleanup_interval_ms
        self._clock = clock or _wall_clock_ms
        self._window: RollingWindow[MetricEntry] = RollingWindow(
            max_entries,
            retention_ms,
            timestamp_of=lambda entry: entry.timestamp or 0.0,
            clock=self._clock,
        )
        self._last_cleanup = self._clock()

    def __len__(self) -> int:
        return len(self._window)

    def record_metric(self, entry: MetricEntry) -> MetricEntry:
        """Timestamp and retain ``entry``; returns the stored record."""
        now = self._clock()
        stored = dataclasses.replace(entry, timestamp=now)
        self._window.append(stored)

        if now - self._last_cleanup > self.cleanup_interval_ms:
            dropped = self._window.evict(now)
            self._last_cleanup = now
            logger.debug(
                "Performance metrics cleanup completed: dropped %d, retained %d",
                dropped,
                len(self._window),
            )

        self._check_thresholds(stored)
        return stored

    def _check_thresholds(self, entry: MetricEntry) -> None:
        if entry.total_duration > self.thresholds.slow_response:
            logger.warning(
                "Slow response detected: %.0fms for %s", entry.total_duration, entry.endpoint
            )
        if not entry.success and entry.error_kind:
            logger.warning("Request failed: %s for %s", entry.error_kind, entry.endpoint)
        if entry.retry_count > 2:
            logger.warning("High retry count: %d for %s", entry.retry_count, entry.endpoint)

    def get_stats(self) -> PerformanceStats:
        """Statistics over the retained window.

        Throughput and ``last_updated`` are computed against the current
        clock, so repeated calls return different results as time passes even
        when nothing new was recorded. The scheduler snapshot from
        ``RequestScheduler.get_stats`` has no such dependency.
        """
        now = self._clock()
        last_updated = datetime.fromtimestamp(now / 1000.0, tz=timezone.utc).isoformat()
        entries = self._window.snapshot()
        if not entries:
            return PerformanceStats(last_updated=last_updated)

        durations = sorted(entry.total_duration for entry in entries)
        total = len(entries)
        successful = sum(1 for entry in entries if entry.success)

        span_minutes = (now - (entries[0].timestamp or now)) / 60000.0
        throughput = total / span_minutes if span_minutes > 0 else 0.0

        return PerformanceStats(
            total_requests=total,
            successful_requests=successful,
            failed_requests=total - successful,
            average_response_time=sum(durations) / total,
            p95_response_time=percentile(durations, 95),
            p99_response_time=percentile(durations, 99),
            error_rate=(total - successful) / total * 100.0,
            throughput=throughput,
            last_updated=last_updated,
        )

    def get_recommendations(self) -> List[str]:
        """Rule-based tuning suggestions; empty when nothing was recorded."""
        stats = self.get_stats()
        if stats.total_requests == 0:
            return []

        limits = self.thresholds
        recommendations = []

        if stats.average_response_time > limits.slow_response:
            recommendations.append("Consider reducing max_tokens or using a faster model")
            recommendations.append("Implement request batching for multiple operations")
        elif stats.average_response_time > limits.acceptable_response:
            recommendations.append("Monitor response times - approaching slow threshold")

        if stats.error_rate > limits.high_error_rate:
            recommendations.append("High error rate detected - check API configuration and network")
            recommendations.append("Consider implementing circuit breaker pattern")
        elif stats.error_rate > limits.low_error_rate:
            recommendations.append("Error rate is elevated - monitor for issues")

        if stats.throughput < 1:
            recommendations.append("Low throughput - consider increasing concurrent request limit")
        elif stats.throughput > 30:
            recommendations.append("High throughput - monitor for rate limiting")

        if stats.p99_response_time > limits.slow_response * 2:
            recommendations.append(
                "Some requests are very slow - investigate timeout configurations"
            )

        return recommendations

    def is_healthy(self) -> bool:
        stats = self.get_stats()
        return (
            stats.average_response_time < self.thresholds.acceptable_response
            and stats.error_rate < self.thresholds.low_error_rate
            and stats.p95_response_time < self.thresholds.slow_response
        )

    def get_error_breakdown(self) -> List[Dict[str, Any]]:
        """Failed requests per error kind, most frequent first."""
        counts = Counter(
            entry.error_kind
            for entry in self._window.snapshot()
            if not entry.success and entry.error_kind
        )
        failed = sum(counts.values())
        return [
            {"code": kind, "count": count, "percentage": count / failed * 100.0}
            for kind, count in counts.most_common()
        ]

    def get_detailed_report(self) -> Dict[str, Any]:
        return {
            "stats": self.get_stats().to_dict(),
            "recommendations": self.get_recommendations(),
            "is_healthy": self.is_healthy(),
            "recent_errors": self.get_error_breakdown(),
        }

    def reset(self) -> None:
        self._window.clear()
        self._last_cleanup = self._clock()


__all__ = [
    "MetricEntry",
    "PerformanceMonitor",
    "PerformanceStats",
    "PerformanceThresholds",
    "RollingWindow",
    "percentile",
]
