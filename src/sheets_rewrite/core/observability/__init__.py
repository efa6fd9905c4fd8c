"""
Observability utilities for sheets-rewrite.

Provides the rolling performance monitor fed by the scheduler and rewrite
service, and the redaction helpers used before anything is logged.

Example:
    from sheets_rewrite.core.observability import MetricEntry, PerformanceMonitor

    monitor = PerformanceMonitor()
    monitor.record_metric(MetricEntry(request_id="req_1", endpoint="rewrite", total_duration=950))
    if not monitor.is_healthy():
        for line in monitor.get_recommendations():
            logger.warning(line)
"""

from sheets_rewrite.core.observability.performance import (
    MetricEntry,
    PerformanceMonitor,
    PerformanceStats,
    PerformanceThresholds,
    RollingWindow,
    percentile,
)
from sheets_rewrite.core.observability.redaction import (
    SENSITIVE_FIELD_TERMS,
    SENSITIVE_PATTERNS,
    error_snapshot,
    is_sensitive_field,
    redact_for_logging,
    redact_sensitive_data,
    sanitize_error,
)

__all__ = [
    # Performance
    "MetricEntry",
    "PerformanceMonitor",
    "PerformanceStats",
    "PerformanceThresholds",
    "RollingWindow",
    "percentile",
    # Redaction
    "SENSITIVE_FIELD_TERMS",
    "SENSITIVE_PATTERNS",
    "error_snapshot",
    "is_sensitive_field",
    "redact_for_logging",
    "redact_sensitive_data",
    "sanitize_error",
]
