"""Service configuration.

Contains the ``ServiceConfig`` dataclass (field definitions and simple
accessor methods). Loading logic lives in the ``_ServiceConfigLoader`` mixin
(``loader.py``) which ``ServiceConfig`` inherits from.

Configuration is explicitly constructed and passed to the objects that need
it; there is no process-wide instance.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from sheets_rewrite.config.domains import CompletionConfig
from sheets_rewrite.config.loader import _ServiceConfigLoader
from sheets_rewrite.core.concurrency import QueueConfig
from sheets_rewrite.core.observability.performance import PerformanceThresholds
from sheets_rewrite.core.retry import RetryConfig

logger = logging.getLogger(__name__)

MAX_SAFE_CONCURRENCY = 10
_HANDLER_NAME = "sheets_rewrite.stream"


@dataclass
class ServiceConfig(_ServiceConfigLoader):
    """Service configuration."""

    environment: str = "development"
    log_level: str = "INFO"
    structured_logging: bool = True

    queue: QueueConfig = field(default_factory=QueueConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    completion: CompletionConfig = field(default_factory=CompletionConfig)
    performance: PerformanceThresholds = field(default_factory=PerformanceThresholds)

    _startup_warnings: List[str] = field(default_factory=list, repr=False)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def startup_warnings(self) -> List[str]:
        return list(self._startup_warnings)

    def _add_startup_warning(self, message: str) -> None:
        logger.warning(message)
        self._startup_warnings.append(message)

    def validate(self) -> List[str]:
        """Return a list of configuration issues (empty when consistent)."""
        issues: List[str] = []

        if self.queue.queue_timeout_ms <= self.queue.request_timeout_ms:
            issues.append("Queue timeout should be greater than request timeout")
        if self.retry.max_delay <= self.retry.base_delay:
            issues.append("Max delay should be greater than base delay")
        if self.queue.max_concurrent > MAX_SAFE_CONCURRENCY:
            issues.append(
                f"Max concurrent requests should not exceed {MAX_SAFE_CONCURRENCY} for API stability"
            )
        if self.queue.max_concurrent < 1:
            issues.append("Max concurrent requests must be at least 1")
        if self.queue.max_queue_size < 0:
            issues.append("Max queue size must not be negative")
        if self.retry.max_retries < 0:
            issues.append("Max retries must not be negative")
        if not 0 <= self.retry.jitter_factor <= 1:
            issues.append("Jitter factor must be between 0 and 1")
        if self.retry.timeout_ms <= 0 or self.queue.request_timeout_ms <= 0:
            issues.append("Timeouts must be positive")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Effective configuration with credentials redacted."""
        data = {
            "environment": self.environment,
            "log_level": self.log_level,
            "structured_logging": self.structured_logging,
            "queue": dataclasses.asdict(self.queue),
            "retry": dataclasses.asdict(self.retry),
            "completion": dataclasses.asdict(self.completion),
            "performance": dataclasses.asdict(self.performance),
        }
        data["retry"]["retryable_errors"] = sorted(
            kind.value for kind in self.retry.retryable_errors
        )
        if self.completion.api_key:
            data["completion"]["api_key"] = "[REDACTED]"
        return data

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        level = getattr(logging, self.log_level, logging.INFO)

        if self.structured_logging:
            # JSON-style structured logging
            formatter = logging.Formatter(
                '{"timestamp":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","message":"%(message)s"}'
            )
        else:
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        handler.set_name(_HANDLER_NAME)

        root_logger = logging.getLogger("sheets_rewrite")
        root_logger.setLevel(level)
        # Replace the handler from a previous call instead of stacking them
        for existing in list(root_logger.handlers):
            if existing.get_name() == _HANDLER_NAME:
                root_logger.removeHandler(existing)
        root_logger.addHandler(handler)
