"""Configuration package for sheets-rewrite.

Re-exports the public symbols so callers can use
``from sheets_rewrite.config import ServiceConfig``.

Sub-modules:
    parsing  – Boolean/number/error-kind parsing helpers
    domains  – CompletionConfig, environment profiles, per-table field parsers
    loader   – ServiceConfig loading/validation mixin (_ServiceConfigLoader)
    server   – ServiceConfig dataclass
"""

from sheets_rewrite.config.domains import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    ENVIRONMENT_PROFILES,
    TUNED_QUEUE,
    TUNED_RETRY,
    CompletionConfig,
)
from sheets_rewrite.config.server import ServiceConfig

__all__ = [
    "CompletionConfig",
    "DEFAULT_BASE_URL",
    "DEFAULT_MODEL",
    "ENVIRONMENT_PROFILES",
    "ServiceConfig",
    "TUNED_QUEUE",
    "TUNED_RETRY",
]
