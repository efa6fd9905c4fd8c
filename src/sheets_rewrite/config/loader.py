"""ServiceConfig loading and validation logic.

Provides ``_ServiceConfigLoader``, a mixin class whose methods are inherited
by ``ServiceConfig`` (defined in ``server.py``). Splitting loading/validation
logic into its own module keeps ``server.py`` focused on field definitions
and simple accessor methods.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, cast

if TYPE_CHECKING:
    from sheets_rewrite.config.server import ServiceConfig

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback

from sheets_rewrite.config.domains import (
    API_KEY_ENV_VAR,
    COMPLETION_FIELDS,
    ENVIRONMENT_PROFILES,
    PERFORMANCE_FIELDS,
    QUEUE_FIELDS,
    RETRY_FIELDS,
    TUNED_QUEUE,
    TUNED_RETRY,
    CompletionConfig,
    Parser,
    apply_overrides,
)
from sheets_rewrite.config.parsing import (
    _normalize_environment,
    _try_parse_bool,
    _try_parse_log_level,
)
from sheets_rewrite.core.concurrency import QueueConfig
from sheets_rewrite.core.observability.performance import PerformanceThresholds
from sheets_rewrite.core.retry import RetryConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "SHEETS_REWRITE_"
CONFIG_FILE_ENV_VAR = "SHEETS_REWRITE_CONFIG_FILE"
ENVIRONMENT_ENV_VAR = "SHEETS_REWRITE_ENVIRONMENT"

# env var suffix -> (section attribute, field name)
_ENV_FIELDS: Dict[str, Tuple[str, str]] = {
    "MAX_CONCURRENT": ("queue", "max_concurrent"),
    "MAX_QUEUE_SIZE": ("queue", "max_queue_size"),
    "REQUEST_TIMEOUT_MS": ("queue", "request_timeout_ms"),
    "QUEUE_TIMEOUT_MS": ("queue", "queue_timeout_ms"),
    "MAX_RETRIES": ("retry", "max_retries"),
    "BASE_DELAY": ("retry", "base_delay"),
    "MAX_DELAY": ("retry", "max_delay"),
    "BACKOFF_MULTIPLIER": ("retry", "backoff_multiplier"),
    "JITTER_FACTOR": ("retry", "jitter_factor"),
    "RETRYABLE_ERRORS": ("retry", "retryable_errors"),
    "RETRY_TIMEOUT_MS": ("retry", "timeout_ms"),
    "BASE_URL": ("completion", "base_url"),
    "MODEL": ("completion", "model"),
    "TEMPERATURE": ("completion", "temperature"),
    "MAX_TOKENS": ("completion", "max_tokens"),
    "COMPLETION_TIMEOUT_SECONDS": ("completion", "request_timeout_seconds"),
}

_SECTION_PARSERS: Dict[str, Dict[str, Parser]] = {
    "queue": QUEUE_FIELDS,
    "retry": RETRY_FIELDS,
    "completion": COMPLETION_FIELDS,
    "performance": PERFORMANCE_FIELDS,
}


class _ServiceConfigLoader:
    """Mixin providing config-loading methods for ``ServiceConfig``.

    These methods are inherited by the ``ServiceConfig`` dataclass defined in
    ``server.py``. At runtime ``self`` is always a ``ServiceConfig`` instance.
    """

    if TYPE_CHECKING:
        environment: str
        log_level: str
        structured_logging: bool
        queue: QueueConfig
        retry: RetryConfig
        completion: CompletionConfig
        performance: PerformanceThresholds
        _startup_warnings: List[str]

        def _add_startup_warning(self, warning: str) -> None: ...

        def validate(self) -> List[str]: ...

    @classmethod
    def from_env(
        cls,
        config_file: Optional[str] = None,
        *,
        environment: Optional[str] = None,
    ) -> "ServiceConfig":
        """
        Create configuration from environment variables and optional TOML file.

        Priority (highest to lowest):
        1. Environment variables
        2. Explicit file (argument or SHEETS_REWRITE_CONFIG_FILE), else
           project TOML config (./sheets-rewrite.toml)
        3. User TOML config (~/.sheets-rewrite.toml)
        4. XDG config (~/.config/sheets-rewrite/config.toml)
        5. Environment profile (development, production or testing)
        6. Default values
        """
        config = cls()
        config.apply_profile(environment or os.environ.get(ENVIRONMENT_ENV_VAR) or config.environment)

        toml_path = config_file or os.environ.get(CONFIG_FILE_ENV_VAR)
        if toml_path:
            config._load_toml(Path(toml_path))
        else:
            # Layered config loading (lowest to highest priority)
            xdg_config_home = os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")
            xdg_config = Path(xdg_config_home) / "sheets-rewrite" / "config.toml"
            if xdg_config.exists():
                config._load_toml(xdg_config)
                logger.debug("Loaded XDG config from %s", xdg_config)

            home_config = Path.home() / ".sheets-rewrite.toml"
            if home_config.exists():
                config._load_toml(home_config)
                logger.debug("Loaded user config from %s", home_config)

            project_config = Path("sheets-rewrite.toml")
            if project_config.exists():
                config._load_toml(project_config)
                logger.debug("Loaded project config from %s", project_config)

        config._load_env()
        config._validate_startup_configuration()

        return cast("ServiceConfig", config)

    def apply_profile(self, environment: str) -> None:
        """Apply the tuned queue/retry settings for ``environment``."""
        self.environment = _normalize_environment(environment)
        self.queue = dataclasses.replace(self.queue, **TUNED_QUEUE)
        profile = {**TUNED_RETRY, **ENVIRONMENT_PROFILES[self.environment]}
        self.retry = dataclasses.replace(self.retry, **profile)

    def _load_toml(self, path: Path) -> None:
        """Load configuration from TOML file."""
        if not path.exists():
            logger.warning("Config file not found: %s", path)
            return

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error("Error loading config file %s: %s", path, e)
            return

        for table, values in data.items():
            if not isinstance(values, dict):
                self._add_startup_warning(
                    f"Ignoring [{table}] in {path}: expected table, got {type(values).__name__}"
                )
                continue

            if table == "logging":
                self._apply_logging_table(values, source=f"{path}: [logging]")
            elif table in _SECTION_PARSERS:
                for warning in apply_overrides(
                    getattr(self, table),
                    values,
                    _SECTION_PARSERS[table],
                    source=f"{path}: [{table}]",
                ):
                    self._add_startup_warning(warning)
            else:
                self._add_startup_warning(f"Ignoring unknown table [{table}] in {path}")

    def _apply_logging_table(self, values: Dict[str, Any], *, source: str) -> None:
        for key, raw_value in values.items():
            if key == "level":
                level = _try_parse_log_level(raw_value)
                if level is None:
                    self._add_startup_warning(f"Ignoring invalid value for 'level' in {source}: {raw_value!r}")
                else:
                    self.log_level = level
            elif key == "structured":
                structured = _try_parse_bool(raw_value)
                if structured is None:
                    self._add_startup_warning(
                        f"Ignoring invalid value for 'structured' in {source}: {raw_value!r}"
                    )
                else:
                    self.structured_logging = structured
            else:
                self._add_startup_warning(f"Ignoring unknown key '{key}' in {source}")

    def _load_env(self) -> None:
        """Load configuration from environment variables."""
        # Log level
        if level := os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
            parsed_level = _try_parse_log_level(level)
            if parsed_level is None:
                self._add_startup_warning(f"Ignoring invalid {ENV_PREFIX}LOG_LEVEL: {level!r}")
            else:
                self.log_level = parsed_level

        if structured := os.environ.get(f"{ENV_PREFIX}STRUCTURED_LOGGING"):
            parsed_structured = _try_parse_bool(structured)
            if parsed_structured is None:
                self._add_startup_warning(
                    f"Ignoring invalid {ENV_PREFIX}STRUCTURED_LOGGING: {structured!r}"
                )
            else:
                self.structured_logging = parsed_structured

        # API key
        if api_key := os.environ.get(API_KEY_ENV_VAR):
            self.completion.api_key = api_key.strip()

        # Queue, retry and completion settings
        for suffix, (section, field_name) in _ENV_FIELDS.items():
            env_var = f"{ENV_PREFIX}{suffix}"
            if raw_value := os.environ.get(env_var):
                for warning in apply_overrides(
                    getattr(self, section),
                    {field_name: raw_value},
                    _SECTION_PARSERS[section],
                    source=env_var,
                ):
                    self._add_startup_warning(warning)

    def _validate_startup_configuration(self) -> None:
        """Record a startup warning for every validation issue."""
        for issue in self.validate():
            self._add_startup_warning(f"Configuration issue: {issue}")
