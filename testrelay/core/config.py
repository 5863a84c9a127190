"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Application settings for TestRelay.

This module holds the process-wide settings that are not part of an integration
config: logging, the batch execution policy and the HTTP timeout. Every setting
can be supplied through ``TESTRELAY_`` prefixed environment variables.
"""

import logging
import os
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "TESTRELAY_"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def env_setting(key: str, default: str | None = None) -> str | None:
    """Read ``TESTRELAY_<KEY>`` from the environment."""
    return os.environ.get(f"{ENV_PREFIX}{key.upper()}", default)


def env_flag(key: str, default: bool = False) -> bool:
    value = env_setting(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class LoggingConfig(BaseModel):
    """Where and how TestRelay writes its log records."""

    level: str = Field(default="INFO", description="Threshold of the testrelay logger")
    use_rich: bool = Field(default=True, description="Render console lines with rich")
    log_file: str | None = Field(default=None, description="Also write records to this file")
    json_format: bool = Field(default=False, description="Write file records as JSON lines")
    include_correlation_id: bool = Field(
        default=False,
        description="Append the run correlation id to console lines",
    )

    @field_validator("level")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            logger.warning(f"Unknown log level '{value}', using INFO")
            return "INFO"
        return level

    @classmethod
    def from_env(cls, **overrides) -> "LoggingConfig":
        settings: dict[str, Any] = {
            "level": env_setting("LOG_LEVEL", "INFO"),
            "use_rich": env_flag("LOG_USE_RICH", True),
            "log_file": env_setting("LOG_FILE"),
            "json_format": env_flag("LOG_JSON"),
            "include_correlation_id": env_flag("LOG_CORRELATION_ID"),
        }
        settings.update(overrides)
        return cls(**settings)

    def configure_logging(self, debug: bool = False) -> None:
        """Install handlers on the testrelay logger; ``debug`` forces the DEBUG threshold."""
        from testrelay.core.logging import configure_logging

        configure_logging(
            level=logging.DEBUG if debug else getattr(logging, self.level),
            log_file=self.log_file,
            json_format=self.json_format,
            include_timestamp=True,
            use_rich=self.use_rich,
            include_correlation_id=self.include_correlation_id,
            debug=debug,
        )


class BatchConfig(BaseModel):
    """Execution policy for batches of network operations."""

    concurrency_limit: int = Field(default=5, ge=1, description="Operations in flight at once")
    throttle_limit: int = Field(default=2, ge=1, description="Operation starts per throttle interval")
    throttle_interval: float = Field(default=1.0, gt=0, description="Rate limiting window in seconds")
    batch_size: int = Field(default=10, ge=1, description="Operations per dispatched chunk")
    retry_attempts: int = Field(default=3, ge=0, description="Retries after the first attempt")
    retry_delay: float = Field(default=1.0, ge=0, description="Fixed delay between attempts")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")

    @classmethod
    def from_env(cls, **overrides) -> "BatchConfig":
        settings: dict[str, Any] = {
            "concurrency_limit": int(env_setting("CONCURRENCY", "5")),
            "throttle_limit": int(env_setting("THROTTLE_LIMIT", "2")),
            "throttle_interval": float(env_setting("THROTTLE_INTERVAL", "1.0")),
            "batch_size": int(env_setting("BATCH_SIZE", "10")),
            "retry_attempts": int(env_setting("RETRY_ATTEMPTS", "3")),
            "retry_delay": float(env_setting("RETRY_DELAY", "1.0")),
            "request_timeout": float(env_setting("REQUEST_TIMEOUT", "30.0")),
        }
        settings.update(overrides)
        return cls(**settings)


class AppConfig(BaseModel):
    """Settings shared by every command of one process."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    debug: bool = Field(default=False, description="Verbose logging")
    strict: bool = Field(default=False, description="Abort a pass on the first transformation error")

    @model_validator(mode="after")
    def apply_debug(self):
        if self.debug:
            self.logging.level = "DEBUG"
        return self

    @classmethod
    def from_env(cls, **overrides) -> "AppConfig":
        """
        Build the settings from the environment.

        ``logging`` and ``batch`` overrides may be plain dicts; they replace the
        environment values of that section as a whole.
        """
        settings: dict[str, Any] = {
            "logging": LoggingConfig.from_env(),
            "batch": BatchConfig.from_env(),
            "debug": env_flag("DEBUG"),
            "strict": env_flag("STRICT"),
        }
        sections = {"logging": LoggingConfig, "batch": BatchConfig}
        for key, value in overrides.items():
            if key in sections and isinstance(value, dict):
                value = sections[key](**value)
            settings[key] = value
        return cls(**settings)

    def configure_logging(self) -> None:
        self.logging.configure_logging(debug=self.debug)


_app_config: AppConfig | None = None


def get_app_config() -> AppConfig:
    """Return the process settings, reading the environment on first use."""
    global _app_config
    if _app_config is None:
        _app_config = AppConfig.from_env()
    return _app_config


def init_app_config(config: AppConfig | None = None, **kwargs) -> AppConfig:
    """Replace the process settings with ``config`` or with ``AppConfig.from_env(**kwargs)``."""
    global _app_config
    _app_config = config if config is not None else AppConfig.from_env(**kwargs)
    return _app_config
