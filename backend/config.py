"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the session
processing orchestrator. All settings can be overridden via environment
variables or a .env file.

The settings instance is mutable on purpose: a handful of values (notably
``core_metrics_debounce_seconds``) are read on every use rather than captured
at startup, so updating ``settings`` at runtime takes effect immediately.
"""

import json
import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        core_metrics_debounce_seconds: Quiet period after the last session
            update before core metrics are recomputed. Read on every event.
        bulk_ai_rate_limit_ms: Delay inserted between AI-invoking items of a
            bulk run.
        sync_poll_interval_ms: Interval at which sync progress is re-read
            while a tracker is mounted.
        recompute_after_session_end: If False, update events for a session
            that has signalled completion no longer trigger recomputation.
        auto_process_completed_sessions: Compute core metrics as soon as a
            session-completed event arrives.
        delayed_ai_enabled: Run the periodic delayed AI sweep.
        ai_processing_delay_minutes: Minimum time since session end before
            the delayed sweep picks a session up.
        ai_processing_max_age_minutes: Sessions that ended longer ago than
            this are ignored by the delayed sweep.
        ai_sweep_interval_seconds: Period of the delayed AI sweep.
        ai_sweep_batch_size: Maximum sessions handled per sweep.
        database_path: SQLite file backing the local session store.
        collaborators_factory: ``module:function`` returning the external
            collaborators bundle used by ``main.create_app``.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Debounced recomputation
    core_metrics_debounce_seconds: float = 10.0
    recompute_after_session_end: bool = True
    auto_process_completed_sessions: bool = True

    # Bulk processing
    bulk_ai_rate_limit_ms: int = 2000

    # Historical sync
    sync_poll_interval_ms: int = 1000

    # Delayed AI processing
    delayed_ai_enabled: bool = True
    ai_processing_delay_minutes: int = 10
    ai_processing_max_age_minutes: int = 60
    ai_sweep_interval_seconds: float = 60.0
    ai_sweep_batch_size: int = 10

    # Storage / wiring
    database_path: str = "./data/sessions.db"
    collaborators_factory: str = ""

    # Server Configuration
    backend_port: int = 8000
    cors_origins: str | list[str] = ["http://localhost:1420"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:1420"]'
        - Comma-separated: 'http://localhost:1420,http://localhost:3000'
        - Single value: 'http://localhost:1420'
        - Already a list: ["http://localhost:1420"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:1420"]

    @field_validator("core_metrics_debounce_seconds")
    @classmethod
    def non_negative_window(cls, v: float) -> float:
        """Reject negative debounce windows."""
        if v < 0:
            raise ValueError("core_metrics_debounce_seconds must be >= 0")
        return v

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
    )

    @property
    def bulk_ai_rate_limit_seconds(self) -> float:
        return self.bulk_ai_rate_limit_ms / 1000.0

    @property
    def sync_poll_interval_seconds(self) -> float:
        return self.sync_poll_interval_ms / 1000.0


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)
