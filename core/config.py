"""
Centralized configuration for the Exchange History service.

This module provides a single source of truth for all configuration values.
Configuration is loaded from environment variables with sensible defaults.

Usage:
    from core.config import config

    base_url = config.exchange.base_url
    tz = config.scheduler.tz
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@dataclass(frozen=True)
class ExchangeConfig:
    """Upstream exchange API configuration."""

    base_url: str = field(
        default_factory=lambda: os.getenv(
            "EXCHANGE_BASE_URL", "https://theexchange.apps.vertilehosting.com"
        ).rstrip("/")
    )
    request_timeout: float = field(
        default_factory=lambda: float(os.getenv("EXCHANGE_TIMEOUT", "30"))
    )
    # Pause between per-stock detail requests (upstream rate limit)
    detail_request_delay: float = field(
        default_factory=lambda: float(os.getenv("DETAIL_REQUEST_DELAY", "0.5"))
    )


@dataclass(frozen=True)
class StoreConfig:
    """DuckDB store configuration."""

    db_path: Path = field(
        default_factory=lambda: Path(
            os.getenv(
                "HISTORY_DB_PATH",
                str(Path(__file__).parent.parent / "data" / "history.duckdb"),
            )
        )
    )
    query_timeout: float = 30.0  # seconds


@dataclass(frozen=True)
class SchedulerConfig:
    """Sync scheduler configuration."""

    timezone: str = field(
        default_factory=lambda: os.getenv("HISTORY_TIMEZONE", "America/New_York")
    )
    enabled: bool = field(
        default_factory=lambda: os.getenv("SCHEDULER_ENABLED", "true").lower()
        not in ("0", "false", "no")
    )
    price_interval_seconds: int = 3600
    price_stale_after_seconds: int = 3600
    details_stale_after_seconds: int = 24 * 3600

    @property
    def tz(self) -> ZoneInfo:
        """Fixed civil zone used for every timestamp."""
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class WebConfig:
    """HTTP API configuration."""

    host: str = field(default_factory=lambda: os.getenv("WEB_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("WEB_PORT", "8000")))
    # Bucket used by /historical when no frequency is given
    default_frequency: str = field(
        default_factory=lambda: os.getenv("DEFAULT_FREQUENCY", "hourly")
    )


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "1.0.0"
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    web: WebConfig = field(default_factory=WebConfig)


# Global config instance
config = AppConfig()


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(cfg: AppConfig = None) -> None:
    """
    Validate that all required configuration is present.

    Call this on application startup to fail fast with clear error messages
    instead of cryptic runtime failures.

    Raises:
        ConfigurationError: If configuration is missing or invalid
    """
    from core.models import Bucket

    cfg = cfg or config
    errors = []

    if not cfg.exchange.base_url.startswith(("http://", "https://")):
        errors.append(
            f"EXCHANGE_BASE_URL must be an http(s) URL (got: {cfg.exchange.base_url!r})"
        )

    if cfg.exchange.request_timeout <= 0:
        errors.append("EXCHANGE_TIMEOUT must be positive")

    if cfg.exchange.detail_request_delay < 0:
        errors.append("DETAIL_REQUEST_DELAY cannot be negative")

    try:
        ZoneInfo(cfg.scheduler.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"HISTORY_TIMEZONE is not a known zone: {cfg.scheduler.timezone!r}")

    try:
        Bucket.parse(cfg.web.default_frequency)
    except ValueError as e:
        errors.append(f"DEFAULT_FREQUENCY is invalid: {e}")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
