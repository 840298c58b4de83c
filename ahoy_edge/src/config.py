"""
Crawler configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Only INVERTER_ENDPOINT is required; everything else has a default. The
crawling interval is deliberately lenient: anything that does not parse as a
positive number of seconds falls back to 60 seconds instead of aborting
startup.

CHANGELOG:
- 2026-10-16: Add FLUSH_EVERY_N_PASSES and HEALTH_PATH
- 2026-10-12: Initial creation

TODO:
- None
"""

from __future__ import annotations

from datetime import timedelta

from pydantic import field_validator
from pydantic_settings import BaseSettings

DEFAULT_CRAWLING_INTERVAL_S = 60
"""Fallback crawl interval in seconds for missing or invalid values."""


class CrawlerSettings(BaseSettings):
    """AhoyDTU crawler configuration.

    Attributes:
        inverter_endpoint: Base URL of the AhoyDTU web interface,
            e.g. ``http://192.168.1.50``.
        crawling_interval: Default seconds between crawls of one inverter.
        out_dir: Root folder for CSV output.
        database_url: SQLAlchemy async URL. When set, buffered rows are
            flushed to the database instead of CSV files.
        flush_every_n_passes: Flush buffered rows on every Nth scheduler pass.
        http_timeout_s: Timeout for each request to the gateway.
        logging_target: ``stdout``, a log file path, or unset for stderr.
        log_level: Root log level name.
        health_path: Path of the JSON health file, or unset to disable it.
    """

    inverter_endpoint: str
    crawling_interval: int = DEFAULT_CRAWLING_INTERVAL_S
    out_dir: str = "./out"
    database_url: str | None = None
    flush_every_n_passes: int = 5
    http_timeout_s: float = 10.0
    logging_target: str | None = None
    log_level: str = "INFO"
    health_path: str | None = None

    @field_validator("inverter_endpoint")
    @classmethod
    def inverter_endpoint_must_be_set(cls, v: str) -> str:
        """Reject an empty endpoint and strip any trailing slash."""
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("INVERTER_ENDPOINT must not be empty")
        return v

    @field_validator("crawling_interval", mode="before")
    @classmethod
    def crawling_interval_falls_back(cls, v: object) -> int:
        """Fall back to the default interval for unusable values."""
        try:
            seconds = int(str(v).strip())
        except ValueError:
            return DEFAULT_CRAWLING_INTERVAL_S
        if seconds <= 0:
            return DEFAULT_CRAWLING_INTERVAL_S
        return seconds

    @field_validator("flush_every_n_passes")
    @classmethod
    def flush_every_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("FLUSH_EVERY_N_PASSES must be >= 1")
        return v

    @field_validator("http_timeout_s")
    @classmethod
    def http_timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("HTTP_TIMEOUT_S must be > 0")
        return v

    @field_validator("database_url", "logging_target", "health_path")
    @classmethod
    def blank_means_unset(cls, v: str | None) -> str | None:
        """Treat empty strings from .env files as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def default_interval(self) -> timedelta:
        """The default crawl interval as a timedelta."""
        return timedelta(seconds=self.crawling_interval)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
