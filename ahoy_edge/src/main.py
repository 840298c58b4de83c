"""
Crawler daemon main loop for the AhoyDTU-to-storage pipeline.

Runs a single asyncio task that:
1. Discovers all inverters behind the gateway, retrying until it succeeds.
2. Repeats scheduler passes: crawl every due inverter and buffer its
   readings; on every Nth pass also flush the buffers to the sink.
3. Sleeps until the earliest next due time of the inverters that did not
   fail in that pass. A due time already in the past starts the next pass
   at once; with no due time at all it waits the default interval, so a
   failing inverter is retried at most once per interval unless a healthy
   one wakes the loop sooner.

Buffering several passes before flushing keeps write amplification low; the
price is that up to N passes of readings live only in memory. On SIGTERM or
SIGINT the loop stops after the current pass and performs one final flush
so buffered rows are not lost.

Structured JSON logging is used for all events. An optional HealthWriter
records the last pass, the last flush pass and the buffered row count.

CHANGELOG:
- 2026-10-19: Run the next pass at once when a healthy inverter is already due
- 2026-10-18: Sleep the default interval when the next due time already passed
- 2026-10-17: Final flush on shutdown
- 2026-10-15: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from ahoy_edge.src.errors import AhoyError, StorageError
from ahoy_edge.src.health import HealthWriter

if TYPE_CHECKING:
    from ahoy_edge.src.config import CrawlerSettings
    from ahoy_edge.src.crawler import Crawler
    from ahoy_edge.src.sinks import Sink

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


class _JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(target: str | None = None, level: str = "INFO") -> None:
    """Configure structured JSON logging for the crawler daemon.

    Args:
        target: ``None`` for stderr, ``"stdout"`` for stdout, anything else
            is a log file path opened in append mode. If the file cannot be
            opened, logging falls back to stderr.
        level: Root log level name.
    """
    fallback_error: OSError | None = None
    handler: logging.Handler
    if target is None:
        handler = logging.StreamHandler(sys.stderr)
    elif target == "stdout":
        handler = logging.StreamHandler(sys.stdout)
    else:
        try:
            Path(target).parent.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(target, mode="a", encoding="utf-8")
        except OSError as exc:
            fallback_error = exc
            handler = logging.StreamHandler(sys.stderr)

    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
        old.close()
    root.addHandler(handler)
    root.setLevel(level.upper())

    if fallback_error is not None:
        logger.error(
            "Could not open log file %s, logging to stderr instead: %s",
            target,
            fallback_error,
        )


def _masked_url(url: str | None) -> str:
    """Render a database URL without its password."""
    if not url:
        return "unset"
    try:
        return make_url(url).render_as_string(hide_password=True)
    except ArgumentError:
        return "invalid"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: CrawlerSettings) -> None:
    """Log a config summary at startup, with the database password masked."""
    logger.info(
        "Crawler starting with config: "
        "inverter_endpoint=%s, crawling_interval=%s, out_dir=%s, "
        "database_url=%s, flush_every_n_passes=%s, http_timeout_s=%s, "
        "health_path=%s",
        settings.inverter_endpoint,
        settings.crawling_interval,
        settings.out_dir,
        _masked_url(settings.database_url),
        settings.flush_every_n_passes,
        settings.http_timeout_s,
        settings.health_path,
    )


def build_sink(settings: CrawlerSettings) -> Sink:
    """SqlSink when DATABASE_URL is set, CsvSink below OUT_DIR otherwise."""
    from ahoy_edge.src.sinks import CsvSink, SqlSink

    if settings.database_url:
        return SqlSink.from_url(settings.database_url)
    return CsvSink(settings.out_dir)


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


def should_flush(pass_index: int, every: int) -> bool:
    """True on every *every*-th pass (0-based index: every-1, 2*every-1, ...)."""
    return pass_index % every == every - 1


def _sleep_duration(
    next_due: datetime | None,
    now: datetime,
    default_interval: timedelta,
) -> float:
    """Seconds to sleep before the next pass.

    *next_due* never includes inverters whose crawl failed in the last pass,
    so a due time in the past belongs to an inverter that became due while
    others were crawled: the next pass starts at once. With no due time at
    all (every inverter failing) the loop waits *default_interval*.
    """
    if next_due is None:
        logger.warning(
            "No next due inverter, sleeping %.1fs", default_interval.total_seconds()
        )
        return default_interval.total_seconds()
    remaining = (next_due - now).total_seconds()
    if remaining <= 0:
        logger.debug("Next due time passed %.3fs ago, crawling now", -remaining)
        return 0.0
    return remaining


async def _crawl_pass(
    *,
    crawler: Crawler,
    flush: bool,
    health: HealthWriter | None,
) -> datetime | None:
    """Execute a single scheduler pass.

    Catches all exceptions so that the caller's loop is never broken.
    Per-inverter errors are already handled inside the crawler; anything
    reaching this level is unexpected and logged with a traceback.

    Returns:
        The earliest next due time, or ``None``.
    """
    next_due: datetime | None = None
    try:
        next_due = await crawler.crawl_all_due(should_flush=flush)
        logger.debug("Pass done (flush=%s), next due %s", flush, next_due)
    except Exception:
        logger.error("Crawl pass error", exc_info=True)

    if health is not None:
        try:
            health.set_buffered_rows(crawler.buffered_rows)
            health.record_crawl()
            if flush:
                health.record_flush()
        except OSError:
            logger.warning("Failed to write health file", exc_info=True)

    return next_due


async def _init_crawler(
    *,
    crawler: Crawler,
    retry_delay_s: float,
    shutdown_event: asyncio.Event,
) -> bool:
    """Discover all inverters, retrying every *retry_delay_s* until it works.

    Returns:
        True once initialized, False if shutdown was requested first.
    """
    while not shutdown_event.is_set():
        try:
            added = await crawler.init()
        except AhoyError as exc:
            logger.error("Error initializing crawler: %s", exc)
        else:
            logger.info("Crawler initialized with %d inverters", added)
            return True
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=retry_delay_s)
    return False


async def _final_flush(crawler: Crawler) -> None:
    logger.info("Attempting final flush before exit")
    try:
        written = await crawler.flush_all()
    except StorageError as exc:
        logger.error("Final flush failed, %d rows lost: %s", crawler.buffered_rows, exc)
    else:
        logger.info("Final flush wrote %d rows", written)


# ---------------------------------------------------------------------------
# Loop runner
# ---------------------------------------------------------------------------


async def run_loop(
    *,
    crawler: Crawler,
    shutdown_event: asyncio.Event,
    flush_every_n_passes: int = 5,
    health: HealthWriter | None = None,
) -> None:
    """Run scheduler passes until shutdown_event is set, then flush.

    Args:
        crawler: The crawler with its sink and default interval.
        shutdown_event: Event to signal graceful shutdown.
        flush_every_n_passes: Flush on every Nth pass.
        health: HealthWriter instance, or None to skip health writes.
    """
    retry_delay_s = crawler.default_interval.total_seconds()
    if not await _init_crawler(
        crawler=crawler,
        retry_delay_s=retry_delay_s,
        shutdown_event=shutdown_event,
    ):
        logger.info("Shutdown requested before initialization completed")
        return

    logger.info("Crawl loop started (flush every %d passes)", flush_every_n_passes)
    pass_index = 0
    while not shutdown_event.is_set():
        next_due = await _crawl_pass(
            crawler=crawler,
            flush=should_flush(pass_index, flush_every_n_passes),
            health=health,
        )
        pass_index += 1
        delay = _sleep_duration(
            next_due, datetime.now(tz=UTC), crawler.default_interval
        )
        # Use wait with timeout so we can check shutdown between sleeps
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
    logger.info("Crawl loop stopped")

    await _final_flush(crawler)
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run the loop.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    from ahoy_edge.src.ahoy_api import AhoyApi
    from ahoy_edge.src.config import CrawlerSettings
    from ahoy_edge.src.crawler import Crawler
    from ahoy_edge.src.sinks import SqlSink

    settings = CrawlerSettings()
    configure_logging(settings.logging_target, settings.log_level)
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    api = AhoyApi(settings.inverter_endpoint, timeout_s=settings.http_timeout_s)
    sink = build_sink(settings)
    crawler = Crawler(api, sink, default_interval=settings.default_interval)
    health = HealthWriter(settings.health_path) if settings.health_path else None

    try:
        await run_loop(
            crawler=crawler,
            shutdown_event=shutdown_event,
            flush_every_n_passes=settings.flush_every_n_passes,
            health=health,
        )
    finally:
        if isinstance(sink, SqlSink):
            await sink.dispose()


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event."""
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the crawler daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
