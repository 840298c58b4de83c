"""
Scheduler that owns every CrawledInverter and drives crawl/flush passes.

The crawler keeps a registry ``{inverter_id: CrawledInverter}``. Inverters
are discovered lazily on first reference (or all at once via :meth:`init`)
and kept for the process lifetime. A discovery failure is never cached.

One pass (:meth:`Crawler.crawl_all_due`) crawls every inverter that is due
and, when asked to, flushes it right after a successful crawl. Failures are
isolated per inverter: an error is logged and the pass continues with the
next one. The pass returns the earliest upcoming due time so the caller
knows how long to sleep.

Everything runs on a single asyncio task; no inverter is crawled while
another crawl or flush is in progress, so the registry needs no locking.

CHANGELOG:
- 2026-10-19: Leave inverters that failed in a pass out of the next due time
- 2026-10-17: Add flush_all for the shutdown path
- 2026-10-15: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from ahoy_edge.src.errors import AhoyError, StorageError
from ahoy_edge.src.inverter import CrawledInverter

if TYPE_CHECKING:
    from ahoy_edge.src.ahoy_api import AhoyApi
    from ahoy_edge.src.sinks import Sink

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = timedelta(seconds=60)


class Crawler:
    """Registry and pass driver for all inverters behind one gateway.

    Args:
        api: Shared gateway client handed to every discovered inverter.
        sink: Where flushed rows go (CsvSink or SqlSink).
        default_interval: Crawl interval adopted by inverters on their first
            crawl. May be changed later; inverters already crawled keep
            their interval.
    """

    def __init__(
        self,
        api: AhoyApi,
        sink: Sink,
        default_interval: timedelta = DEFAULT_INTERVAL,
    ) -> None:
        self._api = api
        self.sink = sink
        self.default_interval = default_interval
        self.inverters: dict[int, CrawledInverter] = {}

    async def init(self) -> int:
        """Discover every inverter in the gateway roster.

        Inverters already known are skipped, so a failed init can simply be
        retried.

        Returns:
            Number of newly discovered inverters.

        Raises:
            TransportError, ParseError: Reading the roster or discovering an
                inverter failed.
        """
        roster = await self._api.get_inverter_list()
        added = 0
        for entry in roster.inverter:
            if entry.id in self.inverters:
                continue
            self.inverters[entry.id] = await CrawledInverter.discover(self._api, entry.id)
            added += 1
        return added

    async def get_inverter(self, inverter_id: int) -> CrawledInverter:
        """Return the known inverter, discovering and caching it on a miss."""
        inverter = self.inverters.get(inverter_id)
        if inverter is None:
            logger.info("Initiating inverter %d", inverter_id)
            inverter = await CrawledInverter.discover(self._api, inverter_id)
            self.inverters[inverter_id] = inverter
        return inverter

    async def crawl_inverter(self, inverter_id: int) -> None:
        """Crawl one inverter now, discovering it if needed. Does not flush."""
        inverter = await self.get_inverter(inverter_id)
        await inverter.crawl(self.default_interval)

    async def crawl_all_due(
        self,
        now: datetime | None = None,
        should_flush: bool = False,
    ) -> datetime | None:
        """Run one scheduler pass.

        Args:
            now: Reference time for the due check. When given it is also
                used as the crawl timestamp; otherwise each crawl samples
                the clock itself.
            should_flush: Flush each inverter after a successful crawl.

        Returns:
            The earliest ``next_crawl_at`` over all known inverters whose
            crawl did not fail in this pass, or ``None`` when there is none.
            This may already lie in the past when an inverter became due
            while others were being crawled.
        """
        due_ids = [
            inverter_id
            for inverter_id, inverter in self.inverters.items()
            if inverter.is_due(now)
        ]
        failed_ids: set[int] = set()
        for inverter_id in due_ids:
            inverter = self.inverters[inverter_id]
            try:
                await inverter.crawl(self.default_interval, now=now)
            except AhoyError as exc:
                logger.error("Crawling inverter %d failed: %s", inverter_id, exc)
                failed_ids.add(inverter_id)
                continue

            if should_flush:
                try:
                    await inverter.flush(self.sink)
                except StorageError as exc:
                    logger.error("Flushing inverter %d failed: %s", inverter_id, exc)

        return self.next_due(exclude=failed_ids)

    async def flush_all(self) -> int:
        """Flush every known inverter.

        Returns:
            Total number of rows persisted.

        Raises:
            StorageError: The first failure, after all inverters were tried.
        """
        written = 0
        first_error: StorageError | None = None
        for inverter in self.inverters.values():
            try:
                written += await inverter.flush(self.sink)
            except StorageError as exc:
                logger.error("Flushing inverter %d failed: %s", inverter.id, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
        return written

    def next_due(self, exclude: Collection[int] = ()) -> datetime | None:
        """Earliest ``next_crawl_at`` across known inverters not in *exclude*."""
        due_times = [
            inverter.next_crawl_at
            for inverter_id, inverter in self.inverters.items()
            if inverter.next_crawl_at is not None and inverter_id not in exclude
        ]
        return min(due_times, default=None)

    @property
    def buffered_rows(self) -> int:
        return sum(inverter.buffered_rows for inverter in self.inverters.values())
