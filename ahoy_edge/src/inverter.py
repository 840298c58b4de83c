"""
Per-inverter crawl state: identity, schedule and buffered series.

A CrawledInverter is created once by :meth:`CrawledInverter.discover` and
lives for the whole process. It owns one summary Dataset (AC side, channel 0)
and one Dataset per DC channel, all stamped with the same timestamp on each
crawl.

Scheduling rules:

- A freshly discovered inverter is due immediately (``next_crawl_at`` unset).
- The first successful crawl fixes ``crawling_interval`` (the default passed
  in at that moment). Later crawls reuse it even if the default changes.
- A failed crawl changes nothing, so the inverter stays due and is retried
  on the next scheduler pass. There is no backoff.

CHANGELOG:
- 2026-10-19: DC channel series ids are 0-based
- 2026-10-17: Flush keeps going after a failing series and re-raises the first error
- 2026-10-14: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

from ahoy_edge.src.catalog import FieldCatalog
from ahoy_edge.src.dataset import Dataset
from ahoy_edge.src.errors import ParseError, StorageError

if TYPE_CHECKING:
    from ahoy_edge.src.ahoy_api import AhoyApi
    from ahoy_edge.src.models import Inverter
    from ahoy_edge.src.sinks import Sink

logger = logging.getLogger(__name__)

SUMMARY_SERIES_ID = "summary"
"""Series id of the channel-0 (AC summary) dataset."""

_EntryT = TypeVar("_EntryT")


class CrawledInverter:
    """One inverter known to the crawler.

    Use :meth:`discover` rather than calling the constructor directly.

    Args:
        api: Shared read-only gateway client used by :meth:`crawl`.
        inverter: Roster entry from ``/api/inverter/list``.
        summary_catalog: Catalog of the channel-0 fields.
        channel_catalog: Catalog shared by all DC channels.
        is_enabled: Enabled flag from ``/api/index`` at discovery time.
        is_producing: Producing flag from ``/api/index`` at discovery time.
        is_available: Availability flag from ``/api/index`` at discovery time.
    """

    def __init__(
        self,
        *,
        api: AhoyApi,
        inverter: Inverter,
        summary_catalog: FieldCatalog,
        channel_catalog: FieldCatalog,
        is_enabled: bool,
        is_producing: bool,
        is_available: bool,
    ) -> None:
        self._api = api
        self._inverter = inverter

        self.id: int = inverter.id
        self.name: str = inverter.name
        self.serial: str = inverter.serial
        self.channel_count: int = inverter.channels

        self.is_enabled = is_enabled
        self.is_producing = is_producing
        self.is_available = is_available

        self.crawled_at: datetime | None = None
        self.next_crawl_at: datetime | None = None
        self.crawling_interval: timedelta | None = None

        self.summary_dataset = Dataset(summary_catalog)
        self.channel_datasets: list[Dataset] = [
            Dataset(channel_catalog) for _ in range(self.channel_count)
        ]

    @classmethod
    async def discover(cls, api: AhoyApi, inverter_id: int) -> CrawledInverter:
        """Fetch identity, flags and field catalogs for *inverter_id*.

        Reads ``/api/inverter/list``, ``/api/index`` and ``/api/live``.

        Raises:
            TransportError: A read failed at the HTTP level.
            ParseError: A response was malformed, the id is not listed, or
                the live-field catalog is inconsistent.
        """
        roster = await api.get_inverter_list()
        index = await api.get_index()
        live = await api.get_live()

        inverter = _find_by_id(roster.inverter, inverter_id, "/api/inverter/list")
        flags = _find_by_id(index.inverter, inverter_id, "/api/index")

        try:
            summary_catalog = FieldCatalog.from_names_units(
                live.ch0_fld_names, live.ch0_fld_units
            )
            channel_catalog = FieldCatalog.from_names_units(
                live.fld_names, live.fld_units
            )
        except ValueError as exc:
            raise ParseError(f"invalid live-field catalog: {exc}") from exc

        logger.info(
            "Discovered inverter %d (%s) with %d channels",
            inverter.id,
            inverter.name,
            inverter.channels,
        )
        return cls(
            api=api,
            inverter=inverter,
            summary_catalog=summary_catalog,
            channel_catalog=channel_catalog,
            is_enabled=flags.enabled,
            is_producing=flags.is_producing,
            is_available=flags.is_avail,
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def is_due(self, now: datetime | None = None) -> bool:
        """True when never crawled or ``next_crawl_at`` has been reached."""
        if self.next_crawl_at is None:
            return True
        if now is None:
            now = datetime.now(tz=UTC)
        return self.next_crawl_at <= now

    async def crawl(
        self,
        default_interval: timedelta,
        now: datetime | None = None,
    ) -> None:
        """Fetch one round of readings and buffer them.

        Args:
            default_interval: Interval to adopt if this inverter has none yet.
            now: Crawl timestamp; sampled after the read when omitted.

        Raises:
            TransportError: The read failed at the HTTP level.
            ParseError: The readings could not be interpreted.
        """
        logger.info("Crawling inverter %d (%s)", self.id, self.name)
        readings = await self._api.get_inverter_fields(self._inverter)
        if len(readings) < self.channel_count + 1:
            raise ParseError(
                f"inverter {self.id} returned {len(readings)} channel readings, "
                f"expected {self.channel_count + 1}"
            )

        interval = (
            self.crawling_interval
            if self.crawling_interval is not None
            else default_interval
        )
        crawled_at = now if now is not None else datetime.now(tz=UTC)

        self.crawling_interval = interval
        self.crawled_at = crawled_at
        self.next_crawl_at = crawled_at + interval

        self.summary_dataset.insert_row(readings[0], crawled_at)
        # readings[0] is the AC summary, readings[1:] the DC channels in order.
        for dataset, reading in zip(self.channel_datasets, readings[1:]):
            dataset.insert_row(reading, crawled_at)

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def series(self) -> Iterator[tuple[str, Dataset]]:
        """Yield ``(series_id, dataset)``: summary first, then DC channels.

        DC channel ids are their 0-based position in ``channel_datasets``
        (``"0"`` .. ``"N-1"``).
        """
        yield SUMMARY_SERIES_ID, self.summary_dataset
        for channel, dataset in enumerate(self.channel_datasets):
            yield str(channel), dataset

    @property
    def buffered_rows(self) -> int:
        return sum(len(dataset) for _, dataset in self.series())

    async def flush(self, sink: Sink) -> int:
        """Drain every series of this inverter into *sink*.

        Every series is attempted even if an earlier one fails.

        Returns:
            Total number of rows persisted.

        Raises:
            StorageError: The first failure, raised after all series were tried.
        """
        written = 0
        first_error: StorageError | None = None
        for series_id, dataset in self.series():
            try:
                written += await sink.write_series(dataset, self.name, series_id)
            except StorageError as exc:
                logger.warning(
                    "Flush of %s/%s failed, %d rows kept in memory: %s",
                    self.name,
                    series_id,
                    len(dataset),
                    exc,
                )
                if first_error is None:
                    first_error = exc

        if first_error is not None:
            raise first_error
        logger.info("Flushed %d rows of inverter %d (%s)", written, self.id, self.name)
        return written

    def __repr__(self) -> str:
        return (
            f"CrawledInverter(id={self.id!r}, name={self.name!r}, "
            f"channels={self.channel_count!r}, next_crawl_at={self.next_crawl_at!r})"
        )


def _find_by_id(entries: Sequence[_EntryT], inverter_id: int, source: str) -> _EntryT:
    for entry in entries:
        if entry.id == inverter_id:  # type: ignore[attr-defined]
            return entry
    raise ParseError(f"inverter {inverter_id} is not listed in {source}")
