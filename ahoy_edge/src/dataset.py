"""
In-memory row buffer for one time series, with CSV and SQL drains.

A Dataset collects ``(timestamp, values)`` rows for a single series (the
inverter summary or one DC channel) between flushes. Values are aligned
positionally with the series' FieldCatalog; a field missing from a reading
is stored as ``None``.

Rows leave memory only after they are confirmed as persisted. The two
drains have different failure contracts:

- drain_to_csv(path): row-incremental. Each row is written to the file
  through an unbuffered descriptor, then removed from the buffer. If a
  write fails, rows already written stay removed and the unwritten suffix
  stays buffered, so a retry neither duplicates nor loses rows.
- drain_to_sql(engine, table_name): batch-atomic. All buffered rows go into
  one multi-row INSERT inside a transaction. The buffer is cleared only
  after the transaction commits; on any failure nothing is removed.

The CSV header is written when the target file is empty on disk, never from
an in-memory flag, so restarts against existing files do not repeat it.

CHANGELOG:
- 2026-10-19: Write CSV rows with os.write so a failed row is never half-buffered
- 2026-10-19: Render CSV timestamps in UTC
- 2026-10-16: Add SQL drain (batch-atomic)
- 2026-10-14: Flush file handle after every row before popping it
- 2026-10-13: Initial creation

TODO:
- None
"""

from __future__ import annotations

import csv
import io
import logging
import os
from collections import deque
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, NamedTuple

from sqlalchemy import Column, DateTime, Double, MetaData, Table, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ahoy_edge.src.catalog import FieldCatalog
from ahoy_edge.src.errors import StorageError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
"""Format of the CSV ``timestamp`` column: UTC, second precision, no offset.

Aware timestamps are converted to UTC before rendering; naive ones are
written as given.
"""

TIMESTAMP_COLUMN = "timestamp"


class BufferedRow(NamedTuple):
    """One buffered reading: timestamp plus catalog-aligned values."""

    timestamp: datetime
    values: tuple[float | None, ...]


class Dataset:
    """Append-only buffer of rows for one series.

    Args:
        catalog: The series' field catalog. Defines column order.

    Usage::

        ds = Dataset(FieldCatalog.from_names_units(["U_AC"], ["V"]))
        ds.insert_row({"U_AC": 230.0}, datetime.now(tz=UTC))
        ds.drain_to_csv("out/inverter/summary.csv")
    """

    def __init__(self, catalog: FieldCatalog) -> None:
        self._catalog = catalog
        self._rows: deque[BufferedRow] = deque()

    @property
    def catalog(self) -> FieldCatalog:
        return self._catalog

    @property
    def rows(self) -> tuple[BufferedRow, ...]:
        """Snapshot of the buffered rows, oldest first."""
        return tuple(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    # ------------------------------------------------------------------
    # Buffering
    # ------------------------------------------------------------------

    def insert_row(self, values_by_name: Mapping[str, Any], timestamp: datetime) -> None:
        """Append one reading.

        Each catalog field is looked up by name in *values_by_name*. Entries
        may be plain numbers or objects with a ``value`` attribute (such as
        :class:`~ahoy_edge.src.models.UnitValue`). Names not in the catalog
        are ignored; catalog fields without an entry become ``None``.

        Rows are kept in call order; the caller supplies chronological
        timestamps.
        """
        values = tuple(_to_number(values_by_name.get(fld.name)) for fld in self._catalog)
        self._rows.append(BufferedRow(timestamp, values))

    # ------------------------------------------------------------------
    # Drains
    # ------------------------------------------------------------------

    def drain_to_csv(self, path: str | Path) -> int:
        """Append all buffered rows to the CSV file at *path*.

        Parent folders and the file are created when missing. The header
        (``timestamp`` followed by the catalog names) is written only when
        the file is empty. With an empty buffer this still ensures the file
        and its header exist.

        Returns:
            Number of rows written and removed from the buffer.

        Raises:
            StorageError: The file could not be created, opened or written.
                Rows written before the failure are removed; the rest stay
                buffered.
        """
        path = Path(path)
        written = 0
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Unbuffered descriptor: a failed write leaves no pending bytes
            # that a later close could still push to disk.
            fd = os.open(path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
            try:
                if os.fstat(fd).st_size == 0:
                    header = [TIMESTAMP_COLUMN, *self._catalog.names]
                    _write_all(fd, _encode_csv_row(header))
                while self._rows:
                    _write_all(fd, _encode_csv_row(_format_csv_row(self._rows[0])))
                    self._rows.popleft()
                    written += 1
            finally:
                os.close(fd)
        except (OSError, csv.Error) as exc:
            raise StorageError(
                f"could not write {path} after {written} rows "
                f"({len(self._rows)} still buffered): {exc}"
            ) from exc

        logger.debug("Wrote %d rows to %s", written, path)
        return written

    async def drain_to_sql(self, engine: AsyncEngine, table_name: str) -> int:
        """Insert all buffered rows into *table_name* as one batch.

        The table is created on first use with a ``timestamp`` primary key
        and one nullable double column per catalog field. Creation and the
        multi-row INSERT share one transaction.

        Returns:
            Number of rows inserted and removed from the buffer.

        Raises:
            StorageError: The statement failed. No rows are removed.
        """
        batch = list(self._rows)
        try:
            table = self._sql_table(table_name)
            async with engine.begin() as conn:
                await conn.run_sync(table.create, checkfirst=True)
                if batch:
                    await conn.execute(
                        insert(table).values([self._sql_params(row) for row in batch])
                    )
        except SQLAlchemyError as exc:
            raise StorageError(
                f"could not insert {len(batch)} rows into {table_name!r}: {exc}"
            ) from exc

        for _ in batch:
            self._rows.popleft()
        logger.debug("Inserted %d rows into %s", len(batch), table_name)
        return len(batch)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _sql_table(self, table_name: str) -> Table:
        return Table(
            table_name,
            MetaData(),
            Column(TIMESTAMP_COLUMN, DateTime(timezone=True), primary_key=True),
            *(Column(fld.name, Double, nullable=True) for fld in self._catalog),
        )

    def _sql_params(self, row: BufferedRow) -> dict[str, Any]:
        params: dict[str, Any] = {TIMESTAMP_COLUMN: row.timestamp}
        params.update(zip(self._catalog.names, row.values))
        return params


def _to_number(raw: Any) -> float | None:
    """Unwrap a reading entry into a float, or None when absent."""
    if raw is None:
        return None
    value = getattr(raw, "value", raw)
    if value is None:
        return None
    return float(value)


def _format_value(value: float | None) -> str:
    """Render a value as CSV text: ``230.0`` -> ``230``, None -> ``""``."""
    if value is None:
        return ""
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _format_timestamp(timestamp: datetime) -> str:
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(UTC)
    return timestamp.strftime(TIMESTAMP_FORMAT)


def _format_csv_row(row: BufferedRow) -> list[str]:
    return [_format_timestamp(row.timestamp), *map(_format_value, row.values)]


def _encode_csv_row(fields: list[str]) -> bytes:
    buffer = io.StringIO()
    csv.writer(buffer).writerow(fields)
    return buffer.getvalue().encode("utf-8")


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        view = view[os.write(fd, view):]
