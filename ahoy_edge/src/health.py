"""
Health file writer for the crawler daemon.

Writes a JSON health file with three fields:
- last_crawl_ts: ISO timestamp of the most recent scheduler pass.
- last_flush_ts: ISO timestamp of the most recent flush pass. Per-inverter
  flush failures are logged by the crawler, not reflected here.
- buffered_rows: Rows held in memory, not yet persisted.

The file is replaced (write to a sibling temp file, then rename) on every
state change, so a container HEALTHCHECK never reads a half-written file.

CHANGELOG:
- 2026-10-18: Replace the file atomically
- 2026-10-16: Track buffered rows instead of spool size
- 2026-10-12: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from pathlib import Path


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


class HealthWriter:
    """Writes crawler health status to a JSON file.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._state: dict[str, str | int | None] = {
            "last_crawl_ts": None,
            "last_flush_ts": None,
            "buffered_rows": 0,
        }

    def record_crawl(self) -> None:
        """Record a scheduler pass."""
        self._state["last_crawl_ts"] = _now_iso()
        self._write()

    def record_flush(self) -> None:
        """Record a flush pass."""
        self._state["last_flush_ts"] = _now_iso()
        self._write()

    def set_buffered_rows(self, count: int) -> None:
        self._state["buffered_rows"] = count
        self._write()

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(self._state))
        os.replace(tmp_path, self.path)
