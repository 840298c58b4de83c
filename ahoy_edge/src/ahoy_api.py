"""
Async HTTP client for the AhoyDTU REST API.

Wraps the four read endpoints the crawler needs and converts their JSON
bodies into the pydantic models from :mod:`ahoy_edge.src.models`. All
failures are mapped onto the crawler error kinds:

- connection errors, timeouts and non-2xx responses -> TransportError
- invalid JSON or schema mismatches -> ParseError

The client holds no mutable state after construction, so one instance is
shared by the Crawler and every CrawledInverter it discovers.

Operations:
- get_inverter_list(): GET /api/inverter/list
- get_inverter_status(inverter): GET /api/inverter/id/{id}
- get_live(): GET /api/live
- get_index(): GET /api/index
- get_inverter_fields(inverter, selected_fields): status + live combined
  into one ``{field_name: UnitValue}`` mapping per channel.

CHANGELOG:
- 2026-10-15: Accept an httpx transport for offline testing
- 2026-10-13: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ahoy_edge.src.errors import ParseError, TransportError
from ahoy_edge.src.models import (
    Index,
    Inverter,
    InverterList,
    InverterStatus,
    Live,
    UnitValue,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S: float = 10.0
"""Per-request timeout in seconds."""

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class AhoyApi:
    """Read-only client for one AhoyDTU gateway.

    Args:
        endpoint: Base URL of the gateway, e.g. ``http://192.168.1.50``.
        timeout_s: Per-request timeout in seconds.
        transport: Optional httpx transport. Tests pass an
            ``httpx.MockTransport`` to serve recorded responses.

    Usage::

        api = AhoyApi("http://192.168.1.50")
        roster = await api.get_inverter_list()
        readings = await api.get_inverter_fields(roster.inverter[0])
    """

    def __init__(
        self,
        endpoint: str,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._timeout_s = timeout_s
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return self._endpoint

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_inverter_list(self) -> InverterList:
        """Fetch the inverter roster."""
        return await self._get("/api/inverter/list", InverterList)

    async def get_inverter_status(self, inverter: Inverter) -> InverterStatus:
        """Fetch the current per-channel values of *inverter*."""
        return await self._get(f"/api/inverter/id/{inverter.id}", InverterStatus)

    async def get_live(self) -> Live:
        """Fetch the live-field catalog (names and units per channel kind)."""
        return await self._get("/api/live", Live)

    async def get_index(self) -> Index:
        """Fetch the gateway index with per-inverter availability flags."""
        return await self._get("/api/index", Index)

    async def get_inverter_fields(
        self,
        inverter: Inverter,
        selected_fields: Iterable[str] | None = None,
    ) -> list[dict[str, UnitValue]]:
        """Fetch one round of readings for every channel of *inverter*.

        Combines ``/api/inverter/id/{id}`` (values) with ``/api/live``
        (names and units). Channel 0 is the AC summary; channels
        ``1..inverter.channels`` are the DC inputs.

        Args:
            inverter: Roster entry of the inverter to read.
            selected_fields: When given, only these field names are kept.

        Returns:
            A list of length ``inverter.channels + 1`` with one
            ``{field_name: UnitValue}`` mapping per channel. A field whose
            value is missing from the status row is left out of the mapping.

        Raises:
            TransportError: The gateway could not be reached.
            ParseError: A response was malformed or lacks channel rows.
        """
        status = await self.get_inverter_status(inverter)
        live = await self.get_live()

        if len(status.ch) < inverter.channels + 1:
            raise ParseError(
                f"inverter {inverter.id} reported {len(status.ch)} channel rows, "
                f"expected {inverter.channels + 1}"
            )

        selected = set(selected_fields) if selected_fields is not None else None
        readings = [
            _combine(status.ch[0], live.ch0_fld_names, live.ch0_fld_units, selected)
        ]
        for channel in range(1, inverter.channels + 1):
            readings.append(
                _combine(status.ch[channel], live.fld_names, live.fld_units, selected)
            )
        return readings

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get(self, path: str, model: type[_ModelT]) -> _ModelT:
        url = f"{self._endpoint}{path}"
        logger.debug("Requesting %s", url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportError(f"GET {url} failed: {exc}") from exc

        try:
            return model.model_validate_json(response.content)
        except ValidationError as exc:
            raise ParseError(
                f"GET {url} returned an unexpected body "
                f"({exc.error_count()} validation errors)"
            ) from exc


def _combine(
    values: list[float],
    names: list[str],
    units: list[str],
    selected: set[str] | None,
) -> dict[str, UnitValue]:
    """Zip one status row with its field names and units."""
    combined: dict[str, UnitValue] = {}
    for index, name in enumerate(names):
        if selected is not None and name not in selected:
            continue
        if index >= len(values):
            continue
        unit = units[index] if index < len(units) else ""
        combined[name] = UnitValue(value=values[index], unit=unit)
    return combined
