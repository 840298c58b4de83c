"""
Shared test fixtures for crawler tests.

Provides:
- Environment isolation for CrawlerSettings (autouse).
- Recorded AhoyDTU responses (one inverter, two DC channels).
- GatewayStub: an httpx.MockTransport handler serving those responses, with
  switches for simulating unreachable endpoints and HTTP errors.

CHANGELOG:
- 2026-10-15: Add GatewayStub and recorded payloads
- 2026-10-12: Initial creation

TODO:
- None
"""

from __future__ import annotations

import copy
import json
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
from ahoy_edge.src.ahoy_api import AhoyApi

# All CrawlerSettings environment variable names, used for cleanup.
_ALL_CRAWLER_ENV_VARS = (
    "INVERTER_ENDPOINT",
    "CRAWLING_INTERVAL",
    "OUT_DIR",
    "DATABASE_URL",
    "FLUSH_EVERY_N_PASSES",
    "HTTP_TIMEOUT_S",
    "LOGGING_TARGET",
    "LOG_LEVEL",
    "HEALTH_PATH",
)

ENDPOINT = "http://ahoy.local"

T0 = datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)
"""Fixed crawl timestamp used across tests."""


# ---------------------------------------------------------------------------
# Recorded gateway responses (AhoyDTU 0.7.36, one HM-600 style inverter)
# ---------------------------------------------------------------------------

RECORDED_INVERTER_LIST: dict[str, Any] = {
    "inverter": [
        {
            "enabled": True,
            "id": 0,
            "name": "PV Microinverte",
            "serial": "114184511809",
            "channels": 2,
            "version": "10010",
            "ch_yield_cor": [0, 0],
            "ch_name": ["A", "B"],
            "ch_max_pwr": [540, 540],
        }
    ],
    "interval": "30",
    "retries": "5",
    "max_num_inverters": 4,
    "rstMid": False,
    "rstNAvail": False,
    "rstComStop": False,
    "strtWthtTm": False,
    "yldEff": 1,
}

RECORDED_INVERTER_STATUS: dict[str, Any] = {
    "id": 0,
    "enabled": True,
    "name": "PV Microinverte",
    "serial": "114184511809",
    "version": "10010",
    "power_limit_read": 65535,
    "power_limit_ack": False,
    "ts_last_success": 1705764469,
    "generation": 0,
    "status": 0,
    "alarm_cnt": 3,
    "ch": [
        [239.7, 0, 0, 49.97, 0, 1.9, 298.886, 37, 1, 0, 0, 475.3],
        [23.2, 0.02, 0.5, 18, 148.505, 0.093, 241.1],
        [23.2, 0.02, 0.5, 19, 150.381, 0.093, 262],
    ],
    "ch_name": ["AC", "A", "B"],
    "ch_max_pwr": [None, 540, 540],
}

_GENERIC = {
    "wifi_rssi": -68,
    "ts_uptime": 1860548,
    "ts_now": 1705817096,
    "version": "0.7.36",
    "build": "ba218ed",
    "menu_prot": False,
    "menu_mask": 61,
    "menu_protEn": False,
    "esp_type": "ESP8266",
}

RECORDED_LIVE: dict[str, Any] = {
    "generic": _GENERIC,
    "refresh": 30,
    "ch0_fld_units": ["V", "A", "W", "Hz", "", "°C", "kWh", "Wh", "W", "%", "var", "W"],
    "ch0_fld_names": [
        "U_AC",
        "I_AC",
        "P_AC",
        "F_AC",
        "PF_AC",
        "Temp",
        "YieldTotal",
        "YieldDay",
        "P_DC",
        "Efficiency",
        "Q_AC",
        "MaxPower",
    ],
    "fld_units": ["V", "A", "W", "Wh", "kWh", "%", "W"],
    "fld_names": [
        "U_DC",
        "I_DC",
        "P_DC",
        "YieldDay",
        "YieldTotal",
        "Irradiation",
        "MaxPower",
    ],
    "iv": [True, False, False, False],
}

RECORDED_INDEX: dict[str, Any] = {
    "generic": _GENERIC,
    "ts_now": 1705817112,
    "ts_sunrise": 1705820785,
    "ts_sunset": 1705853693,
    "ts_offset": 0,
    "disNightComm": True,
    "inverter": [
        {
            "enabled": True,
            "id": 0,
            "name": "PV Microinverte",
            "version": "10010",
            "is_avail": False,
            "is_producing": False,
            "ts_last_success": 1705764469,
        }
    ],
    "warnings": [],
    "infos": [],
}


# ---------------------------------------------------------------------------
# Gateway stub
# ---------------------------------------------------------------------------


class GatewayStub:
    """Serves AhoyDTU endpoints from in-memory payloads.

    Attributes:
        payloads: ``{path: json-serializable body}``; edit freely in tests.
        unreachable: Paths that raise ``httpx.ConnectError``.
        status_codes: ``{path: status}`` overrides returning an empty body.
        raw_bodies: ``{path: bytes}`` served verbatim (for malformed JSON).
        requests: Paths requested so far, in order.
    """

    def __init__(self) -> None:
        self.payloads: dict[str, Any] = {
            "/api/inverter/list": copy.deepcopy(RECORDED_INVERTER_LIST),
            "/api/inverter/id/0": copy.deepcopy(RECORDED_INVERTER_STATUS),
            "/api/live": copy.deepcopy(RECORDED_LIVE),
            "/api/index": copy.deepcopy(RECORDED_INDEX),
        }
        self.unreachable: set[str] = set()
        self.status_codes: dict[str, int] = {}
        self.raw_bodies: dict[str, bytes] = {}
        self.requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        if path in self.unreachable:
            raise httpx.ConnectError("gateway unreachable", request=request)
        if path in self.status_codes:
            return httpx.Response(self.status_codes[path])
        if path in self.raw_bodies:
            return httpx.Response(200, content=self.raw_bodies[path])
        if path not in self.payloads:
            return httpx.Response(404)
        return httpx.Response(200, content=json.dumps(self.payloads[path]).encode())

    def api(self) -> AhoyApi:
        return AhoyApi(ENDPOINT, transport=httpx.MockTransport(self.handler))

    def set_channel_values(self, ch: list[list[float]], inverter_id: int = 0) -> None:
        """Replace the ``ch`` rows served for *inverter_id*."""
        self.payloads[f"/api/inverter/id/{inverter_id}"]["ch"] = ch

    def use_small_catalog(self) -> None:
        """Switch to a two-field catalog: summary U_AC/P_AC, channels U_DC/P_DC."""
        live = self.payloads["/api/live"]
        live["ch0_fld_names"] = ["U_AC", "P_AC"]
        live["ch0_fld_units"] = ["V", "W"]
        live["fld_names"] = ["U_DC", "P_DC"]
        live["fld_units"] = ["V", "W"]

    def add_inverter(self, inverter_id: int, name: str, channels: int = 1) -> None:
        """Register another inverter in the roster, index and status endpoints."""
        entry = copy.deepcopy(RECORDED_INVERTER_LIST["inverter"][0])
        entry.update(id=inverter_id, name=name, channels=channels)
        self.payloads["/api/inverter/list"]["inverter"].append(entry)

        index_entry = copy.deepcopy(RECORDED_INDEX["inverter"][0])
        index_entry.update(id=inverter_id, name=name)
        self.payloads["/api/index"]["inverter"].append(index_entry)

        status = copy.deepcopy(RECORDED_INVERTER_STATUS)
        status.update(id=inverter_id, name=name)
        status["ch"] = status["ch"][: channels + 1]
        self.payloads[f"/api/inverter/id/{inverter_id}"] = status


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_crawler_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all crawler env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_CRAWLER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def gateway() -> GatewayStub:
    """A gateway stub serving the recorded responses."""
    return GatewayStub()


@pytest.fixture()
def small_gateway() -> GatewayStub:
    """A gateway stub with two-field catalogs and simple round values."""
    stub = GatewayStub()
    stub.use_small_catalog()
    stub.set_channel_values([[230.0, 500.0], [40.0, 250.0], [39.5]])
    return stub


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set every CrawlerSettings environment variable.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "INVERTER_ENDPOINT": "http://192.168.1.50/",
        "CRAWLING_INTERVAL": "30",
        "OUT_DIR": "/data/out",
        "DATABASE_URL": "sqlite+aiosqlite:///data/ahoy.db",
        "FLUSH_EVERY_N_PASSES": "3",
        "HTTP_TIMEOUT_S": "5.5",
        "LOGGING_TARGET": "/var/log/ahoy.log",
        "LOG_LEVEL": "DEBUG",
        "HEALTH_PATH": "/data/health.json",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
