"""
Pydantic models for AhoyDTU REST API responses.

Each model mirrors one JSON document served by the gateway:

- ``/api/inverter/list`` -> InverterList (roster with channel counts)
- ``/api/inverter/id/{id}`` -> InverterStatus (current values per channel)
- ``/api/live`` -> Live (field names and units for channel 0 and channels 1..N)
- ``/api/index`` -> Index (availability and producing flags)

Unknown keys are ignored so newer firmware revisions that add fields still
parse. Fields the crawler does not rely on carry defaults for the same reason.

CHANGELOG:
- 2026-10-14: Add UnitValue for combined channel readings
- 2026-10-12: Initial creation

TODO:
- None
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _AhoyModel(BaseModel):
    """Shared config: accept both JSON aliases and Python field names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Inverter(_AhoyModel):
    """One inverter entry of the ``/api/inverter/list`` roster.

    Attributes:
        id: Inverter id as used in ``/api/inverter/id/{id}``.
        name: User-assigned inverter name, used for output folder/table names.
        channels: Number of DC input channels (PV modules).
    """

    enabled: bool = True
    id: int
    name: str
    serial: str = ""
    channels: int
    version: str = ""
    ch_yield_cor: list[float] = Field(default_factory=list)
    ch_name: list[str] = Field(default_factory=list)
    ch_max_pwr: list[int | None] = Field(default_factory=list)


class InverterList(_AhoyModel):
    """Response of ``/api/inverter/list``."""

    inverter: list[Inverter]
    interval: str = ""
    retries: str = ""
    max_num_inverters: int = 0
    rst_mid: bool = Field(default=False, alias="rstMid")
    rst_n_avail: bool = Field(default=False, alias="rstNAvail")
    rst_com_stop: bool = Field(default=False, alias="rstComStop")
    strt_wtht_tm: bool = Field(default=False, alias="strtWthtTm")
    yld_eff: float = Field(default=1, alias="yldEff")


class InverterStatus(_AhoyModel):
    """Response of ``/api/inverter/id/{id}``.

    ``ch[0]`` holds the AC/summary values ordered like ``Live.ch0_fld_names``;
    ``ch[1..N]`` hold per-channel DC values ordered like ``Live.fld_names``.
    """

    id: int
    enabled: bool = True
    name: str = ""
    serial: str = ""
    version: str = ""
    power_limit_read: int = 0
    power_limit_ack: bool = False
    ts_last_success: int = 0
    generation: int = 0
    status: int = 0
    alarm_cnt: int = 0
    ch: list[list[float]]
    ch_name: list[str] = Field(default_factory=list)
    ch_max_pwr: list[int | None] = Field(default_factory=list)


class Generic(_AhoyModel):
    """Gateway-level info embedded in ``/api/live`` and ``/api/index``."""

    wifi_rssi: int = 0
    ts_uptime: int = 0
    ts_now: int = 0
    version: str = ""
    build: str = ""
    menu_prot: bool = False
    menu_mask: int = 0
    menu_prot_en: bool = Field(default=False, alias="menu_protEn")
    esp_type: str = ""


class Live(_AhoyModel):
    """Response of ``/api/live``: the live-field catalog."""

    generic: Generic = Field(default_factory=Generic)
    refresh: int = 0
    ch0_fld_units: list[str]
    ch0_fld_names: list[str]
    fld_units: list[str]
    fld_names: list[str]
    iv: list[bool] = Field(default_factory=list)


class InverterIndex(_AhoyModel):
    """One inverter entry of ``/api/index``."""

    enabled: bool
    id: int
    name: str = ""
    version: str = ""
    is_avail: bool = False
    is_producing: bool = False
    ts_last_success: int = 0


class Index(_AhoyModel):
    """Response of ``/api/index``."""

    generic: Generic = Field(default_factory=Generic)
    ts_now: int = 0
    ts_sunrise: int = 0
    ts_sunset: int = 0
    ts_offset: int = 0
    dis_night_comm: bool = Field(default=False, alias="disNightComm")
    inverter: list[InverterIndex]
    warnings: list[str] = Field(default_factory=list)
    infos: list[str] = Field(default_factory=list)


class UnitValue(_AhoyModel):
    """A single reading together with its engineering unit."""

    value: float
    unit: str
