"""
Meter daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded IPs or hostnames. Prices, channel role mapping and the daily
reset time are config-time constants and are never mutated at runtime.

CHANGELOG:
- 2026-10-14: Add device clock mirror options (STORY-011)
- 2026-10-13: Add power channel patterns (STORY-009)
- 2026-10-12: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import re
from datetime import time

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class MeterSettings(BaseSettings):
    """Meter daemon configuration.

    All values are loaded from environment variables. ``MODBUS_HOST`` is the
    only required variable; everything else has a default matching the
    Alpha-ESS register names published by the Modbus poller.

    Attributes:
        modbus_host: Inverter / Modbus TCP dongle address on the local LAN.
        modbus_port: Modbus TCP port (default 502).
        modbus_slave_id: Modbus unit ID (Alpha-ESS default 0x55).
        poll_interval_s: Seconds between Modbus poll cycles.
        inter_register_delay_ms: Milliseconds between register group reads.
        state_path: SQLite file backing the state store.
        health_path: Path of the JSON health file.
        source_root: Namespace prefix of raw source states.
        result_root: Namespace prefix of derived states.
        price_buy: Grid purchase price per kWh.
        price_sell: Feed-in tariff per kWh.
        income_unit: Currency label of the income states.
        reset_at_midnight: Whether the daily period rollover is scheduled.
        reset_time: Local time of day at which the rollover fires.
        grid_import_channel: Source state name of the grid import counter.
        grid_export_channel: Source state name of the grid export counter.
        pv_generation_channel: Source state name of the PV generation counter.
        battery_charge_channel: Source state name of the battery charge counter.
        battery_discharge_channel: Source state name of the battery
            discharge counter.
        pv_power_pattern: Regex (relative to source_root) of PV string powers.
        pv_meter_channel: Additional PV power channel joined to the PV group
            when it exists.
        grid_power_pattern: Regex (relative to source_root) of grid phase
            powers.
        battery_power_channel: Source state name of the battery power.
        invert_battery_power: Flip the battery power sign at ingestion so
            that discharge counts positive towards the load.
        clock_enabled: Mirror the device clock into a readable state.
        allow_system_time_setting: Allow writing the device clock back.
    """

    modbus_host: str
    modbus_port: int = 502
    modbus_slave_id: int = 85
    poll_interval_s: int = 5
    inter_register_delay_ms: int = 20
    state_path: str = "/data/state.db"
    health_path: str = "/data/health.json"

    source_root: str = "modbus.0.holdingRegisters."
    result_root: str = "0_userdata.0.PV."

    price_buy: float = 0.4
    price_sell: float = 0.0803
    income_unit: str = "€"

    reset_at_midnight: bool = True
    reset_time: time = time(0, 0, 5)

    grid_import_channel: str = "_Total_energy_consume_from_grid_(Grid_Meter)"
    grid_export_channel: str = "_Total_energyfeed_to_grid_(Grid_Meter)"
    pv_generation_channel: str = "_Total_PV_Energy"
    battery_charge_channel: str = "_Battery_charge_energy"
    battery_discharge_channel: str = "_Battery_discharge_energy"

    pv_power_pattern: str = r"_PV.*_power"
    pv_meter_channel: str = "_Total_Active_power_(PVMeter)"
    grid_power_pattern: str = r"_Active_power_of_.*_phase_\(Grid_Meter\)"
    battery_power_channel: str = "_Battery_Power"
    invert_battery_power: bool = False

    clock_enabled: bool = True
    allow_system_time_setting: bool = False

    @field_validator("modbus_port")
    @classmethod
    def modbus_port_must_be_valid(cls, v: int) -> int:
        """Validate Modbus TCP port is in valid range."""
        if v < 1 or v > 65535:
            raise ValueError("MODBUS_PORT must be between 1 and 65535")
        return v

    @field_validator("modbus_slave_id")
    @classmethod
    def modbus_slave_id_must_be_valid(cls, v: int) -> int:
        """Validate Modbus slave ID is in valid range (1-247)."""
        if v < 1 or v > 247:
            raise ValueError("MODBUS_SLAVE_ID must be between 1 and 247")
        return v

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_positive(cls, v: int) -> int:
        """Validate poll interval is at least one second."""
        if v < 1:
            raise ValueError("POLL_INTERVAL_S must be >= 1")
        return v

    @field_validator("inter_register_delay_ms")
    @classmethod
    def inter_register_delay_must_be_non_negative(cls, v: int) -> int:
        """Validate inter-register delay is non-negative."""
        if v < 0:
            raise ValueError("INTER_REGISTER_DELAY_MS must be >= 0")
        return v

    @field_validator("price_buy", "price_sell")
    @classmethod
    def price_must_be_non_negative(cls, v: float) -> float:
        """Validate tariffs are non-negative."""
        if v < 0:
            raise ValueError("PRICE_BUY and PRICE_SELL must be >= 0")
        return v

    @field_validator("source_root", "result_root")
    @classmethod
    def root_must_end_with_dot(cls, v: str) -> str:
        """State namespaces are joined by plain concatenation."""
        if not v.endswith("."):
            raise ValueError(f"State root must end with '.' (got: '{v}')")
        return v

    @field_validator("pv_power_pattern", "grid_power_pattern")
    @classmethod
    def pattern_must_compile(cls, v: str) -> str:
        """Validate power channel patterns are valid regular expressions."""
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"Invalid channel pattern '{v}': {exc}") from exc
        return v

    @model_validator(mode="after")
    def _energy_channels_distinct(self) -> MeterSettings:
        """Each energy role must map to its own counter."""
        channels = [
            self.grid_import_channel,
            self.grid_export_channel,
            self.pv_generation_channel,
            self.battery_charge_channel,
            self.battery_discharge_channel,
        ]
        if len(set(channels)) != len(channels):
            raise ValueError("Energy role channels must be distinct")
        return self

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
