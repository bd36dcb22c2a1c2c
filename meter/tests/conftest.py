"""
Shared test fixtures for meter daemon tests.

Provides environment variable fixtures for MeterSettings configuration tests.
All meter env vars are cleaned before each test to ensure isolation.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import pytest

# All MeterSettings environment variable names, used for cleanup.
_ALL_METER_ENV_VARS = (
    "MODBUS_HOST",
    "MODBUS_PORT",
    "MODBUS_SLAVE_ID",
    "POLL_INTERVAL_S",
    "INTER_REGISTER_DELAY_MS",
    "STATE_PATH",
    "HEALTH_PATH",
    "SOURCE_ROOT",
    "RESULT_ROOT",
    "PRICE_BUY",
    "PRICE_SELL",
    "INCOME_UNIT",
    "RESET_AT_MIDNIGHT",
    "RESET_TIME",
    "GRID_IMPORT_CHANNEL",
    "GRID_EXPORT_CHANNEL",
    "PV_GENERATION_CHANNEL",
    "BATTERY_CHARGE_CHANNEL",
    "BATTERY_DISCHARGE_CHANNEL",
    "PV_POWER_PATTERN",
    "PV_METER_CHANNEL",
    "GRID_POWER_PATTERN",
    "BATTERY_POWER_CHANNEL",
    "INVERT_BATTERY_POWER",
    "CLOCK_ENABLED",
    "ALLOW_SYSTEM_TIME_SETTING",
)


@pytest.fixture(autouse=True)
def _clean_meter_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all meter env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_METER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set the main environment variables for MeterSettings.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "MODBUS_HOST": "192.168.1.60",
        "MODBUS_PORT": "502",
        "MODBUS_SLAVE_ID": "85",
        "POLL_INTERVAL_S": "10",
        "INTER_REGISTER_DELAY_MS": "50",
        "STATE_PATH": "/tmp/test-state.db",
        "PRICE_BUY": "0.32",
        "PRICE_SELL": "0.082",
        "INCOME_UNIT": "EUR",
        "RESET_AT_MIDNIGHT": "false",
        "RESET_TIME": "00:01:00",
        "INVERT_BATTERY_POWER": "true",
        "ALLOW_SYSTEM_TIME_SETTING": "true",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones)."""
    env = {"MODBUS_HOST": "10.0.0.50"}
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
