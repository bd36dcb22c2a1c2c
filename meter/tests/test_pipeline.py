"""
Integration tests for the energy pipeline.

Drives the real pipeline over an in-memory state store and event bus:
source writes become bus events, the bus is drained, and the published
daily values, composites, metrics, power sums and clock are checked.

Tests verify:
- Start-up creates every derived state and seeds missing baselines.
- Counter changes cascade into daily values, composites and metrics.
- Regressed readings leave everything unchanged.
- Power channel and battery updates republish sums and the load.
- Clock commands reach the register writer only when allowed.
- Accumulators survive a restart.
- The rollover job starts a new period and records health.

CHANGELOG:
- 2026-10-14: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from meter.src.config import MeterSettings
from meter.src.events import EventBus
from meter.src.health import HealthWriter
from meter.src.metrics import Metric, Period
from meter.src.models import Composite, Role
from meter.src.pipeline import EnergyPipeline, channels_from_settings
from meter.src.store import StateStore

SRC = "modbus.0.holdingRegisters."
OUT = "0_userdata.0.PV."

PV = SRC + "_Total_PV_Energy"
IMPORT = SRC + "_Total_energy_consume_from_grid_(Grid_Meter)"
EXPORT = SRC + "_Total_energyfeed_to_grid_(Grid_Meter)"
CLOCK = OUT + "now.System_Time"

SOURCES: dict[str, float] = {
    "_Total_energy_consume_from_grid_(Grid_Meter)": 300.0,
    "_Total_energyfeed_to_grid_(Grid_Meter)": 400.0,
    "_Total_PV_Energy": 1000.0,
    "_Battery_charge_energy": 50.0,
    "_Battery_discharge_energy": 40.0,
    "_Battery_Power": 0,
    "_PV1_power": 0,
    "_PV2_power": 0,
    "_Active_power_of_A_phase_(Grid_Meter)": 0,
    "_System_time_:_(year)-(month)": 0x180B,
    "_System_time_:_(day)-(hour)": 0x040D,
    "_System_time_:_(minute)-(second)": 0x2D0A,
}


def _settings(**overrides: object) -> MeterSettings:
    return MeterSettings(modbus_host="192.168.1.60", **overrides)  # type: ignore[arg-type]


async def _seed(store: StateStore, values: dict[str, float] | None = None) -> None:
    for name, value in (values if values is not None else SOURCES).items():
        await store.write(SRC + name, value)


async def _start(
    store: StateStore,
    settings: MeterSettings | None = None,
    **kwargs: object,
) -> tuple[EventBus, EnergyPipeline]:
    bus = EventBus()
    store.add_listener(bus.notify)
    pipeline = EnergyPipeline(settings or _settings(), store, bus, **kwargs)  # type: ignore[arg-type]
    await pipeline.start()
    return bus, pipeline


class TestChannelMapping:
    """Roles map to the configured source names."""

    def test_channels_from_settings(self) -> None:
        channels = channels_from_settings(_settings(pv_generation_channel="_PV_Counter"))
        assert channels[Role.PV_GENERATION] == "_PV_Counter"
        assert channels[Role.GRID_IMPORT] == "_Total_energy_consume_from_grid_(Grid_Meter)"


class TestStartup:
    """start() creates states and restores accounting."""

    @pytest.mark.asyncio
    async def test_first_start_seeds_baselines(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            bus, pipeline = await _start(store)

            assert bus.pending == 0
            assert await store.read(OUT + "midnight._Total_PV_Energy") == 1000.0
            for role in Role:
                assert pipeline.engine.daily(role) == 0.0
            assert await store.read(OUT + "today.Consumption_House") == 0.0
            assert await store.read(OUT + "today.Income") == 0.0
            assert await store.read(OUT + "now.Load_Total_Power") == 0.0
            assert await store.read(CLOCK) == "04.11.2024, 13:45:10"

    @pytest.mark.asyncio
    async def test_missing_sources_reported(self) -> None:
        async with StateStore(":memory:") as store:
            bus = EventBus()
            pipeline = EnergyPipeline(_settings(), store, bus)

            missing = await pipeline.check_sources()

            assert PV in missing
            assert SRC + "_Battery_Power" in missing
            assert len(missing) == 6

    @pytest.mark.asyncio
    async def test_start_without_sources_then_first_reading(self) -> None:
        async with StateStore(":memory:") as store:
            bus, pipeline = await _start(store)

            await store.write(PV, 500.0)
            await bus.drain()
            assert pipeline.baselines.get(Role.PV_GENERATION) == 500.0
            assert pipeline.engine.daily(Role.PV_GENERATION) == 0.0

            await store.write(PV, 505.0)
            await bus.drain()
            assert pipeline.engine.daily(Role.PV_GENERATION) == 5.0

    @pytest.mark.asyncio
    async def test_restart_keeps_daily_values(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            bus, _ = await _start(store)
            await store.write(PV, 1010.0)
            await bus.drain()

            _, restarted = await _start(store)

            assert restarted.baselines.get(Role.PV_GENERATION) == 1000.0
            assert restarted.engine.daily(Role.PV_GENERATION) == 10.0
            assert restarted.engine.lifetime(Role.PV_GENERATION) == 1010.0


class TestCounterCascade:
    """Counter changes flow through engine, composites and metrics."""

    @pytest.mark.asyncio
    async def test_pv_change_updates_everything(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            bus, pipeline = await _start(store)

            await store.write(EXPORT, 402.0)
            await store.write(IMPORT, 303.0)
            await store.write(PV, 1010.0)
            assert bus.pending == 3
            await bus.drain()

            assert await store.read(OUT + "today._Total_PV_Energy") == 10.0
            assert pipeline.engine.composite(Composite.DIRECT_PV) == 8.0
            assert pipeline.engine.composite(Composite.HOUSE) == 11.0
            metrics = pipeline.metrics
            assert await store.read(metrics.state_id(Period.TODAY, Metric.INCOME)) == 3.36
            assert (
                await store.read(metrics.state_id(Period.TODAY, Metric.SELF_SUFFICIENCY))
                == 72.73
            )
            assert (
                await store.read(metrics.state_id(Period.TODAY, Metric.SELF_CONSUMPTION))
                == 80.0
            )

    @pytest.mark.asyncio
    async def test_regression_leaves_values(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            bus, pipeline = await _start(store)
            await store.write(PV, 1010.0)
            await bus.drain()

            await store.write(PV, 1005.0)
            await bus.drain()

            assert pipeline.engine.daily(Role.PV_GENERATION) == 10.0
            assert await store.read(OUT + "today._Total_PV_Energy") == 10.0

    @pytest.mark.asyncio
    async def test_battery_counter_skips_metrics(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            bus, pipeline = await _start(store)
            pipeline.metrics.recompute = AsyncMock()  # type: ignore[method-assign]

            await store.write(SRC + "_Battery_discharge_energy", 42.0)
            await bus.drain()

            assert pipeline.engine.composite(Composite.HOUSE) == 2.0
            pipeline.metrics.recompute.assert_not_awaited()


class TestPowerFlow:
    """Power channels and battery power update the load."""

    @pytest.mark.asyncio
    async def test_power_updates(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            bus, _ = await _start(store)

            await store.write(SRC + "_PV1_power", 300)
            await store.write(SRC + "_PV2_power", 450)
            await store.write(SRC + "_Active_power_of_A_phase_(Grid_Meter)", -30)
            await store.write(SRC + "_Battery_Power", -150)
            await bus.drain()

            assert await store.read(OUT + "now.PV_Total_Power") == 750.0
            assert await store.read(OUT + "now.Grid_Total_Power") == -30.0
            assert await store.read(OUT + "now.Load_Total_Power") == 570.0

    @pytest.mark.asyncio
    async def test_inverted_battery_sign(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            bus, _ = await _start(store, _settings(invert_battery_power=True))

            await store.write(SRC + "_Battery_Power", 200)
            await bus.drain()

            assert await store.read(OUT + "now.Battery_Power") == -200.0
            assert await store.read(OUT + "now.Load_Total_Power") == -200.0


class TestClock:
    """Clock registers and clock commands."""

    @pytest.mark.asyncio
    async def test_register_change_republishes(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            bus, _ = await _start(store)

            await store.write(SRC + "_System_time_:_(minute)-(second)", 0x2D0B)
            await bus.drain()

            assert await store.read(CLOCK) == "04.11.2024, 13:45:11"

    @pytest.mark.asyncio
    async def test_command_written_when_allowed(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            writer = AsyncMock(return_value=True)
            bus, _ = await _start(
                store, _settings(allow_system_time_setting=True), writer=writer
            )

            await store.write(CLOCK, "05.11.2024, 00:00:00", ack=False)
            await bus.drain()

            writer.assert_awaited_once_with(0x0740, [0x180B, 0x0500, 0x0000])

    @pytest.mark.asyncio
    async def test_command_discarded_by_default(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            writer = AsyncMock(return_value=True)
            bus, _ = await _start(store, writer=writer)

            await store.write(CLOCK, "05.11.2024, 00:00:00", ack=False)
            await bus.drain()

            writer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_clock_disabled(self) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            _, pipeline = await _start(store, _settings(clock_enabled=False))

            assert pipeline.clock is None
            assert await store.exists(CLOCK) is False


class TestRollover:
    """The daily job starts a new period."""

    @pytest.mark.asyncio
    async def test_rollover_job(self, tmp_path: Path) -> None:
        async with StateStore(":memory:") as store:
            await _seed(store)
            health = HealthWriter(tmp_path / "health.json")
            bus, pipeline = await _start(store, health=health)
            await store.write(PV, 1010.0)
            await bus.drain()

            bus.submit(pipeline.rollover)
            await bus.drain()

            assert pipeline.baselines.get(Role.PV_GENERATION) == 1010.0
            assert pipeline.engine.daily(Role.PV_GENERATION) == 0.0
            assert pipeline.controller.rollovers == 1
            data = json.loads((tmp_path / "health.json").read_text())
            assert data["last_rollover_ts"] is not None
            assert data["rollovers"] == 1
            assert data["reset_state"] == "accumulating"

            await store.write(PV, 1011.0)
            await bus.drain()
            assert pipeline.engine.daily(Role.PV_GENERATION) == 1.0
