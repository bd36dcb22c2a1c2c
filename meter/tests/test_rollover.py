"""
Unit tests for the period reset controller.

Tests verify:
- Rollover re-baselines from the raw counters and zeroes daily values.
- Metrics are recomputed after the rollover.
- The controller always returns to ACCUMULATING, even when a step fails.
- Reset state, rollover count and failures are reported to the health file.

CHANGELOG:
- 2026-10-19: Cover health reporting (STORY-014)
- 2026-10-14: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from meter.src.accounting import AccountingEngine
from meter.src.baseline import BaselineStore
from meter.src.health import HealthWriter
from meter.src.metrics import DerivedMetricsCalculator, Metric, Period
from meter.src.models import Composite, Role
from meter.src.rollover import PeriodResetController, ResetState
from meter.src.store import StateStore

SOURCE_ROOT = "modbus.0.holdingRegisters."
RESULT_ROOT = "0_userdata.0.PV."

CHANNELS = {
    Role.GRID_IMPORT: "_Total_energy_consume_from_grid_(Grid_Meter)",
    Role.GRID_EXPORT: "_Total_energyfeed_to_grid_(Grid_Meter)",
    Role.PV_GENERATION: "_Total_PV_Energy",
    Role.BATTERY_CHARGE: "_Battery_charge_energy",
    Role.BATTERY_DISCHARGE: "_Battery_discharge_energy",
}

PV_SOURCE = SOURCE_ROOT + "_Total_PV_Energy"


def _build(
    store: StateStore,
    health: HealthWriter | None = None,
) -> tuple[
    BaselineStore, AccountingEngine, DerivedMetricsCalculator, PeriodResetController
]:
    baselines = BaselineStore(
        store,
        CHANNELS,
        source_root=SOURCE_ROOT,
        midnight_root=RESULT_ROOT + "midnight.",
    )
    engine = AccountingEngine(
        store, baselines, CHANNELS, today_root=RESULT_ROOT + "today."
    )
    metrics = DerivedMetricsCalculator(
        store,
        engine,
        result_root=RESULT_ROOT,
        price_buy=0.4,
        price_sell=0.0803,
    )
    return baselines, engine, metrics, PeriodResetController(
        baselines, engine, metrics, health=health
    )


async def _seed_all_sources(store: StateStore, value: float = 0.0) -> None:
    for name in CHANNELS.values():
        await store.write(SOURCE_ROOT + name, value)


class TestRollover:
    """A rollover starts a fresh period from the current raw counters."""

    @pytest.mark.asyncio
    async def test_rebaseline_and_continue(self) -> None:
        async with StateStore(":memory:") as store:
            baselines, engine, _, controller = _build(store)
            await _seed_all_sources(store)
            await baselines.set(Role.PV_GENERATION, 20.0)
            await store.write(PV_SOURCE, 120.0)
            await engine.update(Role.PV_GENERATION, 120.0)
            assert engine.daily(Role.PV_GENERATION) == 100.0

            await controller.rollover()

            assert baselines.get(Role.PV_GENERATION) == 120.0
            assert engine.daily(Role.PV_GENERATION) == 0.0
            assert await store.read(RESULT_ROOT + "midnight._Total_PV_Energy") == 120.0

            assert await engine.update(Role.PV_GENERATION, 121.0) == 1.0

    @pytest.mark.asyncio
    async def test_zeroes_composites_and_metrics(self) -> None:
        async with StateStore(":memory:") as store:
            baselines, engine, metrics, controller = _build(store)
            await _seed_all_sources(store)
            await baselines.set(Role.PV_GENERATION, 0.0)
            await store.write(PV_SOURCE, 10.0)
            await engine.update(Role.PV_GENERATION, 10.0)
            await engine.update_composites()
            await metrics.recompute()
            assert engine.composite(Composite.DIRECT_PV) == 10.0

            await controller.rollover()

            assert engine.composite(Composite.DIRECT_PV) == 0.0
            assert engine.composite(Composite.HOUSE) == 0.0
            today_income = metrics.state_id(Period.TODAY, Metric.INCOME)
            assert await store.read(today_income) == 0.0
            # Lifetime metrics survive the rollover.
            total_income = metrics.state_id(Period.TOTAL, Metric.INCOME)
            assert await store.read(total_income) == 4.0

    @pytest.mark.asyncio
    async def test_missing_source_keeps_previous_baseline(self) -> None:
        async with StateStore(":memory:") as store:
            baselines, _, _, controller = _build(store)
            await baselines.set(Role.GRID_IMPORT, 55.0)

            await controller.rollover()

            assert baselines.get(Role.GRID_IMPORT) == 55.0

    @pytest.mark.asyncio
    async def test_counts_rollovers(self) -> None:
        async with StateStore(":memory:") as store:
            _, _, _, controller = _build(store)
            await _seed_all_sources(store, 1.0)

            await controller.rollover()
            await controller.rollover()

            assert controller.rollovers == 2
            assert controller.state is ResetState.ACCUMULATING


class TestStateMachine:
    """ROLLING_OVER only while the rollover runs."""

    @pytest.mark.asyncio
    async def test_rolling_over_during_steps(self) -> None:
        async with StateStore(":memory:") as store:
            _, engine, _, controller = _build(store)
            observed: list[bool] = []
            original_reset = engine.reset

            async def spy_reset() -> None:
                observed.append(controller.rolling_over)
                await original_reset()

            engine.reset = spy_reset  # type: ignore[method-assign]
            await controller.rollover()

            assert observed == [True]
            assert controller.rolling_over is False

    @pytest.mark.asyncio
    async def test_returns_to_accumulating_on_failure(self) -> None:
        async with StateStore(":memory:") as store:
            _, engine, _, controller = _build(store)
            failing = AsyncMock(side_effect=RuntimeError("disk full"))
            engine.reset = failing  # type: ignore[method-assign]

            with pytest.raises(RuntimeError, match="disk full"):
                await controller.rollover()

            assert controller.state is ResetState.ACCUMULATING
            assert controller.rollovers == 0


class TestHealthReporting:
    """The controller mirrors its state and outcome into the health file."""

    @pytest.mark.asyncio
    async def test_state_and_count_reported(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        async with StateStore(":memory:") as store:
            _, engine, _, controller = _build(store, HealthWriter(health_path))
            await _seed_all_sources(store, 1.0)
            observed: list[str] = []
            original_reset = engine.reset

            async def spy_reset() -> None:
                observed.append(json.loads(health_path.read_text())["reset_state"])
                await original_reset()

            engine.reset = spy_reset  # type: ignore[method-assign]
            await controller.rollover()

        data = json.loads(health_path.read_text())
        assert observed == ["rolling_over"]
        assert data["reset_state"] == "accumulating"
        assert data["rollovers"] == 1
        assert data["last_rollover_error"] is None

    @pytest.mark.asyncio
    async def test_failure_reported(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        async with StateStore(":memory:") as store:
            _, engine, _, controller = _build(store, HealthWriter(health_path))
            engine.reset = AsyncMock(  # type: ignore[method-assign]
                side_effect=RuntimeError("disk full")
            )

            with pytest.raises(RuntimeError):
                await controller.rollover()

        data = json.loads(health_path.read_text())
        assert data["reset_state"] == "accumulating"
        assert data["rollovers"] == 0
        assert data["last_rollover_error"] == "RuntimeError: disk full"
