"""
The energy pipeline: one object owning all accounting state of the process.

Constructed once at start-up and driven exclusively by the event worker.
It wires the baseline store, accounting engine, derived metrics, period
reset controller, power aggregator and device clock mirror to the state
store and the event bus:

    counter change -> engine.update -> composites -> metrics -> store
    power change   -> aggregator.update -> group sum, load -> store
    daily trigger  -> controller.rollover -> (same cascade for all channels)

A missing source channel is reported at start-up but is not fatal; values
depending on it stay at their persisted or zero value until it appears.

CHANGELOG:
- 2026-10-14: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from meter.src.accounting import AccountingEngine
from meter.src.baseline import BaselineStore
from meter.src.metrics import METRIC_INPUTS, DerivedMetricsCalculator
from meter.src.models import Role
from meter.src.power import PowerAggregator, PowerGroupId
from meter.src.registers import SYSTEM_TIME_GROUP, SYSTEM_TIME_NAMES
from meter.src.rollover import PeriodResetController
from meter.src.timecodec import RegisterWriter, SystemClock

if TYPE_CHECKING:
    from meter.src.config import MeterSettings
    from meter.src.events import EventBus
    from meter.src.health import HealthWriter
    from meter.src.models import StateChange
    from meter.src.store import StateStore

logger = logging.getLogger(__name__)

CLOCK_STATE_NAME = "System_Time"


def channels_from_settings(settings: MeterSettings) -> dict[Role, str]:
    """Return the configured source state name of every energy role."""
    return {
        Role.GRID_IMPORT: settings.grid_import_channel,
        Role.GRID_EXPORT: settings.grid_export_channel,
        Role.PV_GENERATION: settings.pv_generation_channel,
        Role.BATTERY_CHARGE: settings.battery_charge_channel,
        Role.BATTERY_DISCHARGE: settings.battery_discharge_channel,
    }


class EnergyPipeline:
    """Owns and wires every accounting component of the daemon.

    Args:
        settings: Daemon configuration.
        store: Opened state store.
        bus: Event bus whose worker drives the handlers.
        writer: Holding register writer for the clock write-back.
        health: Optional health writer handed to the reset controller.
    """

    def __init__(
        self,
        settings: MeterSettings,
        store: StateStore,
        bus: EventBus,
        *,
        writer: RegisterWriter | None = None,
        health: HealthWriter | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._bus = bus

        source_root = settings.source_root
        result_root = settings.result_root
        self.channels = channels_from_settings(settings)
        self.baselines = BaselineStore(
            store,
            self.channels,
            source_root=source_root,
            midnight_root=result_root + "midnight.",
        )
        self.engine = AccountingEngine(
            store,
            self.baselines,
            self.channels,
            today_root=result_root + "today.",
        )
        self.metrics = DerivedMetricsCalculator(
            store,
            self.engine,
            result_root=result_root,
            price_buy=settings.price_buy,
            price_sell=settings.price_sell,
            income_unit=settings.income_unit,
        )
        self.controller = PeriodResetController(
            self.baselines, self.engine, self.metrics, health=health
        )
        self.power = PowerAggregator(
            store,
            now_root=result_root + "now.",
            invert_battery_power=settings.invert_battery_power,
        )
        self.battery_power_id = source_root + settings.battery_power_channel
        self.clock: SystemClock | None = None
        if settings.clock_enabled:
            self.clock = SystemClock(
                store,
                register_ids=tuple(source_root + name for name in SYSTEM_TIME_NAMES),  # type: ignore[arg-type]
                clock_state_id=result_root + "now." + CLOCK_STATE_NAME,
                writer=writer,
                start_address=SYSTEM_TIME_GROUP.start_address,
                allow_write=settings.allow_system_time_setting,
            )

    # ------------------------------------------------------------------
    # Start-up
    # ------------------------------------------------------------------

    async def check_sources(self) -> list[str]:
        """Report required source states that do not exist.

        Returns:
            The missing state ids.
        """
        missing = []
        for state_id in (*self.engine.source_ids, self.battery_power_id):
            if not await self._store.exists(state_id):
                logger.error(
                    "State '%s' does not exist but is required by the meter",
                    state_id,
                )
                missing.append(state_id)
        return missing

    async def start(self) -> None:
        """Create states, restore accumulators, discover channels, subscribe."""
        await self.check_sources()

        await self.engine.create_states()
        await self.metrics.create_states()
        await self.power.create_states()

        await self.engine.load()
        await self.engine.initialize_all()
        await self.metrics.recompute()

        await self._start_power()
        if self.clock is not None:
            await self.clock.start()

        self._subscribe()
        logger.info(
            "Energy pipeline started: daily=%s",
            {role.value: self.engine.daily(role) for role in Role},
        )

    async def _start_power(self) -> None:
        root = re.escape(self._settings.source_root)
        await self.power.discover(
            {
                PowerGroupId.PV: re.compile(root + self._settings.pv_power_pattern),
                PowerGroupId.GRID: re.compile(root + self._settings.grid_power_pattern),
            },
            extra={
                PowerGroupId.PV: [
                    self._settings.source_root + self._settings.pv_meter_channel
                ],
            },
        )
        raw = await self._store.read(self.battery_power_id)
        await self.power.seed_battery(float(raw) if raw is not None else None)
        await self.power.publish_all()

    def _subscribe(self) -> None:
        for source_id in self.engine.source_ids:
            self._bus.subscribe(source_id, self.on_counter_change)
        for channel_id in sorted(self.power.channel_ids):
            self._bus.subscribe(channel_id, self.on_power_change)
        self._bus.subscribe(self.battery_power_id, self.on_battery_power_change)
        if self.clock is not None:
            for register_id in self.clock.register_ids:
                self._bus.subscribe(register_id, self.clock.on_register_change)
            self._bus.subscribe(
                self.clock.clock_state_id,
                self.clock.on_command,
                change_only=False,
                ack=False,
            )

    # ------------------------------------------------------------------
    # Handlers (event worker only)
    # ------------------------------------------------------------------

    async def on_counter_change(self, change: StateChange) -> None:
        """Fold a raw counter change into the accounting cascade."""
        role = self.engine.role_for(change.id)
        if role is None:
            logger.warning("No energy role for '%s', ignoring", change.id)
            return

        before = self.engine.daily(role)
        daily = await self.engine.update(role, float(change.value))
        if daily == before:
            return
        await self.engine.update_composites(role)
        if role in METRIC_INPUTS:
            await self.metrics.recompute()

    async def on_power_change(self, change: StateChange) -> None:
        """Fold a PV string or grid phase power change into its group."""
        await self.power.update(change.id, float(change.value))

    async def on_battery_power_change(self, change: StateChange) -> None:
        await self.power.update_battery(float(change.value))

    async def rollover(self) -> None:
        """Daily trigger job: start a new accounting period."""
        await self.controller.rollover()
