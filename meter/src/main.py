"""
Meter daemon main loop for the Alpha-ESS energy-accounting pipeline.

Runs three concurrent asyncio loops:
1. **Poll loop**: reads Modbus registers via the Poller, normalizes them and
   writes each value to the state store under the source namespace. Every
   changed value becomes an event on the bus.
2. **Event worker**: the single consumer of the event bus; runs the
   accounting, metrics, power and clock handlers one at a time.
3. **Daily schedule**: submits the period rollover to the bus at the
   configured reset time (only when the daily reset is enabled).

The poll loop is resilient: an exception in one iteration is logged and does
not crash the loop. Handler failures are isolated by the worker. Graceful
shutdown on SIGTERM/SIGINT sets a shared asyncio.Event; all loops finish
their current iteration and the events still queued are drained before
exiting.

Structured JSON logging is used for all events. A HealthWriter instance
tracks last_poll_ts, last_rollover_ts and queue_depth.

CHANGELOG:
- 2026-10-14: Replace upload loop with event worker and daily schedule (STORY-012)
- 2026-10-12: Write normalized registers into the state store (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from meter.src.events import EventBus
from meter.src.health import HealthWriter
from meter.src.models import StateMeta
from meter.src.normalizer import normalize
from meter.src.registers import ALL_REGISTERS

if TYPE_CHECKING:
    from meter.src.poller import Poller
    from meter.src.scheduler import DailySchedule
    from meter.src.store import StateStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging for the meter daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry, ensure_ascii=False)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: object) -> None:
    """Log a config summary at startup.

    Args:
        settings: A MeterSettings instance (or any object with the same attrs).
    """
    logger.info(
        "Meter daemon starting with config: "
        "modbus_host=%s, modbus_port=%s, modbus_slave_id=%s, "
        "poll_interval_s=%s, inter_register_delay_ms=%s, "
        "state_path=%s, source_root=%s, result_root=%s, "
        "price_buy=%s, price_sell=%s, income_unit=%s, "
        "reset_at_midnight=%s, reset_time=%s, "
        "clock_enabled=%s, allow_system_time_setting=%s",
        settings.modbus_host,  # type: ignore[attr-defined]
        settings.modbus_port,  # type: ignore[attr-defined]
        settings.modbus_slave_id,  # type: ignore[attr-defined]
        settings.poll_interval_s,  # type: ignore[attr-defined]
        settings.inter_register_delay_ms,  # type: ignore[attr-defined]
        settings.state_path,  # type: ignore[attr-defined]
        settings.source_root,  # type: ignore[attr-defined]
        settings.result_root,  # type: ignore[attr-defined]
        settings.price_buy,  # type: ignore[attr-defined]
        settings.price_sell,  # type: ignore[attr-defined]
        settings.income_unit,  # type: ignore[attr-defined]
        settings.reset_at_midnight,  # type: ignore[attr-defined]
        settings.reset_time,  # type: ignore[attr-defined]
        settings.clock_enabled,  # type: ignore[attr-defined]
        settings.allow_system_time_setting,  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


async def write_readings(
    store: StateStore,
    readings: dict[str, float],
    *,
    source_root: str,
) -> int:
    """Write normalized register values under *source_root*.

    States are created with their register's unit on first sight.

    Returns:
        Number of states whose value changed.
    """
    changed = 0
    for name, value in readings.items():
        state_id = source_root + name
        if not await store.exists(state_id):
            reg_def = ALL_REGISTERS.get(name)
            unit = reg_def.unit if reg_def is not None else ""
            await store.create(state_id, 0, StateMeta(unit=unit))
        if await store.write(state_id, value):
            changed += 1
    return changed


async def _poll_once(
    *,
    poller: Poller,
    store: StateStore,
    source_root: str,
    health: HealthWriter | None,
    bus: EventBus | None = None,
) -> None:
    """Execute a single poll-normalize-write cycle.

    Catches all exceptions so that the caller's loop is never broken.
    After each poll attempt the health writer is updated with the current
    queue depth, a fresh poll timestamp and whether the cycle succeeded.
    """
    ok = False
    try:
        raw = await poller.poll()

        if raw is not None:
            readings = normalize(raw)
            changed = await write_readings(store, readings, source_root=source_root)
            logger.debug(
                "Poll success: %d registers, %d changed", len(readings), changed
            )
            ok = True
        else:
            logger.warning("Poller returned None, skipping normalize and write")
    except Exception:
        logger.error("Poll cycle error", exc_info=True)

    if health is not None:
        try:
            if bus is not None:
                health.set_queue_depth(bus.pending)
            health.record_poll(ok=ok)
        except Exception:
            logger.warning("Failed to write health file", exc_info=True)


# ---------------------------------------------------------------------------
# Loop runners
# ---------------------------------------------------------------------------


async def _poll_loop(
    *,
    poller: Poller,
    store: StateStore,
    source_root: str,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None,
    bus: EventBus | None = None,
) -> None:
    """Run the poll loop until shutdown_event is set."""
    logger.info("Poll loop started (interval=%ss)", poll_interval_s)
    while not shutdown_event.is_set():
        await _poll_once(
            poller=poller,
            store=store,
            source_root=source_root,
            health=health,
            bus=bus,
        )
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=poll_interval_s,
            )
    logger.info("Poll loop stopped")


async def run_loops(
    *,
    poller: Poller,
    store: StateStore,
    bus: EventBus,
    source_root: str,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    schedule: DailySchedule | None = None,
    health: HealthWriter | None = None,
) -> None:
    """Run the poll loop, event worker and daily schedule until shutdown.

    All loops run as independent asyncio tasks via asyncio.gather(). When
    the shutdown_event is set, every loop finishes its current iteration,
    then the events still queued are drained before returning.
    """
    logger.info("Starting poll loop, event worker and daily schedule")

    loops = [
        _poll_loop(
            poller=poller,
            store=store,
            source_root=source_root,
            poll_interval_s=poll_interval_s,
            shutdown_event=shutdown_event,
            health=health,
            bus=bus,
        ),
        bus.run(shutdown_event),
    ]
    if schedule is not None:
        loops.append(schedule.run(shutdown_event))
    await asyncio.gather(*loops)

    logger.info("Draining queued events before exit")
    drained = await bus.drain()
    logger.info("Shutdown complete (%d events drained)", drained)


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run loops.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from meter.src.config import MeterSettings
    from meter.src.pipeline import EnergyPipeline
    from meter.src.poller import Poller
    from meter.src.scheduler import DailySchedule
    from meter.src.store import StateStore

    settings = MeterSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    poller = Poller(
        host=settings.modbus_host,
        port=settings.modbus_port,
        slave_id=settings.modbus_slave_id,
        inter_register_delay_ms=settings.inter_register_delay_ms,
    )

    health = HealthWriter(settings.health_path)

    async with StateStore(settings.state_path) as store:
        bus = EventBus()
        store.add_listener(bus.notify)

        # Prime the source states so start-up sees current counter readings.
        await _poll_once(
            poller=poller,
            store=store,
            source_root=settings.source_root,
            health=health,
        )

        pipeline = EnergyPipeline(
            settings,
            store,
            bus,
            writer=poller.write_registers,
            health=health,
        )
        await pipeline.start()

        schedule = None
        if settings.reset_at_midnight:
            schedule = DailySchedule(settings.reset_time, pipeline.rollover, bus)
        else:
            logger.info("Daily reset disabled, values keep accumulating")

        await run_loops(
            poller=poller,
            store=store,
            bus=bus,
            source_root=settings.source_root,
            poll_interval_s=settings.poll_interval_s,
            shutdown_event=shutdown_event,
            schedule=schedule,
            health=health,
        )


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event."""
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the meter daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
