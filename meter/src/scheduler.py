"""
Daily trigger that submits a job to the event bus at a fixed local time.

The rollover fires shortly after midnight (00:00:05 by default) rather than
exactly at midnight so the inverter has already rolled its own counters
over. The job is not run by the scheduler itself: it is submitted to the
event bus so it executes on the single worker, behind any change events
that were already queued.

CHANGELOG:
- 2026-10-19: Skip missed days after a clock jump or suspend (STORY-014)
- 2026-10-13: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from meter.src.events import EventBus

logger = logging.getLogger(__name__)


def next_occurrence(now: datetime, at: time) -> datetime:
    """Return the first datetime strictly after *now* whose time is *at*.

    Args:
        now: Current local time (naive or aware, returned in kind).
        at: Time of day.
    """
    candidate = datetime.combine(now.date(), at, tzinfo=now.tzinfo)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class DailySchedule:
    """Submit *job* to *bus* once per calendar day at *at*.

    After each firing the next fire time moves at least one day ahead, so
    waking up a little early never fires the job twice, and to the first
    occurrence after the current time, so days missed during a suspend or
    clock jump collapse into the single firing.

    Args:
        at: Local time of day.
        job: Coroutine function to submit.
        bus: Event bus executing the job.
        clock: Source of the current local time (injectable for tests).
    """

    def __init__(
        self,
        at: time,
        job: Callable[[], Awaitable[Any]],
        bus: EventBus,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._at = at
        self._job = job
        self._bus = bus
        self._clock = clock
        self.next_run: datetime = next_occurrence(clock(), at)

    def fire(self) -> None:
        """Submit the job and advance the schedule past the current time."""
        logger.info("Daily trigger fired (scheduled %s)", self.next_run.isoformat())
        self._bus.submit(self._job)
        self.next_run = max(
            self.next_run + timedelta(days=1),
            next_occurrence(self._clock(), self._at),
        )

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Wait for each fire time until *shutdown_event* is set."""
        logger.info("Daily schedule started (next run %s)", self.next_run.isoformat())
        while not shutdown_event.is_set():
            delay = (self.next_run - self._clock()).total_seconds()
            if delay > 0:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
                continue
            self.fire()
        logger.info("Daily schedule stopped")
