"""
Period reset: the once-per-day transition to a new accounting period.

Runs as one long job on the event worker, so no counter update can
interleave with it. Downstream consumers briefly see every daily value and
metric at zero before the fresh values are published; there is no atomic
jump from yesterday's totals to today's.

Steps, in order:

1. Snapshot every raw counter into its baseline (raw source, never the
   daily accumulator).
2. Force all daily and composite accumulators to zero.
3. Publish zero for every derived metric.
4. Re-initialize every channel against the new baseline and force the
   composites (restores non-zero values if counters already advanced).
5. Recompute all derived metrics.

The state machine and its outcome are reported to the health file, so a
reset that hangs or fails is visible from outside the process.

CHANGELOG:
- 2026-10-19: Report reset state and rollover outcome to health (STORY-014)
- 2026-10-14: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from meter.src.models import Role

if TYPE_CHECKING:
    from meter.src.accounting import AccountingEngine
    from meter.src.baseline import BaselineStore
    from meter.src.health import HealthWriter
    from meter.src.metrics import DerivedMetricsCalculator

logger = logging.getLogger(__name__)


class ResetState(StrEnum):
    """Phase of the period reset state machine."""

    ACCUMULATING = "accumulating"
    ROLLING_OVER = "rolling_over"


class PeriodResetController:
    """Orchestrates the daily rollover of baselines, accumulators and metrics.

    Args:
        baselines: Per-channel baselines to re-snapshot.
        engine: Accounting engine owning the accumulators.
        metrics: Derived metrics publisher.
        health: Optional health writer receiving state changes and outcomes.
    """

    def __init__(
        self,
        baselines: BaselineStore,
        engine: AccountingEngine,
        metrics: DerivedMetricsCalculator,
        health: HealthWriter | None = None,
    ) -> None:
        self._baselines = baselines
        self._engine = engine
        self._metrics = metrics
        self._health = health
        self.state = ResetState.ACCUMULATING
        self.rollovers = 0

    @property
    def rolling_over(self) -> bool:
        return self.state is ResetState.ROLLING_OVER

    def _enter(self, state: ResetState) -> None:
        self.state = state
        if self._health is not None:
            try:
                self._health.record_reset_state(state.value)
            except OSError:
                logger.warning("Failed to write health file", exc_info=True)

    def _report(self, error: str | None) -> None:
        if self._health is not None:
            try:
                self._health.record_rollover(self.rollovers, error)
            except OSError:
                logger.warning("Failed to write health file", exc_info=True)

    async def rollover(self) -> None:
        """Run the five rollover steps; always returns to ACCUMULATING."""
        logger.info("Period rollover started")
        self._enter(ResetState.ROLLING_OVER)
        error: str | None = None
        try:
            for role in Role:
                await self._baselines.snapshot(role)
            await self._engine.reset()
            await self._metrics.reset()
            await self._engine.initialize_all()
            await self._metrics.recompute()
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            raise
        else:
            self.rollovers += 1
            logger.info(
                "Period rollover complete: baselines %s",
                {role.value: self._baselines.get(role) for role in Role},
            )
        finally:
            self._enter(ResetState.ACCUMULATING)
            self._report(error)
