"""
Derived energy metrics: income, self-sufficiency and self-consumption.

Computed for two periods from the accounting engine:

- ``today``: daily values of PV generation, grid export and grid import.
- ``total``: lifetime values (daily + baseline) of the same channels.

Formulas, with ``direct = pv - export``:

- income           = round2(direct * price_buy + export * price_sell)
- self_sufficiency = round2(direct * 100 / (import + pv - export))
- self_consumption = round2(direct * 100 / pv)

PV energy used on site is valued at the purchase price it displaced; exported
energy at the feed-in tariff. Rounding is half away from zero.

A zero denominator (no PV generation yet, or no consumption at all) yields
0.0 instead of an infinite or undefined ratio.

Metrics are recomputed and overwritten on every change of an input; they
carry no monotonic floor.

CHANGELOG:
- 2026-10-19: Treat sub-precision denominators as zero (STORY-014)
- 2026-10-14: Report 0.0 for ratios with a zero denominator (STORY-010)
- 2026-10-13: Initial creation (STORY-010)

TODO:
- None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum
from typing import TYPE_CHECKING

from meter.src.accounting import DAILY_PRECISION
from meter.src.models import Role, StateMeta

if TYPE_CHECKING:
    from meter.src.accounting import AccountingEngine
    from meter.src.store import StateStore

logger = logging.getLogger(__name__)

METRIC_INPUTS: frozenset[Role] = frozenset(
    {Role.PV_GENERATION, Role.GRID_EXPORT, Role.GRID_IMPORT}
)
"""Roles whose change requires a metric recompute."""

_CENTS = Decimal("0.01")


class Period(StrEnum):
    """Accounting scope of a metric; the value is the state namespace."""

    TODAY = "today"
    TOTAL = "total"


class Metric(StrEnum):
    """Published metric; the value is the leaf state name."""

    INCOME = "Income"
    SELF_SUFFICIENCY = "Self_sufficiency"
    SELF_CONSUMPTION = "Self_consumption"


# ---------------------------------------------------------------------------
# Pure computations
# ---------------------------------------------------------------------------


def round2(value: float) -> float:
    """Round *value* to 2 decimals, halves away from zero.

    Works on the shortest decimal representation of the float, so ``1.005``
    rounds to ``1.01``.
    """
    return float(Decimal(repr(value)).quantize(_CENTS, rounding=ROUND_HALF_UP))


def _ratio_percent(numerator: float, denominator: float, name: str) -> float:
    # Inputs carry DAILY_PRECISION decimals; anything finer is float noise.
    if round(denominator, DAILY_PRECISION) == 0:
        logger.debug("%s: zero denominator, reporting 0.0", name)
        return 0.0
    return round2(numerator * 100 / denominator)


def income(pv: float, export: float, price_buy: float, price_sell: float) -> float:
    """Avoided purchase cost of PV used on site plus feed-in revenue."""
    return round2((pv - export) * price_buy + export * price_sell)


def self_sufficiency(pv: float, export: float, grid_import: float) -> float:
    """Percentage of house consumption covered by PV not exported."""
    return _ratio_percent(pv - export, grid_import + pv - export, "self_sufficiency")


def self_consumption(pv: float, export: float) -> float:
    """Percentage of PV generation used on site rather than exported."""
    return _ratio_percent(pv - export, pv, "self_consumption")


@dataclass(frozen=True, slots=True)
class EnergyTotals:
    """Accumulated energy of one period (kWh)."""

    pv: float
    export: float
    grid_import: float


@dataclass(frozen=True, slots=True)
class MetricSet:
    """All metrics of one period."""

    income: float
    self_sufficiency: float
    self_consumption: float

    def as_dict(self) -> dict[Metric, float]:
        return {
            Metric.INCOME: self.income,
            Metric.SELF_SUFFICIENCY: self.self_sufficiency,
            Metric.SELF_CONSUMPTION: self.self_consumption,
        }


ZERO_METRICS = MetricSet(income=0.0, self_sufficiency=0.0, self_consumption=0.0)


def compute_metrics(
    totals: EnergyTotals,
    *,
    price_buy: float,
    price_sell: float,
) -> MetricSet:
    """Compute every metric for *totals*."""
    return MetricSet(
        income=income(totals.pv, totals.export, price_buy, price_sell),
        self_sufficiency=self_sufficiency(totals.pv, totals.export, totals.grid_import),
        self_consumption=self_consumption(totals.pv, totals.export),
    )


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------


class DerivedMetricsCalculator:
    """Recomputes the metrics from the engine and writes them to the store.

    Args:
        store: State store the metrics are written to.
        engine: Source of daily and lifetime values.
        result_root: Namespace prefix; metrics live under
            ``<result_root>today.`` and ``<result_root>total.``.
        price_buy: Grid purchase price per kWh.
        price_sell: Feed-in tariff per kWh.
        income_unit: Currency label of the income states.
    """

    def __init__(
        self,
        store: StateStore,
        engine: AccountingEngine,
        *,
        result_root: str,
        price_buy: float,
        price_sell: float,
        income_unit: str = "€",
    ) -> None:
        self._store = store
        self._engine = engine
        self._result_root = result_root
        self._price_buy = price_buy
        self._price_sell = price_sell
        self._income_unit = income_unit

    def state_id(self, period: Period, metric: Metric) -> str:
        """State id of *metric* in *period*."""
        return f"{self._result_root}{period.value}.{metric.value}"

    def totals(self, period: Period) -> EnergyTotals:
        """Energy totals of *period* as currently accounted."""
        value = self._engine.daily if period is Period.TODAY else self._engine.lifetime
        return EnergyTotals(
            pv=value(Role.PV_GENERATION),
            export=value(Role.GRID_EXPORT),
            grid_import=value(Role.GRID_IMPORT),
        )

    async def create_states(self) -> None:
        """Create every metric state (idempotent)."""
        for period in Period:
            for metric in Metric:
                unit = self._income_unit if metric is Metric.INCOME else "%"
                await self._store.create(
                    self.state_id(period, metric), 0, StateMeta(unit=unit)
                )

    async def recompute(self) -> dict[Period, MetricSet]:
        """Recompute and publish the metrics of both periods."""
        results: dict[Period, MetricSet] = {}
        for period in Period:
            metrics = compute_metrics(
                self.totals(period),
                price_buy=self._price_buy,
                price_sell=self._price_sell,
            )
            await self._publish(period, metrics)
            results[period] = metrics
        return results

    async def reset(self) -> None:
        """Publish the zero value of every metric."""
        for period in Period:
            await self._publish(period, ZERO_METRICS)

    async def _publish(self, period: Period, metrics: MetricSet) -> None:
        for metric, value in metrics.as_dict().items():
            await self._store.write(self.state_id(period, metric), value)
