"""
Incremental energy accounting: raw cumulative counters to daily values.

Every tracked counter (grid import, grid export, PV generation, battery
charge, battery discharge) has a daily accumulator holding the last accepted
``raw - baseline``. An update is accepted only if it is larger than the
stored value, or if it is forced (at start-up and at the period reset).
Inverter counters occasionally glitch downwards for a few readings after a
device restart; such readings are ignored so the daily figure never shrinks.

Two composite accumulators follow the same floor-or-force rule, with a
candidate computed from several channels' daily values:

    house     = import + discharge + pv - charge - export
    direct_pv = pv - charge - export

They race on their inputs (each input arrives as a separate event), so
transient negative swings are common and are absorbed the same way.

The lifetime value of a channel is not stored: it is ``daily + baseline``,
which equals the raw counter while daily is not clamped and freezes while it
is.

CHANGELOG:
- 2026-10-14: Recompute only the composites that depend on the changed role
- 2026-10-13: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from meter.src.models import Composite, Role, StateMeta

if TYPE_CHECKING:
    from meter.src.baseline import BaselineStore
    from meter.src.store import StateStore

logger = logging.getLogger(__name__)

DAILY_PRECISION: int = 6
"""Decimals kept for daily values (drops float noise from subtraction)."""


# ---------------------------------------------------------------------------
# Composite formulas
# ---------------------------------------------------------------------------


def house_consumption(daily: Mapping[Role, float]) -> float:
    """Energy delivered to the house from grid, battery and PV."""
    return (
        daily[Role.GRID_IMPORT]
        + daily[Role.BATTERY_DISCHARGE]
        + daily[Role.PV_GENERATION]
        - daily[Role.BATTERY_CHARGE]
        - daily[Role.GRID_EXPORT]
    )


def direct_pv_consumption(daily: Mapping[Role, float]) -> float:
    """PV energy neither stored in the battery nor exported."""
    return (
        daily[Role.PV_GENERATION]
        - daily[Role.BATTERY_CHARGE]
        - daily[Role.GRID_EXPORT]
    )


COMPOSITE_FORMULAS: dict[Composite, Callable[[Mapping[Role, float]], float]] = {
    Composite.HOUSE: house_consumption,
    Composite.DIRECT_PV: direct_pv_consumption,
}

COMPOSITE_INPUTS: dict[Composite, frozenset[Role]] = {
    Composite.HOUSE: frozenset(Role),
    Composite.DIRECT_PV: frozenset(
        {Role.PV_GENERATION, Role.BATTERY_CHARGE, Role.GRID_EXPORT}
    ),
}
"""Roles whose daily value feeds each composite."""


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class AccountingEngine:
    """Owns the daily accumulators of all channels and composites.

    Not safe for concurrent use: every public coroutine performs an
    unguarded read-modify-write of an accumulator and must only be called
    from the single event worker.

    Args:
        store: State store the accumulators are persisted to.
        baselines: Per-channel baselines.
        channels: Mapping of role to source state name.
        today_root: Namespace prefix of daily states.
    """

    def __init__(
        self,
        store: StateStore,
        baselines: BaselineStore,
        channels: Mapping[Role, str],
        *,
        today_root: str,
    ) -> None:
        self._store = store
        self._baselines = baselines
        self._channels = dict(channels)
        self._today_root = today_root
        self._daily: dict[Role, float] = {role: 0.0 for role in Role}
        self._composites: dict[Composite, float] = {kind: 0.0 for kind in Composite}
        self._roles_by_source = {baselines.source_id(role): role for role in Role}

    # ------------------------------------------------------------------
    # Identifiers and read access
    # ------------------------------------------------------------------

    def daily_id(self, role: Role) -> str:
        """State id of the daily value of *role*."""
        return self._today_root + self._channels[role]

    def composite_id(self, kind: Composite) -> str:
        """State id of the composite accumulator *kind*."""
        return self._today_root + kind.value

    @property
    def source_ids(self) -> list[str]:
        """Raw source state ids of all tracked channels."""
        return list(self._roles_by_source)

    def role_for(self, source_id: str) -> Role | None:
        """Return the role whose raw source is *source_id*, if any."""
        return self._roles_by_source.get(source_id)

    def daily(self, role: Role) -> float:
        """Current daily value of *role*."""
        return self._daily[role]

    def lifetime(self, role: Role) -> float:
        """Lifetime value of *role*: daily plus baseline."""
        return self._daily[role] + self._baselines.get(role)

    def composite(self, kind: Composite) -> float:
        """Current value of the composite accumulator *kind*."""
        return self._composites[kind]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_states(self) -> None:
        """Create every daily and composite state (idempotent)."""
        meta = StateMeta(unit="kWh")
        for role in Role:
            await self._store.create(self.daily_id(role), 0, meta)
        for kind in Composite:
            await self._store.create(self.composite_id(kind), 0, meta)

    async def load(self) -> None:
        """Load baselines and seed accumulators from persisted state.

        Accumulators without a persisted value start at zero.
        """
        for role in Role:
            await self._baselines.load(role)
            persisted = await self._store.read(self.daily_id(role))
            self._daily[role] = float(persisted) if persisted is not None else 0.0
        for kind in Composite:
            persisted = await self._store.read(self.composite_id(kind))
            self._composites[kind] = float(persisted) if persisted is not None else 0.0

    async def reset(self) -> None:
        """Force every daily and composite accumulator to zero."""
        for role in Role:
            self._daily[role] = 0.0
            await self._store.write(self.daily_id(role), 0.0)
        for kind in Composite:
            self._composites[kind] = 0.0
            await self._store.write(self.composite_id(kind), 0.0)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def update(self, role: Role, new_raw: float, *, force: bool = False) -> float:
        """Fold a new raw reading of *role* into its daily value.

        The candidate ``new_raw - baseline`` is accepted when it exceeds the
        stored daily value or when *force* is set; otherwise the reading is
        treated as a counter regression and ignored.

        Args:
            role: Channel the reading belongs to.
            new_raw: Raw cumulative counter reading (kWh).
            force: Accept the candidate unconditionally.

        Returns:
            The daily value after the update.
        """
        if not self._baselines.is_set(role):
            logger.info("First reading for %s, seeding baseline with %s", role, new_raw)
            await self._baselines.set(role, new_raw)

        candidate = round(new_raw - self._baselines.get(role), DAILY_PRECISION)
        current = self._daily[role]
        if force or candidate > current:
            self._daily[role] = candidate
            await self._store.write(self.daily_id(role), candidate)
            return candidate

        if candidate < current:
            logger.debug(
                "Ignoring regression of %s: candidate %s < stored %s",
                role,
                candidate,
                current,
            )
        return current

    async def initialize(self, role: Role) -> float:
        """Resynchronize the daily value of *role* against its baseline.

        Forces the candidate computed from the current raw reading. When the
        raw source is absent the stored daily value is kept.
        """
        raw = await self._store.read(self._baselines.source_id(role))
        if raw is None:
            logger.warning(
                "Cannot initialize %s: source state '%s' has no value",
                role,
                self._baselines.source_id(role),
            )
            return self._daily[role]
        return await self.update(role, float(raw), force=True)

    async def initialize_all(self) -> None:
        """Initialize every channel, then force both composites."""
        for role in Role:
            await self.initialize(role)
        await self.update_composites(force=True)

    async def update_composites(
        self,
        changed: Role | None = None,
        *,
        force: bool = False,
    ) -> dict[Composite, float]:
        """Recompute the composites that depend on *changed*.

        Args:
            changed: Role whose daily value just changed; ``None`` for all.
            force: Accept the candidates unconditionally.

        Returns:
            Current value of every recomputed composite.
        """
        results: dict[Composite, float] = {}
        for kind, inputs in COMPOSITE_INPUTS.items():
            if changed is not None and changed not in inputs:
                continue
            candidate = round(COMPOSITE_FORMULAS[kind](self._daily), DAILY_PRECISION)
            if force or candidate > self._composites[kind]:
                self._composites[kind] = candidate
                await self._store.write(self.composite_id(kind), candidate)
            results[kind] = self._composites[kind]
        return results
