"""
Per-channel baselines: the raw counter value captured at period start.

A baseline is the raw reading of an energy counter at the moment the current
accounting period (day) began. Daily values are ``raw - baseline``. Each
baseline is persisted under ``<result_root>midnight.<channel>`` so it
survives restarts, and is overwritten once per day by the period reset.

No validation happens here; callers pass fresh counter snapshots.

CHANGELOG:
- 2026-10-13: Seed missing baselines from the first raw reading (STORY-006)
- 2026-10-12: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from meter.src.models import Role, StateMeta

if TYPE_CHECKING:
    from meter.src.store import StateStore

logger = logging.getLogger(__name__)


class BaselineStore:
    """Holds and persists one baseline per tracked energy channel.

    Args:
        store: State store used for persistence and raw reads.
        channels: Mapping of role to source state name (e.g.
            ``"_Total_PV_Energy"``).
        source_root: Namespace prefix of raw source states.
        midnight_root: Namespace prefix of persisted baselines.
    """

    def __init__(
        self,
        store: StateStore,
        channels: Mapping[Role, str],
        *,
        source_root: str,
        midnight_root: str,
    ) -> None:
        self._store = store
        self._channels = dict(channels)
        self._source_root = source_root
        self._midnight_root = midnight_root
        self._values: dict[Role, float] = {}

    def state_id(self, role: Role) -> str:
        """Return the id under which the baseline of *role* is persisted."""
        return self._midnight_root + self._channels[role]

    def source_id(self, role: Role) -> str:
        """Return the raw source state id of *role*."""
        return self._source_root + self._channels[role]

    def is_set(self, role: Role) -> bool:
        """Return whether a baseline is known for *role*."""
        return role in self._values

    def get(self, role: Role) -> float:
        """Return the baseline of *role* (0.0 while unknown)."""
        return self._values.get(role, 0.0)

    async def set(self, role: Role, raw: float) -> None:
        """Record *raw* as the baseline of *role* and persist it."""
        state_id = self.state_id(role)
        self._values[role] = raw
        await self._store.create(state_id, raw, StateMeta(unit="kWh"))
        await self._store.write(state_id, raw)

    async def snapshot(self, role: Role) -> float | None:
        """Copy the current raw reading of *role* into its baseline.

        Returns:
            The new baseline, or ``None`` if the raw source is absent (the
            previous baseline is kept).
        """
        raw = await self._store.read(self.source_id(role))
        if raw is None:
            logger.warning(
                "Cannot re-baseline %s: source state '%s' has no value",
                role,
                self.source_id(role),
            )
            return None
        await self.set(role, float(raw))
        return float(raw)

    async def load(self, role: Role) -> None:
        """Load the persisted baseline of *role*, creating it on first run.

        A missing baseline is seeded from the current raw reading. When the
        raw reading is missing too, the baseline stays unknown until the first
        reading arrives (see :meth:`AccountingEngine.update`).
        """
        persisted = await self._store.read(self.state_id(role))
        if persisted is not None:
            self._values[role] = float(persisted)
            return

        if await self.snapshot(role) is None:
            logger.warning("Baseline for %s deferred until first reading", role)
        else:
            logger.info("Seeded baseline for %s: %s", role, self._values[role])
