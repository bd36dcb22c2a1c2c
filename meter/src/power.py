"""
Live aggregation of instantaneous power channels.

PV string powers and grid phase powers are discovered once at start-up by
pattern match over the existing source state ids. Membership is fixed for
the lifetime of the process: every discovered id gets a slot in its group
and later updates are dispatched by id lookup, never by re-matching
patterns.

On a member update only that member's group sum is recomputed, followed by
the overall load::

    load = pv_sum + grid_sum + battery_power

Battery power is normalized once when it is ingested so that discharge adds
to the load and charging subtracts from it. Members that have not reported
since discovery keep their discovery-time value (0 when absent), so sums are
always available; there is no "not ready" state.

Published states (``<result_root>now.``): ``PV_Total_Power``,
``Grid_Total_Power``, ``Battery_Power``, ``Load_Total_Power``.

CHANGELOG:
- 2026-10-13: Initial creation (STORY-009)

TODO:
- None
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from meter.src.models import StateMeta

if TYPE_CHECKING:
    from meter.src.store import StateStore

logger = logging.getLogger(__name__)


class PowerGroupId(StrEnum):
    """Power channel groups; the value is the published sum's state name."""

    PV = "PV_Total_Power"
    GRID = "Grid_Total_Power"


BATTERY_STATE_NAME = "Battery_Power"
LOAD_STATE_NAME = "Load_Total_Power"


@dataclass(slots=True)
class PowerGroup:
    """A fixed set of power channels with their last-seen values (W)."""

    group_id: PowerGroupId
    members: list[str] = field(default_factory=list)
    values: list[float] = field(default_factory=list)

    @property
    def total(self) -> float:
        return sum(self.values)


class PowerAggregator:
    """Maintains group sums and the overall load from power channel updates.

    Args:
        store: State store used for discovery, seeding and publishing.
        now_root: Namespace prefix of the published power states.
        invert_battery_power: Negate battery readings at ingestion.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        now_root: str,
        invert_battery_power: bool = False,
    ) -> None:
        self._store = store
        self._now_root = now_root
        self._battery_sign = -1.0 if invert_battery_power else 1.0
        self._groups: dict[PowerGroupId, PowerGroup] = {
            group_id: PowerGroup(group_id) for group_id in PowerGroupId
        }
        self._slots: dict[str, tuple[PowerGroup, int]] = {}
        self.battery_power: float = 0.0
        self.load: float = 0.0

    def state_id(self, name: str) -> str:
        """Published state id for *name*."""
        return self._now_root + name

    @property
    def channel_ids(self) -> set[str]:
        """Every discovered member id."""
        return set(self._slots)

    def members(self, group_id: PowerGroupId) -> list[str]:
        return list(self._groups[group_id].members)

    def sum(self, group_id: PowerGroupId) -> float:
        """Current sum of *group_id* (W)."""
        return self._groups[group_id].total

    async def create_states(self) -> None:
        """Create every published power state (idempotent)."""
        meta = StateMeta(unit="W")
        for name in (*PowerGroupId, BATTERY_STATE_NAME, LOAD_STATE_NAME):
            await self._store.create(self.state_id(str(name)), 0, meta)

    async def discover(
        self,
        patterns: dict[PowerGroupId, re.Pattern[str]],
        *,
        extra: dict[PowerGroupId, list[str]] | None = None,
    ) -> set[str]:
        """Assign a slot to every channel matching a group pattern.

        Called once at start-up. Each member is seeded with its current
        value (0 when absent).

        Args:
            patterns: Compiled id pattern per group.
            extra: Additional exact ids per group, joined when they exist.

        Returns:
            The set of discovered channel ids.
        """
        extra = extra or {}
        for group_id, pattern in patterns.items():
            ids = await self._store.ids(pattern)
            for state_id in extra.get(group_id, []):
                if state_id not in ids and await self._store.exists(state_id):
                    ids.append(state_id)
            for state_id in ids:
                await self._add_member(self._groups[group_id], state_id)
            logger.info(
                "Discovered %d %s channels: %s",
                len(ids),
                group_id.name,
                ids,
            )
        return self.channel_ids

    async def _add_member(self, group: PowerGroup, state_id: str) -> None:
        if state_id in self._slots:
            logger.warning("Channel '%s' matches more than one group, keeping first", state_id)
            return
        value = await self._store.read(state_id)
        group.members.append(state_id)
        group.values.append(float(value) if isinstance(value, int | float) else 0.0)
        self._slots[state_id] = (group, len(group.values) - 1)

    async def seed_battery(self, raw: float | None) -> None:
        """Ingest the discovery-time battery reading."""
        await self.update_battery(raw if raw is not None else 0.0)

    async def publish_all(self) -> None:
        """Publish every group sum and the load."""
        for group in self._groups.values():
            await self._store.write(self.state_id(group.group_id.value), group.total)
        await self._publish_load()

    async def update(self, channel_id: str, value: float) -> float:
        """Record *value* for a discovered channel and republish its group.

        Raises:
            KeyError: *channel_id* was not discovered at start-up.

        Returns:
            The new sum of the channel's group.
        """
        group, index = self._slots[channel_id]
        group.values[index] = value
        total = group.total
        await self._store.write(self.state_id(group.group_id.value), total)
        await self._publish_load()
        return total

    async def update_battery(self, raw: float) -> float:
        """Ingest a battery power reading, normalizing its sign once."""
        self.battery_power = raw * self._battery_sign
        await self._store.write(self.state_id(BATTERY_STATE_NAME), self.battery_power)
        await self._publish_load()
        return self.battery_power

    async def _publish_load(self) -> None:
        self.load = (
            self.sum(PowerGroupId.PV) + self.sum(PowerGroupId.GRID) + self.battery_power
        )
        await self._store.write(self.state_id(LOAD_STATE_NAME), self.load)
