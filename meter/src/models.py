"""
Shared data models for the meter daemon.

Defines the state metadata and change-notification models exchanged between
the state store and the event bus, plus the logical roles of the five
cumulative energy counters and of the composite accumulators derived from
them.

CHANGELOG:
- 2026-10-13: Add Composite kinds (STORY-007)
- 2026-10-12: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel

StateValue = float | int | str | bool
"""Value types a state can hold."""


class StateMeta(BaseModel):
    """Metadata attached to a state when it is created.

    Attributes:
        unit: Engineering unit label (``"kWh"``, ``"W"``, ``"%"``, ...).
        type: Value type, ``"number"`` or ``"string"``.
        write: Whether users may write the state (commands).
    """

    unit: str = ""
    type: Literal["number", "string"] = "number"
    write: bool = False


class StateChange(BaseModel):
    """A single write to the state store, as seen by listeners.

    Attributes:
        id: Fully qualified state id.
        value: Newly written value.
        old_value: Value before the write, ``None`` when the state was absent.
        ack: ``True`` for values confirmed by the daemon or the device,
            ``False`` for user commands.
        changed: Whether ``value`` differs from ``old_value``.
    """

    id: str
    value: StateValue
    old_value: StateValue | None = None
    ack: bool = True
    changed: bool = True


class Role(StrEnum):
    """Logical role of a monotonically increasing energy counter."""

    GRID_IMPORT = "grid_import"
    GRID_EXPORT = "grid_export"
    PV_GENERATION = "pv_generation"
    BATTERY_CHARGE = "battery_charge"
    BATTERY_DISCHARGE = "battery_discharge"


class Composite(StrEnum):
    """Daily accumulators computed from several counters' daily values."""

    HOUSE = "Consumption_House"
    DIRECT_PV = "Consumption_DirectPV"
