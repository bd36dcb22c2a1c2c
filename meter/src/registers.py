"""
Alpha-ESS Modbus TCP holding register map -- single source of truth.

Defines the register addresses, data types, scaling factors, units and valid
value ranges read from an Alpha-ESS hybrid inverter (function code 0x03,
holding registers, default unit ID 0x55). Register names are the state names
published under the source namespace, so the energy counters and power
channels keep the names downstream automations already use.

Registers are organised into contiguous groups for efficient batched reads.
Each group covers a contiguous Modbus address range so the poller can issue
one ``read_holding_registers`` call per group. Groups marked ``optional``
may be absent on some installations (no PV meter) without failing the poll.

References:
    - Alpha-ESS Modbus protocol, holding register list
    - ioBroker modbus-templates, PV-Wechselrichter/Alpha-ESS

CHANGELOG:
- 2026-10-14: Add system time group (STORY-011)
- 2026-10-12: Initial creation for Alpha-ESS (STORY-004)

TODO:
- None
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Data definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RegisterDef:
    """Definition of a single Modbus holding register.

    Attributes:
        address: Modbus holding register start address.
        name: State name under the source namespace.
        reg_type: Data type -- one of ``"U16"``, ``"U32"``, ``"S16"``,
            ``"S32"``.
        unit: Engineering unit string (e.g. ``"W"``, ``"kWh"``).
        scale: Multiplicative scaling factor applied to the raw integer
            value to obtain the engineering value.
        valid_range: Optional ``(min, max)`` tuple for the *scaled* value.
            ``None`` when no range check is applicable.
        description: Free-text description of the register.
        word_count: Number of 16-bit Modbus words this register occupies,
            derived from *reg_type* when not set explicitly.
    """

    address: int
    name: str
    reg_type: str
    unit: str
    scale: float = 1.0
    valid_range: tuple[float, float] | None = None
    description: str = ""
    word_count: int = field(default=0, repr=False)

    def __post_init__(self) -> None:  # noqa: D105
        if self.word_count == 0:
            wc = _DEFAULT_WORD_COUNTS.get(self.reg_type)
            if wc is None:
                msg = (
                    f"Register '{self.name}': word_count must be set "
                    f"explicitly for type '{self.reg_type}'"
                )
                raise ValueError(msg)
            # frozen=True requires object.__setattr__
            object.__setattr__(self, "word_count", wc)


_DEFAULT_WORD_COUNTS: dict[str, int] = {
    "U16": 1,
    "S16": 1,
    "U32": 2,
    "S32": 2,
}


@dataclass(frozen=True, slots=True)
class RegisterGroup:
    """A contiguous range of Modbus registers that can be read in one call.

    Attributes:
        group_name: Human-readable group identifier (e.g. ``"grid"``).
        start_address: First Modbus register address in the batch.
        count: Total number of 16-bit words to read.
        registers: Ordered list of :class:`RegisterDef` within this range.
        optional: A read error on this group is logged and skipped instead
            of failing the whole poll.
    """

    group_name: str
    start_address: int
    count: int
    registers: list[RegisterDef]
    optional: bool = False


# ---------------------------------------------------------------------------
# Grid meter group (addresses 0x0010-0x0022)
# ---------------------------------------------------------------------------

_GRID_REGISTERS: list[RegisterDef] = [
    RegisterDef(
        address=0x0010,
        name="_Total_energyfeed_to_grid_(Grid_Meter)",
        reg_type="U32",
        unit="kWh",
        scale=0.01,
        valid_range=(0, 10_000_000),
        description="Cumulative energy exported to the grid",
    ),
    RegisterDef(
        address=0x0012,
        name="_Total_energy_consume_from_grid_(Grid_Meter)",
        reg_type="U32",
        unit="kWh",
        scale=0.01,
        valid_range=(0, 10_000_000),
        description="Cumulative energy imported from the grid",
    ),
    RegisterDef(
        address=0x001B,
        name="_Active_power_of_A_phase_(Grid_Meter)",
        reg_type="S32",
        unit="W",
        valid_range=(-30000, 30000),
        description="Phase A grid power. Positive = importing.",
    ),
    RegisterDef(
        address=0x001D,
        name="_Active_power_of_B_phase_(Grid_Meter)",
        reg_type="S32",
        unit="W",
        valid_range=(-30000, 30000),
        description="Phase B grid power. Positive = importing.",
    ),
    RegisterDef(
        address=0x001F,
        name="_Active_power_of_C_phase_(Grid_Meter)",
        reg_type="S32",
        unit="W",
        valid_range=(-30000, 30000),
        description="Phase C grid power. Positive = importing.",
    ),
]

GRID_GROUP = RegisterGroup(
    group_name="grid",
    start_address=0x0010,
    count=17,  # 0x0010..0x0020 inclusive = 17 words
    registers=_GRID_REGISTERS,
)

# ---------------------------------------------------------------------------
# PV meter group (addresses 0x00A1-0x00A2), AC-coupled PV only
# ---------------------------------------------------------------------------

_PV_METER_REGISTERS: list[RegisterDef] = [
    RegisterDef(
        address=0x00A1,
        name="_Total_Active_power_(PVMeter)",
        reg_type="S32",
        unit="W",
        valid_range=(-30000, 30000),
        description="AC-coupled PV inverter power measured by the PV meter",
    ),
]

PV_METER_GROUP = RegisterGroup(
    group_name="pv_meter",
    start_address=0x00A1,
    count=2,  # S32 = 2 words
    registers=_PV_METER_REGISTERS,
    optional=True,
)

# ---------------------------------------------------------------------------
# Battery group (addresses 0x0120-0x0126)
# ---------------------------------------------------------------------------

_BATTERY_REGISTERS: list[RegisterDef] = [
    RegisterDef(
        address=0x0120,
        name="_Battery_charge_energy",
        reg_type="U32",
        unit="kWh",
        scale=0.1,
        valid_range=(0, 10_000_000),
        description="Cumulative energy charged into the battery",
    ),
    RegisterDef(
        address=0x0122,
        name="_Battery_discharge_energy",
        reg_type="U32",
        unit="kWh",
        scale=0.1,
        valid_range=(0, 10_000_000),
        description="Cumulative energy discharged from the battery",
    ),
    RegisterDef(
        address=0x0126,
        name="_Battery_Power",
        reg_type="S16",
        unit="W",
        valid_range=(-20000, 20000),
        description="Battery power. Positive = discharging, negative = charging.",
    ),
]

BATTERY_GROUP = RegisterGroup(
    group_name="battery",
    start_address=0x0120,
    count=7,  # 0x0120..0x0126 inclusive = 7 words
    registers=_BATTERY_REGISTERS,
)

# ---------------------------------------------------------------------------
# PV string group (addresses 0x041F-0x0434)
# ---------------------------------------------------------------------------

_PV_STRING_REGISTERS: list[RegisterDef] = [
    RegisterDef(
        address=0x041F + 4 * i,
        name=f"_PV{i + 1}_power",
        reg_type="U32",
        unit="W",
        valid_range=(0, 20000),
        description=f"DC power of PV string {i + 1}",
    )
    for i in range(6)
]

PV_STRING_GROUP = RegisterGroup(
    group_name="pv_strings",
    start_address=0x041F,
    count=22,  # 0x041F..0x0434 inclusive = 22 words
    registers=_PV_STRING_REGISTERS,
)

# ---------------------------------------------------------------------------
# PV energy group (addresses 0x043E-0x043F)
# ---------------------------------------------------------------------------

_PV_ENERGY_REGISTERS: list[RegisterDef] = [
    RegisterDef(
        address=0x043E,
        name="_Total_PV_Energy",
        reg_type="U32",
        unit="kWh",
        scale=0.1,
        valid_range=(0, 10_000_000),
        description="Cumulative PV energy generated",
    ),
]

PV_ENERGY_GROUP = RegisterGroup(
    group_name="pv_energy",
    start_address=0x043E,
    count=2,  # U32 = 2 words
    registers=_PV_ENERGY_REGISTERS,
)

# ---------------------------------------------------------------------------
# System time group (addresses 0x0740-0x0742), bit-packed, see timecodec
# ---------------------------------------------------------------------------

_SYSTEM_TIME_REGISTERS: list[RegisterDef] = [
    RegisterDef(
        address=0x0740,
        name="_System_time_:_(year)-(month)",
        reg_type="U16",
        unit="",
        description="(year - 2000) << 8 | month",
    ),
    RegisterDef(
        address=0x0741,
        name="_System_time_:_(day)-(hour)",
        reg_type="U16",
        unit="",
        description="day << 8 | hour",
    ),
    RegisterDef(
        address=0x0742,
        name="_System_time_:_(minute)-(second)",
        reg_type="U16",
        unit="",
        description="minute << 8 | second",
    ),
]

SYSTEM_TIME_GROUP = RegisterGroup(
    group_name="system_time",
    start_address=0x0740,
    count=3,
    registers=_SYSTEM_TIME_REGISTERS,
    optional=True,
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

ALL_GROUPS: list[RegisterGroup] = [
    GRID_GROUP,
    PV_METER_GROUP,
    BATTERY_GROUP,
    PV_STRING_GROUP,
    PV_ENERGY_GROUP,
    SYSTEM_TIME_GROUP,
]
"""All register groups in recommended read order."""

ALL_REGISTERS: dict[str, RegisterDef] = {
    reg.name: reg for group in ALL_GROUPS for reg in group.registers
}
"""Flat lookup of every register by name."""

SYSTEM_TIME_NAMES: tuple[str, str, str] = tuple(  # type: ignore[assignment]
    reg.name for reg in _SYSTEM_TIME_REGISTERS
)
"""Clock register names in year/month, day/hour, minute/second order."""
