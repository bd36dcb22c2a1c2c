"""
Bit-packed device clock codec and the clock mirror.

The inverter exposes its clock as three 16-bit holding registers, each
packing two fields into its high and low byte::

    year_month    = ((year - 2000) << 8) | month
    day_hour      = (day << 8) | hour
    minute_second = (minute << 8) | second

:class:`SystemClock` mirrors those registers into one human-readable state
(``DD.MM.YYYY, HH:MM:SS``). Writing that state as a user command
(``ack=False``) re-encodes it and, only when write-back is enabled, writes
the three registers to the device; otherwise the command is logged and
discarded.

CHANGELOG:
- 2026-10-14: Initial creation (STORY-011)

TODO:
- None
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from meter.src.models import StateMeta

if TYPE_CHECKING:
    from meter.src.models import StateChange
    from meter.src.store import StateStore

logger = logging.getLogger(__name__)

YEAR_OFFSET = 2000

_TEXT_RE = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4}), (\d{2}):(\d{2}):(\d{2})")

RegisterWriter = Callable[[int, Sequence[int]], Awaitable[bool]]
"""``write(address, values) -> ok`` for holding registers."""


class InvalidSystemTimeError(ValueError):
    """Raised for malformed or out-of-range clock input."""


@dataclass(frozen=True, slots=True)
class SystemTime:
    """Calendar date and wall-clock time as held by the device."""

    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int

    def validate(self) -> SystemTime:
        """Return self if every field is in range.

        Raises:
            InvalidSystemTimeError: A field is out of range.
        """
        checks = (
            ("year", self.year, 1000, 9999),
            ("month", self.month, 1, 12),
            ("day", self.day, 1, 31),
            ("hour", self.hour, 0, 23),
            ("minute", self.minute, 0, 59),
            ("second", self.second, 0, 59),
        )
        for name, value, lo, hi in checks:
            if not lo <= value <= hi:
                raise InvalidSystemTimeError(f"{name}={value} outside {lo}..{hi}")
        return self


def encode(t: SystemTime) -> tuple[int, int, int]:
    """Pack *t* into ``(year_month, day_hour, minute_second)``.

    Raises:
        InvalidSystemTimeError: *t* is invalid or its year does not fit
            into one byte above 2000.
    """
    t.validate()
    if not YEAR_OFFSET <= t.year <= YEAR_OFFSET + 0xFF:
        raise InvalidSystemTimeError(
            f"year={t.year} outside {YEAR_OFFSET}..{YEAR_OFFSET + 0xFF}"
        )
    return (
        ((t.year - YEAR_OFFSET) << 8) | t.month,
        (t.day << 8) | t.hour,
        (t.minute << 8) | t.second,
    )


def decode(year_month: int, day_hour: int, minute_second: int) -> SystemTime:
    """Unpack the three clock registers (no range validation)."""
    return SystemTime(
        year=(year_month >> 8) + YEAR_OFFSET,
        month=year_month & 0xFF,
        day=day_hour >> 8,
        hour=day_hour & 0xFF,
        minute=minute_second >> 8,
        second=minute_second & 0xFF,
    )


def parse(text: str) -> SystemTime:
    """Parse ``DD.MM.YYYY, HH:MM:SS``; trailing text (zone name) is ignored.

    Raises:
        InvalidSystemTimeError: Malformed or out-of-range input.
    """
    match = _TEXT_RE.match(text)
    if match is None:
        raise InvalidSystemTimeError(f"'{text}' does not match DD.MM.YYYY, HH:MM:SS")
    day, month, year, hour, minute, second = (int(g) for g in match.groups())
    return SystemTime(year, month, day, hour, minute, second).validate()


def format_time(t: SystemTime) -> str:
    """Format *t* as ``DD.MM.YYYY, HH:MM:SS``."""
    return (
        f"{t.day:02d}.{t.month:02d}.{t.year:04d}, "
        f"{t.hour:02d}:{t.minute:02d}:{t.second:02d}"
    )


# ---------------------------------------------------------------------------
# Mirror
# ---------------------------------------------------------------------------


class SystemClock:
    """Mirrors the device clock registers and handles clock commands.

    Args:
        store: State store holding the register and mirror states.
        register_ids: Source state ids of the year/month, day/hour and
            minute/second registers, in that order.
        clock_state_id: Id of the readable clock state.
        writer: Writes holding registers on the device.
        start_address: Address of the year/month register.
        allow_write: Gate for writing the device clock.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        register_ids: tuple[str, str, str],
        clock_state_id: str,
        writer: RegisterWriter | None,
        start_address: int,
        allow_write: bool = False,
    ) -> None:
        self._store = store
        self.register_ids = register_ids
        self.clock_state_id = clock_state_id
        self._writer = writer
        self._start_address = start_address
        self._allow_write = allow_write
        self._registers: dict[str, int | None] = dict.fromkeys(register_ids)

    async def start(self) -> None:
        """Create the clock state and publish the current device time."""
        await self._store.create(
            self.clock_state_id, "", StateMeta(type="string", write=True)
        )
        for state_id in self.register_ids:
            value = await self._store.read(state_id)
            self._registers[state_id] = int(value) if value is not None else None
        await self.publish()

    async def on_register_change(self, change: StateChange) -> None:
        """Record a new register value and republish the clock."""
        self._registers[change.id] = int(change.value)
        await self.publish()

    async def publish(self) -> str | None:
        """Decode the known registers and write the readable clock state.

        Returns:
            The published text, or ``None`` while registers are missing or
            decode to an invalid time.
        """
        values = [self._registers[state_id] for state_id in self.register_ids]
        if any(v is None for v in values):
            return None
        year_month, day_hour, minute_second = (int(v) for v in values)
        try:
            t = decode(year_month, day_hour, minute_second).validate()
        except InvalidSystemTimeError as exc:
            logger.warning("Device clock registers decode to invalid time: %s", exc)
            return None
        text = format_time(t)
        await self._store.write(self.clock_state_id, text)
        return text

    async def on_command(self, change: StateChange) -> tuple[int, int, int] | None:
        """Handle a user write of the clock state.

        Returns:
            The encoded register values when they were written to the
            device, else ``None``.
        """
        try:
            packed = encode(parse(str(change.value)))
        except InvalidSystemTimeError as exc:
            logger.error("System time not set, invalid input '%s': %s", change.value, exc)
            return None

        year_month, day_hour, minute_second = packed
        logger.info(
            "Encoded system time: year/month=0x%04x day/hour=0x%04x minute/second=0x%04x",
            year_month,
            day_hour,
            minute_second,
        )
        if not self._allow_write or self._writer is None:
            logger.warning("System time not set, write-back is disabled")
            return None

        logger.info("Setting device system time to '%s'", change.value)
        ok = await self._writer(self._start_address, list(packed))
        if not ok:
            logger.error("Writing system time registers failed")
            return None
        return packed
