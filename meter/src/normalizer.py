"""
Pure normalizer that converts raw Modbus register words into state values.

Takes a dict of raw register word lists (as returned by the poller), applies
type conversions (U16/U32/S16/S32), scaling factors, and range validation,
then returns a flat ``{register name: engineering value}`` dict ready to be
written under the source namespace.

The poller returns ``dict[str, list[int]]`` where each key is a register name
and each value is a list of 16-bit words (length 1 for U16/S16, length 2 for
U32/S32).

Registers are independent states, so one invalid register is dropped (with a
warning) without discarding the rest of the poll.

This is a pure function: no side effects, no I/O, no clock.

CHANGELOG:
- 2026-10-12: Return per-register values instead of a sample model (STORY-004)
- 2026-10-12: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import logging

from meter.src.registers import ALL_REGISTERS, RegisterDef

logger = logging.getLogger(__name__)

SCALED_PRECISION: int = 6
"""Decimals kept after scaling (drops float noise such as 123.45000000000002)."""


# ---------------------------------------------------------------------------
# Type conversion helpers
# ---------------------------------------------------------------------------


def _convert_u16(raw: int) -> int:
    """Interpret a raw value as unsigned 16-bit (no conversion needed)."""
    return raw & 0xFFFF


def _convert_s16(raw: int) -> int:
    """Interpret a raw 16-bit value as signed (two's complement)."""
    val = raw & 0xFFFF
    if val >= 0x8000:
        val -= 0x10000
    return val


def _convert_u32(hi: int, lo: int) -> int:
    """Assemble two U16 registers (high word first) into unsigned 32-bit."""
    return ((hi & 0xFFFF) << 16) | (lo & 0xFFFF)


def _convert_s32(hi: int, lo: int) -> int:
    """Assemble two U16 registers (high word first) into signed 32-bit."""
    val = _convert_u32(hi, lo)
    if val >= 0x80000000:
        val -= 0x100000000
    return val


# ---------------------------------------------------------------------------
# Core: decode a single register
# ---------------------------------------------------------------------------


def decode_register(reg_def: RegisterDef, words: list[int]) -> float | None:
    """Type-convert, scale and range-check the words of one register.

    Returns:
        The scaled value, or ``None`` if the word count is wrong, the type
        is unsupported or the value falls outside ``valid_range``.
    """
    name = reg_def.name
    reg_type = reg_def.reg_type

    if len(words) < reg_def.word_count:
        logger.warning(
            "Register '%s': expected %d words for %s, got %d",
            name,
            reg_def.word_count,
            reg_type,
            len(words),
        )
        return None

    if reg_type == "U32":
        raw_int = _convert_u32(words[0], words[1])
    elif reg_type == "S32":
        raw_int = _convert_s32(words[0], words[1])
    elif reg_type == "U16":
        raw_int = _convert_u16(words[0])
    elif reg_type == "S16":
        raw_int = _convert_s16(words[0])
    else:
        logger.warning("Register '%s': unsupported type '%s'", name, reg_type)
        return None

    scaled = round(raw_int * reg_def.scale, SCALED_PRECISION)

    if reg_def.valid_range is not None:
        lo, hi = reg_def.valid_range
        if not (lo <= scaled <= hi):
            logger.warning(
                "Register '%s': scaled value %.4g "
                "(raw words=%s) outside valid range (%s, %s)",
                name,
                scaled,
                words,
                lo,
                hi,
            )
            return None

    return scaled


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize(raw: dict[str, list[int]]) -> dict[str, float]:
    """Convert raw Modbus register words into engineering values.

    Args:
        raw: Dict mapping register names to lists of raw 16-bit words,
            as returned by the poller.

    Returns:
        Dict mapping register names to scaled values. Registers that are
        unknown, malformed or out of range are omitted.
    """
    values: dict[str, float] = {}
    for name, words in raw.items():
        reg_def = ALL_REGISTERS.get(name)
        if reg_def is None:
            logger.warning("Register '%s' not found in ALL_REGISTERS", name)
            continue
        value = decode_register(reg_def, words)
        if value is not None:
            values[name] = value
    return values
