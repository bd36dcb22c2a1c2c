"""
Modbus TCP access to the Alpha-ESS inverter.

One short-lived TCP session per operation: a poll opens a client, reads the
holding register groups from registers.py in address order and hands back
the raw words keyed by register name; a write opens its own client for the
clock write-back. Failures never escape to the caller:

- poll() returns ``None`` and grows a retry delay (1 s doubling, capped at
  one minute) that is slept before the next poll.
- Groups flagged ``optional`` that answer with a Modbus error are left out.
- write_registers() returns ``False``.

CHANGELOG:
- 2026-10-14: Add write_registers for the system time write-back (STORY-011)
- 2026-10-12: Holding registers, optional groups, shared session (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterator, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from pymodbus.client import AsyncModbusTcpClient

from meter.src.registers import ALL_GROUPS

if TYPE_CHECKING:
    from meter.src.registers import RegisterGroup

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

RETRY_BASE_S: float = 1.0
"""Delay before the first retry after a failed poll."""

RETRY_CAP_S: float = 60.0
"""Upper bound for the doubling retry delay."""

REQUEST_TIMEOUT_S: float = 10.0
"""Per-request timeout handed to pymodbus."""


def retry_delay(failures: int) -> float:
    """Seconds to wait after *failures* consecutive failed polls."""
    if failures <= 0:
        return 0.0
    return min(RETRY_BASE_S * 2 ** (failures - 1), RETRY_CAP_S)


# ---------------------------------------------------------------------------
# Poller
# ---------------------------------------------------------------------------


class Poller:
    """Reads and writes inverter holding registers.

    Args:
        host: Inverter or Modbus gateway address.
        port: Modbus TCP port.
        slave_id: Modbus unit id (Alpha-ESS ships with 0x55).
        inter_register_delay_ms: Pause between two group reads.
        groups: Register groups to read; all known groups when omitted.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int = 502,
        slave_id: int = 85,
        inter_register_delay_ms: int = 20,
        groups: Sequence[RegisterGroup] | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._slave_id = slave_id
        self._gap_s = inter_register_delay_ms / 1000.0
        self._groups: tuple[RegisterGroup, ...] = tuple(
            groups if groups is not None else ALL_GROUPS
        )
        self._failures = 0

    @property
    def endpoint(self) -> str:
        return f"{self._host}:{self._port}"

    @asynccontextmanager
    async def _session(self, purpose: str) -> AsyncIterator[AsyncModbusTcpClient | None]:
        """Yield a connected client, or ``None`` when the connect fails.

        The client is closed on exit whatever happened inside the block.
        """
        client = AsyncModbusTcpClient(
            self._host,
            port=self._port,
            timeout=REQUEST_TIMEOUT_S,
        )
        try:
            try:
                connected = await client.connect()
            except Exception:
                logger.warning(
                    "Connect to %s for %s raised", self.endpoint, purpose, exc_info=True
                )
                connected = False
            if not connected:
                logger.warning("Could not connect to %s for %s", self.endpoint, purpose)
            yield client if connected else None
        finally:
            client.close()

    # -- reads --------------------------------------------------------------

    async def poll(self) -> dict[str, list[int]] | None:
        """Read every configured group once.

        Returns:
            ``{register_name: [word, ...]}``, or ``None`` when the device is
            unreachable, a required group fails, or the transport raises.
        """
        delay = retry_delay(self._failures)
        if delay:
            logger.warning(
                "Retrying %s in %.1fs after %d failed poll(s)",
                self.endpoint,
                delay,
                self._failures,
            )
            await asyncio.sleep(delay)

        try:
            async with self._session("poll") as client:
                words = await self._read_groups(client) if client is not None else None
        except Exception:
            logger.warning("Poll of %s aborted", self.endpoint, exc_info=True)
            words = None

        self._failures = 0 if words is not None else self._failures + 1
        return words

    async def _read_groups(
        self, client: AsyncModbusTcpClient
    ) -> dict[str, list[int]] | None:
        words: dict[str, list[int]] = {}
        for idx, group in enumerate(self._groups):
            if idx and self._gap_s > 0:
                await asyncio.sleep(self._gap_s)

            response = await client.read_holding_registers(
                group.start_address,
                count=group.count,
                device_id=self._slave_id,
            )
            if response.isError():
                where = (group.group_name, group.start_address, group.count)
                if not group.optional:
                    logger.warning("Group '%s' @%d+%d returned a Modbus error", *where)
                    return None
                logger.info("Optional group '%s' @%d+%d unavailable, skipped", *where)
                continue

            words.update(split_group(group, response.registers))
        return words

    # -- writes -------------------------------------------------------------

    async def write_registers(self, address: int, values: Sequence[int]) -> bool:
        """Write *values* to consecutive holding registers from *address*.

        Returns:
            ``True`` once the device acknowledged the write.
        """
        payload = list(values)
        try:
            async with self._session("write") as client:
                if client is None:
                    return False
                response = await client.write_registers(
                    address, payload, device_id=self._slave_id
                )
        except Exception:
            logger.warning(
                "Write of %d register(s) @%d to %s aborted",
                len(payload),
                address,
                self.endpoint,
                exc_info=True,
            )
            return False

        if response.isError():
            logger.warning(
                "Device rejected write of %d register(s) @%d", len(payload), address
            )
            return False
        return True


def split_group(
    group: RegisterGroup, raw_words: Sequence[int]
) -> Iterator[tuple[str, list[int]]]:
    """Cut one group's contiguous block into per-register word lists."""
    for reg in group.registers:
        start = reg.address - group.start_address
        yield reg.name, list(raw_words[start : start + reg.word_count])
