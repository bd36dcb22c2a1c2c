"""
Unit tests for the async SQLite state store.

Tests verify:
- read() returns None for absent states and typed values otherwise.
- create() is idempotent and stores metadata.
- write() upserts, reports changes and notifies listeners.
- ids() filters by pattern.
- Values persist across close/reopen.

CHANGELOG:
- 2026-10-13: Add listener tests (STORY-005)
- 2026-10-12: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import re
from pathlib import Path

import pytest

from meter.src.models import StateChange, StateMeta
from meter.src.store import StateStore


class TestReadAndCreate:
    """read/exists/create semantics."""

    @pytest.mark.asyncio
    async def test_absent_state_reads_none(self) -> None:
        async with StateStore(":memory:") as store:
            assert await store.read("missing") is None
            assert await store.exists("missing") is False

    @pytest.mark.asyncio
    async def test_create_sets_default_and_meta(self) -> None:
        async with StateStore(":memory:") as store:
            await store.create("a.b", 0, StateMeta(unit="kWh"))

            assert await store.exists("a.b") is True
            assert await store.read("a.b") == 0
            meta = await store.meta("a.b")
            assert meta is not None
            assert meta.unit == "kWh"
            assert meta.type == "number"

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self) -> None:
        async with StateStore(":memory:") as store:
            await store.create("a.b", 1.5)
            await store.write("a.b", 7.25)
            await store.create("a.b", 0)

            assert await store.read("a.b") == 7.25

    @pytest.mark.asyncio
    async def test_values_keep_their_type(self) -> None:
        async with StateStore(":memory:") as store:
            await store.write("n", 3.36)
            await store.write("s", "04.11.2024, 13:45:10")
            await store.write("b", True)

            assert await store.read("n") == 3.36
            assert await store.read("s") == "04.11.2024, 13:45:10"
            assert await store.read("b") is True


class TestWrite:
    """write() upserts and notifies listeners."""

    @pytest.mark.asyncio
    async def test_write_reports_change(self) -> None:
        async with StateStore(":memory:") as store:
            assert await store.write("x", 1.0) is True
            assert await store.write("x", 1.0) is False
            assert await store.write("x", 2.0) is True

    @pytest.mark.asyncio
    async def test_listener_receives_change(self) -> None:
        seen: list[StateChange] = []
        async with StateStore(":memory:") as store:
            store.add_listener(seen.append)
            await store.write("x", 1.0)
            await store.write("x", 1.0, ack=False)

        assert [c.value for c in seen] == [1.0, 1.0]
        assert seen[0].old_value is None
        assert seen[0].changed is True
        assert seen[1].changed is False
        assert seen[1].ack is False

    @pytest.mark.asyncio
    async def test_create_does_not_notify(self) -> None:
        seen: list[StateChange] = []
        async with StateStore(":memory:") as store:
            store.add_listener(seen.append)
            await store.create("x", 0)
        assert seen == []


class TestIds:
    """ids() filters by regular expression."""

    @pytest.mark.asyncio
    async def test_ids_match_pattern(self) -> None:
        async with StateStore(":memory:") as store:
            for name in ("_PV1_power", "_PV2_power", "_Battery_Power"):
                await store.write("modbus.0.holdingRegisters." + name, 0)

            ids = await store.ids(re.compile(r"modbus\.0\.holdingRegisters\._PV.*_power"))

        assert ids == [
            "modbus.0.holdingRegisters._PV1_power",
            "modbus.0.holdingRegisters._PV2_power",
        ]


class TestPersistence:
    """States survive close/reopen."""

    @pytest.mark.asyncio
    async def test_values_survive_reopen(self, tmp_path: Path) -> None:
        db_path = tmp_path / "state.db"
        async with StateStore(db_path) as store:
            await store.write("0_userdata.0.PV.midnight._Total_PV_Energy", 1234.5)

        async with StateStore(str(db_path)) as store:
            assert await store.read("0_userdata.0.PV.midnight._Total_PV_Energy") == 1234.5
