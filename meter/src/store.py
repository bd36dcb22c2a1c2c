"""
Durable key/value state store using async SQLite.

Holds every named value of the daemon: raw source readings written by the
Modbus poller, midnight baselines, daily accumulators, derived metrics and
power sums. Baselines and accumulators survive process restarts because the
store is backed by a SQLite database file on disk in WAL mode.

Operations:
- read(id): value or None when absent.
- write(id, value, ack): overwrite (upsert) and notify listeners.
- exists(id): whether the state has been created or written.
- create(id, default, meta): idempotent creation with unit/type metadata.
- ids(pattern): state ids matching a regular expression (discovery).
- meta(id): stored metadata.

Every write is last-write-wins on a single named value; there are no
transactions spanning several states.

Supports async context manager protocol for clean resource management.

CHANGELOG:
- 2026-10-13: Add listener hook for the event bus (STORY-005)
- 2026-10-12: Initial creation, adapted from the upload spool (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite

from meter.src.models import StateChange, StateMeta, StateValue

if TYPE_CHECKING:
    import re

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS states (
    id TEXT PRIMARY KEY,
    value TEXT,
    unit TEXT NOT NULL DEFAULT '',
    type TEXT NOT NULL DEFAULT 'number',
    writable INTEGER NOT NULL DEFAULT 0,
    ack INTEGER NOT NULL DEFAULT 1,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_SELECT_VALUE_SQL = "SELECT value FROM states WHERE id = ?;"

_SELECT_META_SQL = "SELECT unit, type, writable FROM states WHERE id = ?;"

_SELECT_IDS_SQL = "SELECT id FROM states ORDER BY id ASC;"

_CREATE_SQL = """\
INSERT OR IGNORE INTO states (id, value, unit, type, writable)
VALUES (?, ?, ?, ?, ?);
"""

_UPSERT_SQL = """\
INSERT INTO states (id, value, ack) VALUES (?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    value = excluded.value,
    ack = excluded.ack,
    updated_at = datetime('now');
"""

StateListener = Callable[[StateChange], None]
"""Synchronous callback invoked after every write."""


class StateStore:
    """Async key/value store for named states backed by SQLite.

    Values are stored JSON-encoded in a TEXT column so numbers, strings and
    booleans round-trip with their type. Listeners registered through
    :meth:`add_listener` are called synchronously after each write; they
    must not block (the event bus only enqueues).

    Args:
        path: Filesystem path for the SQLite database file, or
              ``":memory:"`` for a throwaway store.

    Usage::

        async with StateStore("/data/state.db") as store:
            await store.create("0_userdata.0.PV.today.Income", 0, StateMeta(unit="€"))
            await store.write("0_userdata.0.PV.today.Income", 3.36)
            value = await store.read("0_userdata.0.PV.today.Income")
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._db: aiosqlite.Connection | None = None
        self._listeners: list[StateListener] = []

    async def open(self) -> None:
        """Open the SQLite connection and initialize the schema."""
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.execute(_CREATE_TABLE_SQL)
        await self._db.commit()

    async def close(self) -> None:
        """Close the underlying SQLite connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> StateStore:
        """Enter async context manager: open the database."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context manager: close the database."""
        await self.close()

    def add_listener(self, listener: StateListener) -> None:
        """Register a callback invoked with a :class:`StateChange` per write."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def read(self, state_id: str) -> StateValue | None:
        """Return the current value of *state_id*, or ``None`` when absent."""
        assert self._db is not None, "Store not opened. Call open() or use async with."
        cursor = await self._db.execute(_SELECT_VALUE_SQL, (state_id,))
        row = await cursor.fetchone()
        if row is None or row[0] is None:
            return None
        return json.loads(row[0])

    async def exists(self, state_id: str) -> bool:
        """Return whether *state_id* has been created or written."""
        assert self._db is not None, "Store not opened. Call open() or use async with."
        cursor = await self._db.execute(_SELECT_VALUE_SQL, (state_id,))
        return await cursor.fetchone() is not None

    async def create(
        self,
        state_id: str,
        default: StateValue,
        meta: StateMeta | None = None,
    ) -> None:
        """Create *state_id* with *default* and *meta* unless it already exists.

        Creating does not notify listeners; only writes do.
        """
        assert self._db is not None, "Store not opened. Call open() or use async with."
        meta = meta or StateMeta()
        await self._db.execute(
            _CREATE_SQL,
            (state_id, json.dumps(default), meta.unit, meta.type, int(meta.write)),
        )
        await self._db.commit()

    async def write(
        self,
        state_id: str,
        value: StateValue,
        *,
        ack: bool = True,
    ) -> bool:
        """Overwrite *state_id* with *value* and notify listeners.

        Writing a state that was never created implicitly creates it with
        default metadata.

        Args:
            state_id: Fully qualified state id.
            value: New value.
            ack: ``False`` marks the write as a user command.

        Returns:
            ``True`` if the stored value changed.
        """
        assert self._db is not None, "Store not opened. Call open() or use async with."
        old_value = await self.read(state_id)
        await self._db.execute(_UPSERT_SQL, (state_id, json.dumps(value), int(ack)))
        await self._db.commit()

        changed = old_value != value
        change = StateChange(
            id=state_id,
            value=value,
            old_value=old_value,
            ack=ack,
            changed=changed,
        )
        for listener in self._listeners:
            listener(change)
        return changed

    async def ids(self, pattern: re.Pattern[str]) -> list[str]:
        """Return all state ids matched by *pattern* (``re.match``), sorted."""
        assert self._db is not None, "Store not opened. Call open() or use async with."
        cursor = await self._db.execute(_SELECT_IDS_SQL)
        rows = await cursor.fetchall()
        return [row[0] for row in rows if pattern.match(row[0])]

    async def meta(self, state_id: str) -> StateMeta | None:
        """Return the metadata of *state_id*, or ``None`` when absent."""
        assert self._db is not None, "Store not opened. Call open() or use async with."
        cursor = await self._db.execute(_SELECT_META_SQL, (state_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return StateMeta(unit=row[0], type=row[1], write=bool(row[2]))
