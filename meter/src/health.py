"""
Health status file for the meter daemon.

A single JSON document describing what the daemon is doing right now:

- last_poll_ts / last_poll_ok: most recent Modbus poll attempt and its outcome.
- queue_depth: events waiting for the event worker.
- reset_state: ``accumulating`` or ``rolling_over``; a file stuck in
  ``rolling_over`` means the daemon died or hung inside a period reset.
- rollovers / last_rollover_ts / last_rollover_error: completed period resets
  since start and the outcome of the latest attempt.

The document is a pydantic model, rewritten through a temp file and an
atomic rename so readers (container HEALTHCHECK, monitoring) never see a
half-written file.

CHANGELOG:
- 2026-10-19: Pydantic status model, reset state and rollover outcome (STORY-014)
- 2026-10-14: Track rollovers and event queue depth (STORY-012)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel


class HealthStatus(BaseModel):
    """Snapshot written to the health file."""

    last_poll_ts: datetime | None = None
    last_poll_ok: bool | None = None
    queue_depth: int = 0
    reset_state: str = "accumulating"
    rollovers: int = 0
    last_rollover_ts: datetime | None = None
    last_rollover_error: str | None = None


class HealthWriter:
    """Keeps a :class:`HealthStatus` and mirrors it to *path* on every change.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.status = HealthStatus()

    def record_poll(self, ok: bool = True) -> None:
        """Record a poll attempt and whether it produced readings."""
        self.status.last_poll_ts = datetime.now(tz=UTC)
        self.status.last_poll_ok = ok
        self._write()

    def set_queue_depth(self, depth: int) -> None:
        self.status.queue_depth = depth
        self._write()

    def record_reset_state(self, state: str) -> None:
        """Record a transition of the period reset state machine."""
        self.status.reset_state = state
        self._write()

    def record_rollover(self, rollovers: int, error: str | None = None) -> None:
        """Record the end of a rollover attempt.

        Args:
            rollovers: Completed rollovers since start.
            error: Failure description, ``None`` when the rollover succeeded.
        """
        self.status.last_rollover_ts = datetime.now(tz=UTC)
        self.status.rollovers = rollovers
        self.status.last_rollover_error = error
        self._write()

    def _write(self) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(self.status.model_dump_json())
        tmp.replace(self.path)
