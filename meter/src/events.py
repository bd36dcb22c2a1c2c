"""
Ordered change-event bus with a single consuming worker.

The state store notifies the bus after every write. The bus matches the
write against its subscriptions (exact id or compiled pattern, "change"
semantics by default) and enqueues one job per matching handler on a single
FIFO queue. Scheduled jobs (the daily rollover) are submitted to the same
queue.

Exactly one worker (:meth:`EventBus.run`) consumes the queue and awaits each
job to completion before starting the next. The accounting handlers perform
read-modify-write sequences on their accumulators without locks; they are
correct only because no two jobs ever run concurrently. A multi-worker
variant would need a lock per accumulator.

A job that raises is logged and dropped; the worker carries on with the
next job, so one failing state-store call only leaves a value stale until
the next event.

CHANGELOG:
- 2026-10-13: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from meter.src.models import StateChange

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[StateChange], Awaitable[None]]
"""Async handler receiving the change that triggered it."""

_Job = tuple[Callable[..., Awaitable[Any]], tuple[Any, ...]]

IDLE_POLL_S: float = 0.5
"""How often an idle worker re-checks the shutdown event."""


@dataclass(frozen=True, slots=True)
class Subscription:
    """A handler bound to an exact state id or a pattern.

    Attributes:
        target: Exact state id, or a compiled regex matched with ``re.match``.
        handler: Async handler to enqueue on a match.
        change_only: Only fire when the written value differs from the
            previous one.
        ack: Only fire for writes with this ack flag; ``None`` for any.
    """

    target: str | re.Pattern[str]
    handler: ChangeHandler
    change_only: bool = True
    ack: bool | None = None

    def matches(self, change: StateChange) -> bool:
        """Return whether *change* should trigger this subscription."""
        if isinstance(self.target, str):
            if change.id != self.target:
                return False
        elif self.target.match(change.id) is None:
            return False
        if self.change_only and not change.changed:
            return False
        return self.ack is None or change.ack == self.ack


class EventBus:
    """Single-queue, single-worker dispatcher for change events and jobs."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._queue: asyncio.Queue[_Job] = asyncio.Queue()

    @property
    def pending(self) -> int:
        """Number of jobs waiting in the queue."""
        return self._queue.qsize()

    def subscribe(
        self,
        target: str | re.Pattern[str],
        handler: ChangeHandler,
        *,
        change_only: bool = True,
        ack: bool | None = None,
    ) -> Subscription:
        """Register *handler* for writes to *target*.

        Args:
            target: Exact state id or compiled pattern.
            handler: Async handler called with the :class:`StateChange`.
            change_only: Skip writes that leave the value unchanged.
            ack: Restrict to confirmed (``True``) or command (``False``)
                writes; ``None`` accepts both.

        Returns:
            The created :class:`Subscription`.
        """
        subscription = Subscription(
            target=target,
            handler=handler,
            change_only=change_only,
            ack=ack,
        )
        self._subscriptions.append(subscription)
        return subscription

    def notify(self, change: StateChange) -> None:
        """Enqueue every handler whose subscription matches *change*.

        Registered as a state store listener; never blocks.
        """
        for subscription in self._subscriptions:
            if subscription.matches(change):
                self._queue.put_nowait((subscription.handler, (change,)))

    def submit(self, job: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Enqueue an arbitrary coroutine function behind pending events."""
        self._queue.put_nowait((job, args))

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Consume the queue until *shutdown_event* is set.

        Jobs still queued at shutdown are left for :meth:`drain`.
        """
        logger.info("Event worker started")
        while not shutdown_event.is_set():
            job: _Job | None = None
            with contextlib.suppress(TimeoutError):
                job = await asyncio.wait_for(self._queue.get(), timeout=IDLE_POLL_S)
            if job is not None:
                await self._dispatch(job)
        logger.info("Event worker stopped")

    async def drain(self) -> int:
        """Run every job currently queued, including jobs they enqueue.

        Returns:
            Number of jobs executed.
        """
        executed = 0
        while not self._queue.empty():
            await self._dispatch(self._queue.get_nowait())
            executed += 1
        return executed

    async def _dispatch(self, job: _Job) -> None:
        """Await a single job, isolating its failure from the worker."""
        func, args = job
        try:
            await func(*args)
        except Exception:
            logger.error(
                "Handler %s failed",
                getattr(func, "__qualname__", repr(func)),
                exc_info=True,
            )
        finally:
            self._queue.task_done()
