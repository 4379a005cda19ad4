# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-process scheduler for delivery retries.

Holds one pending timer per delivery. Timers are kept in a heap with lazy
deletion: rescheduling or discarding a delivery only replaces the entry
in the index, and stale heap entries are skipped when popped.

Example:
    scheduler = RetryScheduler()
    scheduler.set_handler(orchestrator.on_retry_due)
    scheduler.schedule("delivery-1", due_at)

    # Background loop
    await scheduler.start()

    # Or drive it explicitly
    await scheduler.run_due(now)
"""

import asyncio
import heapq
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from guardian_notify.utils.datetime import ensure_utc, utc_now

logger = logging.getLogger(__name__)

RetryHandler = Callable[[str], Awaitable[None]]


@dataclass(order=True)
class ScheduledRetry:
    """One pending retry timer.

    Attributes:
        due_at: When the retry fires.
        sequence: Tie-breaker keeping insertion order for equal times.
        delivery_id: Delivery to retry.
    """

    due_at: datetime
    sequence: int
    delivery_id: str = field(compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {"delivery_id": self.delivery_id, "due_at": self.due_at.isoformat()}


class RetryScheduler:
    """Fires retry handlers when their timers come due.

    Attributes:
        poll_seconds: Longest sleep of the background loop.
    """

    def __init__(
        self,
        poll_seconds: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.poll_seconds = poll_seconds
        self._clock = clock
        self._heap: list[ScheduledRetry] = []
        self._index: dict[str, ScheduledRetry] = {}
        self._sequence = 0
        self._handler: RetryHandler | None = None
        self._wakeup = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._fired = 0

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def set_handler(self, handler: RetryHandler) -> None:
        self._handler = handler

    def schedule(self, delivery_id: str, due_at: datetime) -> ScheduledRetry:
        """Schedule or reschedule the retry of a delivery."""
        self._sequence += 1
        entry = ScheduledRetry(due_at=ensure_utc(due_at), sequence=self._sequence, delivery_id=delivery_id)
        self._index[delivery_id] = entry
        heapq.heappush(self._heap, entry)
        self._wakeup.set()
        logger.debug("Scheduled retry of %s at %s", delivery_id, entry.due_at.isoformat())
        return entry

    def discard(self, delivery_id: str) -> bool:
        """Drop the pending retry of a delivery, if any."""
        return self._index.pop(delivery_id, None) is not None

    def pending(self) -> list[ScheduledRetry]:
        """Pending timers, earliest first."""
        return sorted(self._index.values())

    def next_due(self) -> datetime | None:
        self._drop_stale()
        return self._heap[0].due_at if self._heap else None

    def _drop_stale(self) -> None:
        while self._heap and self._index.get(self._heap[0].delivery_id) is not self._heap[0]:
            heapq.heappop(self._heap)

    def pop_due(self, now: datetime) -> list[str]:
        """Remove and return the deliveries due at or before now."""
        now = ensure_utc(now)
        due: list[str] = []
        while True:
            self._drop_stale()
            if not self._heap or self._heap[0].due_at > now:
                return due
            entry = heapq.heappop(self._heap)
            del self._index[entry.delivery_id]
            due.append(entry.delivery_id)

    async def run_due(self, now: datetime | None = None) -> list[str]:
        """Fire the handler for every retry due at or before now.

        Args:
            now: Reference time, defaults to the scheduler clock.

        Returns:
            Delivery ids whose handler ran.
        """
        due = self.pop_due(now or self._clock())
        if self._handler is None:
            if due:
                logger.warning("No retry handler set, dropping %d due retries", len(due))
            return []

        for delivery_id in due:
            try:
                await self._handler(delivery_id)
                self._fired += 1
            except Exception as e:
                logger.error("Retry handler failed for %s: %s", delivery_id, e)
        return due

    async def _run_loop(self) -> None:
        while True:
            await self.run_due()
            next_due = self.next_due()
            timeout = self.poll_seconds
            if next_due is not None:
                remaining = (next_due - self._clock()).total_seconds()
                timeout = max(0.0, min(timeout, remaining))
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass

    async def start(self) -> None:
        """Start the background loop."""
        if self.is_running:
            logger.warning("Retry scheduler already running")
            return
        self._loop_task = asyncio.create_task(self._run_loop())
        logger.info("Retry scheduler started")

    async def stop(self) -> None:
        """Stop the background loop. Pending timers are kept."""
        if self._loop_task is None:
            return
        self._loop_task.cancel()
        try:
            await self._loop_task
        except asyncio.CancelledError:
            pass
        self._loop_task = None
        logger.info("Retry scheduler stopped")

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "running": self.is_running,
            "pending": len(self._index),
            "fired": self._fired,
            "next_due": self.next_due().isoformat() if self.next_due() else None,
        }
