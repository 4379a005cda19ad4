# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Delivery orchestration.

Runs admitted messages through the delivery state machine:

- one worker task per delivery, sends made outside the delivery lock
- backoff retries through the RetryScheduler
- channel fallback when a channel's retry budget is spent
- parking in the durable OfflineQueue while the network is down, and
  replay on reconnection, sequential per student and oldest first
- terminal outcomes published on the EventBus

Every state change of a delivery happens under that delivery's
asyncio.Lock, so concurrent cancel, retry and worker paths apply exactly
one transition at a time.

Example:
    orchestrator = DeliveryOrchestrator(transport, offline_queue, event_bus=bus)
    await orchestrator.start()

    delivery_id = await orchestrator.submit(message, decision)
    snapshot = orchestrator.status(delivery_id)
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Coroutine
from uuid import uuid4

from guardian_notify.core.config.settings import DeliverySettings
from guardian_notify.domains.admission.models import AdmissionDecision
from guardian_notify.domains.delivery.exceptions import (
    BlockedDecisionError,
    DeliveryAlreadyTerminalError,
    DeliveryNotFoundError,
)
from guardian_notify.domains.delivery.models import (
    DeliveryEvent,
    DeliveryRecord,
    DeliveryState,
    DeliveryStatusSnapshot,
)
from guardian_notify.domains.delivery.policies import RETRY_POLICIES, RetryPolicy
from guardian_notify.domains.delivery.scheduler import RetryScheduler
from guardian_notify.domains.delivery.state_machine import DeliveryStateMachine, FailureOutcome
from guardian_notify.domains.messaging.models import MessagePriority, NotificationMessage
from guardian_notify.infrastructure.events.bus import EventBus
from guardian_notify.infrastructure.events.types import EventTypes
from guardian_notify.infrastructure.notifications.channels.base import (
    ChannelAvailability,
    ChannelResult,
    ChannelType,
    FailureReason,
    TransportOfflineError,
)
from guardian_notify.infrastructure.notifications.gateway import TransportGateway
from guardian_notify.infrastructure.offline.queue import (
    OfflineQueue,
    OfflineQueueFullError,
    OfflineQueueItem,
)
from guardian_notify.utils.datetime import seconds_to_human, utc_now
from guardian_notify.utils.logging import delivery_context

logger = logging.getLogger(__name__)

_TERMINAL_EVENTS = {
    DeliveryState.DELIVERED: EventTypes.Delivery.DELIVERED,
    DeliveryState.EXHAUSTED: EventTypes.Delivery.EXHAUSTED,
    DeliveryState.CANCELLED: EventTypes.Delivery.CANCELLED,
}

_PARKABLE_STATES = frozenset(
    {DeliveryState.IDLE, DeliveryState.QUEUED, DeliveryState.AWAITING_RETRY}
)


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one transport call.

    Attributes:
        result: Transport result when the call returned.
        error: Failure description when the attempt failed.
        failure_reason: Classification of the failure.
        offline: The transport reported the network as down.
    """

    result: ChannelResult | None = None
    error: str | None = None
    failure_reason: FailureReason | None = None
    offline: bool = False

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.succeeded


class DeliveryOrchestrator:
    """Owns the lifecycle of every delivery on this device.

    Attributes:
        settings: Delivery settings.
        scheduler: Retry timer scheduler.
        is_online: Current network state.
    """

    def __init__(
        self,
        transport: TransportGateway,
        offline_queue: OfflineQueue,
        *,
        scheduler: RetryScheduler | None = None,
        event_bus: EventBus | None = None,
        settings: DeliverySettings | None = None,
        retry_policies: dict[MessagePriority, RetryPolicy] | None = None,
        clock: Callable[[], datetime] = utc_now,
        device_id: str | None = None,
    ) -> None:
        self.settings = settings or DeliverySettings()
        self.scheduler = scheduler or RetryScheduler(
            poll_seconds=self.settings.scheduler_poll_seconds,
            clock=clock,
        )
        self.scheduler.set_handler(self.on_retry_due)
        self.is_online = True
        self._transport = transport
        self._offline_queue = offline_queue
        self._event_bus = event_bus
        self._retry_policies = retry_policies or RETRY_POLICIES
        self._clock = clock
        self._device_id = device_id
        self._records: dict[str, DeliveryRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> int:
        """Recover parked deliveries and start the retry scheduler.

        Returns:
            Number of deliveries recovered from the offline queue.
        """
        recovered = await self.recover()
        await self.scheduler.start()
        if recovered and self.is_online:
            await self.network_online()
        return recovered

    async def stop(self) -> None:
        """Stop the scheduler and cancel running workers."""
        await self.scheduler.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def drain(self) -> None:
        """Wait until no worker task is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # Submission and status
    # =========================================================================

    async def submit(self, message: NotificationMessage, decision: AdmissionDecision) -> str:
        """Start delivering an admitted message to one guardian.

        Args:
            message: Message to deliver.
            decision: Allowed admission decision for the guardian.

        Returns:
            The delivery id.

        Raises:
            BlockedDecisionError: If the decision did not admit the send.
        """
        if not decision.allowed or decision.channel is None:
            raise BlockedDecisionError(
                f"Cannot deliver to guardian {decision.guardian_id}: {decision.reason.value}"
            )

        availability = await self._transport.capabilities(decision.guardian_id)
        channel_order = self._channel_order(message, decision.channel, availability)
        now = self._clock()
        record = DeliveryRecord.create(
            delivery_id=str(uuid4()),
            message=message,
            guardian_id=decision.guardian_id,
            channel_order=channel_order,
            now=now,
        )
        self._records[record.delivery_id] = record

        async with self._lock_for(record.delivery_id):
            if not self.is_online:
                await self._park_offline(record, now)
                return record.delivery_id
            self._machine(record).queue(now)

        logger.info(
            "Queued delivery %s of message %s to guardian %s via %s",
            record.delivery_id,
            message.id,
            decision.guardian_id,
            " > ".join(c.value for c in channel_order),
        )
        self._spawn(self._worker(record.delivery_id))
        return record.delivery_id

    def _channel_order(
        self,
        message: NotificationMessage,
        preferred: ChannelType,
        availability: ChannelAvailability,
    ) -> list[ChannelType]:
        if message.effective_priority == MessagePriority.EMERGENCY:
            priority = self.settings.emergency_channel_priority
        else:
            priority = self.settings.channel_priority
        order = [preferred]
        for name in priority:
            channel = ChannelType(name)
            if channel != preferred and availability.is_available(channel):
                order.append(channel)
        return order

    def status(self, delivery_id: str) -> DeliveryStatusSnapshot:
        """Get a snapshot of a delivery.

        Raises:
            DeliveryNotFoundError: If the delivery is unknown.
        """
        return DeliveryStatusSnapshot.from_record(self._get(delivery_id))

    def list_statuses(self, message_id: str | None = None) -> list[DeliveryStatusSnapshot]:
        return [
            DeliveryStatusSnapshot.from_record(record)
            for record in self._records.values()
            if message_id is None or record.message.id == message_id
        ]

    def history(self, delivery_id: str) -> list[dict[str, Any]]:
        return [
            {
                "from": t.from_state.value,
                "to": t.to_state.value,
                "event": t.event.value,
                "at": t.at.isoformat(),
                "detail": t.detail,
            }
            for t in self._get(delivery_id).history
        ]

    # =========================================================================
    # Worker
    # =========================================================================

    async def process(self, delivery_id: str) -> DeliveryState:
        """Run send attempts while the delivery stays queued.

        Returns after a success, a scheduled retry, parking offline or a
        terminal outcome. Channel fallback continues on the next channel
        immediately.

        Returns:
            The state reached.
        """
        record = self._get(delivery_id)
        machine = self._machine(record)
        lock = self._lock_for(delivery_id)

        while True:
            async with lock:
                if record.state != DeliveryState.QUEUED:
                    return record.state
                now = self._clock()
                if record.cancel_requested:
                    await self._cancel_locked(record, now)
                    return record.state
                if not self.is_online:
                    await self._park_offline(record, now)
                    return record.state
                channel = machine.start_processing(now)

            outcome = await self._attempt(record, channel)

            async with lock:
                now = self._clock()
                if outcome.offline:
                    self.is_online = False
                    await self._park_offline(record, now)
                    return record.state

                failure: FailureOutcome | None = None
                if outcome.succeeded:
                    machine.record_success(now, outcome.result.message_id if outcome.result else None)
                    logger.info("Delivery %s sent via %s", delivery_id, channel.value)
                else:
                    failure = machine.record_failure(
                        now, outcome.error or "send failed", outcome.failure_reason
                    )
                    logger.warning(
                        "Delivery %s failed on %s (%s): %s",
                        delivery_id,
                        channel.value,
                        failure.value,
                        outcome.error,
                    )

                if record.cancel_requested and not record.is_terminal:
                    await self._cancel_locked(record, now)
                    return record.state
                if failure == FailureOutcome.RETRY and record.next_retry_at is not None:
                    self.scheduler.schedule(delivery_id, record.next_retry_at)
                    logger.info(
                        "Delivery %s retry %d in %s",
                        delivery_id,
                        record.retry_count,
                        seconds_to_human((record.next_retry_at - now).total_seconds()),
                    )
                    return record.state
                if record.is_terminal:
                    await self._publish_terminal(record)
                    return record.state
                if failure != FailureOutcome.FALLBACK:
                    return record.state

    async def _attempt(self, record: DeliveryRecord, channel: ChannelType) -> AttemptOutcome:
        timeout = self.settings.timeout_for(channel.value)
        message = record.message
        try:
            result = await asyncio.wait_for(
                self._transport.send(channel, record.guardian_id, message.body, message.subject),
                timeout=timeout,
            )
        except TransportOfflineError as e:
            logger.warning("Transport offline during delivery %s: %s", record.delivery_id, e)
            return AttemptOutcome(offline=True)
        except asyncio.TimeoutError:
            return AttemptOutcome(
                error=f"{channel.value} send timed out after {timeout}s",
                failure_reason=FailureReason.TIMEOUT,
            )
        except Exception as e:
            return AttemptOutcome(
                error=f"{channel.value} transport error: {e}",
                failure_reason=FailureReason.NETWORK_ERROR,
            )

        if result.succeeded:
            return AttemptOutcome(result=result)
        return AttemptOutcome(
            result=result,
            error=result.error_message or f"{channel.value} send failed",
            failure_reason=result.failure_reason,
        )

    async def _worker(self, delivery_id: str) -> None:
        record = self._records.get(delivery_id)
        with delivery_context(
            delivery_id=delivery_id,
            guardian_id=record.guardian_id if record else None,
            message_id=record.message.id if record else None,
        ):
            try:
                await self.process(delivery_id)
            except Exception:
                logger.exception("Delivery worker for %s crashed", delivery_id)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def on_retry_due(self, delivery_id: str) -> None:
        """Scheduler handler: re-queue a delivery whose backoff elapsed."""
        record = self._records.get(delivery_id)
        if record is None:
            return

        async with self._lock_for(delivery_id):
            if record.state != DeliveryState.AWAITING_RETRY:
                return
            now = self._clock()
            if record.cancel_requested:
                await self._cancel_locked(record, now)
                return
            if not self.is_online:
                await self._park_offline(record, now)
                return
            self._machine(record).retry_due(now)

        self._spawn(self._worker(delivery_id))

    # =========================================================================
    # Operator actions
    # =========================================================================

    async def cancel(self, delivery_id: str) -> DeliveryState:
        """Cancel a delivery.

        A delivery in flight is cancelled by its worker once the
        running attempt returns.

        Raises:
            DeliveryNotFoundError: If the delivery is unknown.
            DeliveryAlreadyTerminalError: If it already finished.
        """
        record = self._get(delivery_id)
        if record.is_terminal:
            raise DeliveryAlreadyTerminalError(
                f"Delivery {delivery_id} already {record.state.value}"
            )
        record.cancel_requested = True

        async with self._lock_for(delivery_id):
            if not record.is_terminal and record.state != DeliveryState.PROCESSING:
                await self._cancel_locked(record, self._clock())
        return record.state

    async def resend(self, delivery_id: str) -> DeliveryState:
        """Manually re-queue an exhausted delivery with fresh budgets.

        Raises:
            DeliveryNotFoundError: If the delivery is unknown.
            InvalidTransitionError: If the delivery is not exhausted.
        """
        record = self._get(delivery_id)
        async with self._lock_for(delivery_id):
            now = self._clock()
            self._machine(record).manual_resend(now)
            if not self.is_online:
                await self._park_offline(record, now)
                return record.state

        logger.info("Delivery %s manually re-sent", delivery_id)
        self._spawn(self._worker(delivery_id))
        return record.state

    async def confirm_delivery(self, delivery_id: str) -> DeliveryState:
        """Record the provider's delivery receipt.

        Raises:
            DeliveryNotFoundError: If the delivery is unknown.
            InvalidTransitionError: If the delivery was not sent.
        """
        record = self._get(delivery_id)
        async with self._lock_for(delivery_id):
            self._machine(record).confirm(self._clock())
            await self._publish_terminal(record)
        return record.state

    # =========================================================================
    # Connectivity
    # =========================================================================

    async def network_offline(self) -> int:
        """Park every delivery that is not mid-send.

        Deliveries being sent are parked by their worker when the
        transport reports the outage.

        Returns:
            Number of deliveries parked.
        """
        self.is_online = False
        parked = 0
        for record in list(self._records.values()):
            if record.state not in _PARKABLE_STATES:
                continue
            async with self._lock_for(record.delivery_id):
                if record.state in _PARKABLE_STATES:
                    await self._park_offline(record, self._clock())
                    parked += 1
        logger.info("Network offline, parked %d deliveries", parked)
        return parked

    async def network_online(self) -> int:
        """Replay parked deliveries.

        Deliveries are replayed sequentially per student, oldest first;
        different students replay concurrently.

        Returns:
            Number of deliveries replayed.
        """
        self.is_online = True
        await self.recover()

        parked = [r for r in self._records.values() if r.state == DeliveryState.OFFLINE_QUEUED]
        parked.sort(key=lambda r: (r.message.created_at, r.created_at))
        by_student: dict[str, list[str]] = defaultdict(list)
        for record in parked:
            by_student[record.message.student_id].append(record.delivery_id)

        for delivery_ids in by_student.values():
            self._spawn(self._replay(delivery_ids))
        logger.info(
            "Network online, replaying %d deliveries for %d students",
            len(parked),
            len(by_student),
        )
        return len(parked)

    async def _replay(self, delivery_ids: list[str]) -> None:
        for delivery_id in delivery_ids:
            record = self._records[delivery_id]
            async with self._lock_for(delivery_id):
                if record.state != DeliveryState.OFFLINE_QUEUED:
                    continue
                now = self._clock()
                if record.offline_item_id is not None:
                    await self._offline_queue.dequeue(record.offline_item_id)
                    record.offline_item_id = None
                self._machine(record).go_online(now)
            try:
                await self.process(delivery_id)
            except Exception:
                logger.exception("Replay of delivery %s crashed", delivery_id)

    async def recover(self) -> int:
        """Rebuild parked deliveries from the offline queue.

        Items whose delivery is already tracked are skipped.

        Returns:
            Number of deliveries rebuilt.
        """
        recovered = 0
        for item in await self._offline_queue.list_pending():
            if item.delivery_id in self._records:
                continue
            record = self._record_from_item(item)
            self._records[record.delivery_id] = record
            recovered += 1
        if recovered:
            logger.info("Recovered %d parked deliveries", recovered)
        return recovered

    def _record_from_item(self, item: OfflineQueueItem) -> DeliveryRecord:
        message = NotificationMessage.model_validate(item.payload["message"])
        channel_order = [ChannelType(c) for c in item.payload.get("channel_order", [])]
        if not channel_order:
            channel_order = [item.target_channel]
        now = self._clock()
        record = DeliveryRecord.create(
            delivery_id=item.delivery_id,
            message=message,
            guardian_id=item.guardian_id,
            channel_order=channel_order,
            now=item.created_at,
        )
        self._machine(record).fire(DeliveryEvent.NETWORK_OFFLINE, now, detail="recovered")
        record.offline_item_id = item.id
        return record

    async def _park_offline(self, record: DeliveryRecord, now: datetime) -> None:
        self.scheduler.discard(record.delivery_id)
        if record.offline_item_id is None:
            item = OfflineQueueItem(
                delivery_id=record.delivery_id,
                student_id=record.message.student_id,
                guardian_id=record.guardian_id,
                target_channel=record.channel_order[0],
                priority=record.message.effective_priority,
                payload={
                    "message": record.message.model_dump(mode="json"),
                    "channel_order": [c.value for c in record.channel_order],
                },
                school_id=record.message.school_id,
                device_id=self._device_id,
                created_at=now,
            )
            try:
                await self._offline_queue.enqueue(item)
                record.offline_item_id = item.id
            except OfflineQueueFullError as e:
                logger.error("Delivery %s parked in memory only: %s", record.delivery_id, e)
        self._machine(record).go_offline(now)

    async def _cancel_locked(self, record: DeliveryRecord, now: datetime) -> None:
        self.scheduler.discard(record.delivery_id)
        if record.offline_item_id is not None:
            await self._offline_queue.dequeue(record.offline_item_id)
            record.offline_item_id = None
        self._machine(record).cancel(now)
        logger.info("Delivery %s cancelled", record.delivery_id)
        await self._publish_terminal(record)

    async def _publish_terminal(self, record: DeliveryRecord) -> None:
        event_type = _TERMINAL_EVENTS.get(record.state)
        if event_type is None or self._event_bus is None:
            return
        await self._event_bus.publish(
            event_type,
            {
                "delivery_id": record.delivery_id,
                "message_id": record.message.id,
                "guardian_id": record.guardian_id,
                "student_id": record.message.student_id,
                "category": record.message.category.value,
                "state": record.state.value,
                "channel": record.current_channel.value if record.current_channel else None,
                "attempt_count": record.attempt_count,
                "retry_count": record.retry_count,
                "last_error": record.last_error,
                "requires_follow_up": record.state == DeliveryState.EXHAUSTED,
            },
            source="delivery",
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get(self, delivery_id: str) -> DeliveryRecord:
        record = self._records.get(delivery_id)
        if record is None:
            raise DeliveryNotFoundError(f"Delivery not found: {delivery_id}")
        return record

    def _lock_for(self, delivery_id: str) -> asyncio.Lock:
        lock = self._locks.get(delivery_id)
        if lock is None:
            lock = self._locks[delivery_id] = asyncio.Lock()
        return lock

    def _machine(self, record: DeliveryRecord) -> DeliveryStateMachine:
        policy = self._retry_policies[record.message.effective_priority]
        return DeliveryStateMachine(record, policy)

    def get_stats(self) -> dict[str, Any]:
        """Count deliveries per state."""
        counts: dict[str, int] = defaultdict(int)
        for record in self._records.values():
            counts[record.state.value] += 1
        return {
            "online": self.is_online,
            "deliveries": dict(counts),
            "running_workers": len(self._tasks),
            "scheduler": self.scheduler.get_stats(),
        }


