# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Guardian Notification Service.

This service is the entry point for sending messages to guardians:
- Admit a message per guardian (consent, opt-outs, quiet hours, caps)
- Submit admitted decisions for delivery, reserving weekly-cap slots
- Apply staff consent overrides to held messages
- Track, cancel, re-send and confirm deliveries
- Capture consent offline and sync it when connected
- Switch the device between online and offline

The service integrates with:
- ConsentStore for guardians, links, consent, preferences and opt-outs
- TransportGateway for channel capabilities and sends
- DeliveryOrchestrator for the delivery lifecycle
- SendCounter for the weekly automated-send cap
- AuditSink for override records
- EventBus for follow-up tasks and delivery outcomes
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from guardian_notify.core.config.settings import Settings, get_settings
from guardian_notify.domains.admission.controller import AdmissionController
from guardian_notify.domains.admission.models import (
    AdmissionDecision,
    AdmissionReason,
    GuardianContext,
)
from guardian_notify.domains.consent.exceptions import ConsentOverrideError
from guardian_notify.domains.consent.models import (
    ConsentCategory,
    ConsentRecord,
    ConsentSource,
    ConsentStatus,
    RecorderRole,
)
from guardian_notify.domains.consent.overrides import (
    ConsentOverrideService,
    OverrideLogEntry,
    OverrideRequest,
)
from guardian_notify.domains.consent.preferences import (
    ParentPreferences,
    PreferenceHistoryEntry,
    default_preferences,
    update_preferences,
)
from guardian_notify.domains.consent.records import (
    create_offline_consent_record,
    latest_record,
)
from guardian_notify.domains.consent.resolver import assess_clarity
from guardian_notify.domains.delivery.models import DeliveryState, DeliveryStatusSnapshot
from guardian_notify.domains.delivery.orchestrator import DeliveryOrchestrator
from guardian_notify.domains.guardians.links import (
    communication_type_for,
    guardians_for_communication,
    sort_by_contact_priority,
)
from guardian_notify.domains.guardians.models import GuardianStudentLink
from guardian_notify.domains.messaging.models import NotificationMessage
from guardian_notify.domains.messaging.templates import render_template
from guardian_notify.infrastructure.audit.sink import AuditSink
from guardian_notify.infrastructure.counters.send_counter import SendCounter
from guardian_notify.infrastructure.database.connection import LocalDatabase
from guardian_notify.infrastructure.events.bus import EventBus
from guardian_notify.infrastructure.events.types import EventTypes
from guardian_notify.infrastructure.notifications.gateway import TransportGateway
from guardian_notify.infrastructure.offline.consent_store import LocalConsentStore
from guardian_notify.services.stores import ConsentStore
from guardian_notify.utils.datetime import local_hour, utc_now

logger = logging.getLogger(__name__)


class NotificationServiceError(Exception):
    """Base exception for notification service errors."""

    pass


class GuardianNotFoundError(NotificationServiceError):
    """Raised when a guardian cannot be found."""

    pass


class OfflineConsentUnavailableError(NotificationServiceError):
    """Raised when offline consent capture has no local store."""

    pass


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of submitting one message to its guardians.

    Attributes:
        message_id: Message submitted.
        delivery_ids: Delivery id per admitted guardian.
        blocked: Block reason per guardian that was not delivered to.
    """

    message_id: str
    delivery_ids: dict[str, str] = field(default_factory=dict)
    blocked: dict[str, AdmissionReason] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "delivery_ids": dict(self.delivery_ids),
            "blocked": {gid: reason.value for gid, reason in self.blocked.items()},
        }


class NotificationService:
    """Service for admitting and delivering guardian messages.

    Attributes:
        settings: Application settings.
        controller: Admission controller.
        orchestrator: Delivery orchestrator.
    """

    def __init__(
        self,
        consent_store: ConsentStore,
        transport: TransportGateway,
        orchestrator: DeliveryOrchestrator,
        send_counter: SendCounter,
        audit_sink: AuditSink,
        *,
        controller: AdmissionController | None = None,
        local_consent_store: LocalConsentStore | None = None,
        event_bus: EventBus | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        database: LocalDatabase | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._database = database
        self.controller = controller or AdmissionController(self.settings.admission)
        self.orchestrator = orchestrator
        self._store = consent_store
        self._transport = transport
        self._counter = send_counter
        self._overrides = ConsentOverrideService(audit_sink)
        self._local_consents = local_consent_store
        self._event_bus = event_bus
        self._clock = clock

    async def start(self) -> int:
        """Start background delivery work.

        Returns:
            Number of parked deliveries recovered.
        """
        return await self.orchestrator.start()

    async def stop(self) -> None:
        """Stop delivery work and close the local database."""
        await self.orchestrator.stop()
        if self._database is not None:
            await self._database.close()

    # =========================================================================
    # Admission
    # =========================================================================

    async def admit(
        self,
        message: NotificationMessage,
        guardian_ids: list[str] | None = None,
    ) -> list[AdmissionDecision]:
        """Decide, per guardian, whether a message may be sent.

        Only guardians whose link rights cover the message take part:
        emergencies need can_receive_emergency, academic updates need
        can_receive_reports, and other categories need
        receives_all_communications. An explicitly requested guardian
        without the right is blocked as not_a_recipient.

        Args:
            message: Message to admit.
            guardian_ids: Guardians to decide for. Defaults to every
                guardian whose link covers the message, by contact priority.

        Returns:
            One decision per guardian, in the order requested.
        """
        now = self._clock()
        links = await self._store.get_student_links(message.student_id)
        recipients = self._recipient_links(message, links)
        contexts = await self._build_contexts(message, links, guardian_ids, now)
        household = [
            contexts[link.guardian_id] for link in recipients if link.guardian_id in contexts
        ]
        targets = guardian_ids or [
            link.guardian_id for link in sort_by_contact_priority(recipients)
        ]
        excluded = {link.guardian_id for link in links} - {
            link.guardian_id for link in recipients
        }
        current_hour = local_hour(now, self.settings.admission.timezone)

        decisions: list[AdmissionDecision] = []
        for guardian_id in targets:
            target = contexts.get(guardian_id)
            if target is None or guardian_id in excluded:
                decisions.append(
                    AdmissionDecision(
                        guardian_id=guardian_id,
                        allowed=False,
                        reason=(
                            AdmissionReason.CONTACT_NOT_FOUND
                            if target is None
                            else AdmissionReason.NOT_A_RECIPIENT
                        ),
                        rule="contact_lookup" if target is None else "link_rights",
                    )
                )
                continue

            channels = await self._transport.capabilities(guardian_id)
            decision = self.controller.can_admit(
                message,
                target,
                household,
                channels,
                now,
                current_hour=current_hour,
            )
            await self._publish_follow_up(decision)
            decisions.append(decision)

        logger.info(
            "Admitted message %s for %d of %d guardians",
            message.id,
            sum(1 for d in decisions if d.allowed),
            len(decisions),
        )
        return decisions

    @staticmethod
    def _recipient_links(
        message: NotificationMessage,
        links: list[GuardianStudentLink],
    ) -> list[GuardianStudentLink]:
        communication_type = communication_type_for(
            message.category, message.treated_as_emergency
        )
        return guardians_for_communication(links, communication_type)

    async def _build_contexts(
        self,
        message: NotificationMessage,
        links: list[GuardianStudentLink],
        guardian_ids: list[str] | None,
        now: datetime,
    ) -> dict[str, GuardianContext]:
        by_guardian = {link.guardian_id: link for link in links}
        wanted = list(by_guardian)
        for guardian_id in guardian_ids or []:
            if guardian_id not in by_guardian:
                wanted.append(guardian_id)

        contexts: dict[str, GuardianContext] = {}
        for guardian_id in wanted:
            guardian = await self._store.get_guardian(guardian_id)
            if guardian is None:
                continue
            consent, conflicting = await self._consent_for(
                guardian_id, message.student_id, message.category
            )
            link = by_guardian.get(guardian_id)
            contexts[guardian_id] = GuardianContext(
                guardian_id=guardian_id,
                student_id=message.student_id,
                preferences=await self._preferences_for(guardian_id),
                consent=consent,
                is_primary=link.is_primary if link else False,
                guardian_name=guardian.display_name,
                has_conflicting_consent=conflicting,
                opt_outs=tuple(await self._store.get_opt_outs(guardian_id)),
                weekly_sent_count=await self._counter.current(guardian_id, now),
            )
        return contexts

    async def _consent_for(
        self,
        guardian_id: str,
        student_id: str,
        category: ConsentCategory,
    ) -> tuple[ConsentRecord | None, bool]:
        """Latest consent record, merging server and unsynced local records.

        Returns:
            (record, conflicting). Conflicting is set when an unsynced
            local record disagrees with the server record.
        """
        stored = await self._store.get_consent(guardian_id, student_id, category)
        if self._local_consents is None:
            return stored, False

        local = await self._local_consents.get(guardian_id, student_id, category)
        if local is None or local.synced_at is not None:
            return stored, False
        if stored is None:
            return local, False
        conflicting = stored.status != local.status
        return latest_record([stored, local], category), conflicting

    async def _preferences_for(self, guardian_id: str) -> ParentPreferences:
        preferences = await self._store.get_preferences(guardian_id)
        if preferences is None:
            return default_preferences(guardian_id, self.settings.admission.default_weekly_cap)
        return preferences

    async def _publish_follow_up(self, decision: AdmissionDecision) -> None:
        task = decision.follow_up
        if task is None or self._event_bus is None:
            return
        await self._event_bus.publish(
            EventTypes.Consent.FOLLOW_UP_REQUESTED,
            task.model_dump(mode="json"),
            source="admission",
            event_id=task.id,
        )

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(
        self,
        message: NotificationMessage,
        decisions: list[AdmissionDecision] | None = None,
    ) -> SubmissionResult:
        """Deliver a message to every admitted guardian.

        Automated sends reserve a weekly-cap slot atomically before
        delivery starts; a guardian whose cap filled up since admission
        is reported as weekly_limit_exceeded.

        Args:
            message: Message to deliver.
            decisions: Admission decisions; admitted afresh when omitted.

        Returns:
            SubmissionResult with delivery ids and block reasons.
        """
        if decisions is None:
            decisions = await self.admit(message)

        now = self._clock()
        result = SubmissionResult(message_id=message.id)
        for decision in decisions:
            guardian_id = decision.guardian_id
            if not decision.allowed:
                result.blocked[guardian_id] = decision.reason
                continue

            reserved = False
            if decision.counts_toward_weekly_cap:
                preferences = await self._preferences_for(guardian_id)
                reserved = await self._counter.try_acquire(
                    guardian_id, preferences.max_messages_per_week, now
                )
                if not reserved:
                    result.blocked[guardian_id] = AdmissionReason.WEEKLY_LIMIT_EXCEEDED
                    continue

            try:
                personalized = await self._personalize(message, guardian_id)
                result.delivery_ids[guardian_id] = await self.orchestrator.submit(
                    personalized, decision
                )
            except Exception:
                if reserved:
                    await self._counter.release(guardian_id, now)
                raise

        logger.info(
            "Submitted message %s: %d deliveries, %d blocked",
            message.id,
            len(result.delivery_ids),
            len(result.blocked),
        )
        return result

    async def _personalize(
        self, message: NotificationMessage, guardian_id: str
    ) -> NotificationMessage:
        """Fill {{guardian_name}} and {{student_id}} placeholders in the body."""
        if "{{" not in message.body:
            return message
        guardian = await self._store.get_guardian(guardian_id)
        context = {
            "guardian_name": guardian.display_name if guardian else None,
            "student_id": message.student_id,
        }
        return message.model_copy(update={"body": render_template(message.body, context)})

    async def send(self, message: NotificationMessage) -> SubmissionResult:
        """Admit and submit a message to all linked guardians."""
        return await self.submit(message, await self.admit(message))

    # =========================================================================
    # Overrides
    # =========================================================================

    async def override(
        self,
        message: NotificationMessage,
        request: OverrideRequest,
    ) -> tuple[AdmissionDecision, OverrideLogEntry | None]:
        """Force a held message through for one guardian.

        Args:
            message: The held message.
            request: Staff override request.

        Returns:
            (decision, log entry). The entry is None when the message was
            already admitted and no override was needed.

        Raises:
            ConsentOverrideError: If the request does not describe the
                message (id, student or category).
            GuardianNotFoundError: If the guardian is unknown.
            OverrideNotPermittedError: If the role may not override.
            WithdrawnConsentOverrideError: If consent was withdrawn.
        """
        if request.message_id != message.id:
            raise ConsentOverrideError(
                f"Override is for message {request.message_id}, not {message.id}"
            )
        if request.student_id != message.student_id:
            raise ConsentOverrideError(
                f"Override is for student {request.student_id}, "
                f"but message {message.id} concerns {message.student_id}"
            )
        if request.category != message.category:
            raise ConsentOverrideError(
                f"Override cites category {request.category.value}, "
                f"but message {message.id} is {message.category.value}"
            )

        now = self._clock()
        guardian_id = request.guardian_id
        links = await self._store.get_student_links(message.student_id)
        contexts = await self._build_contexts(message, links, [guardian_id], now)
        target = contexts.get(guardian_id)
        if target is None:
            raise GuardianNotFoundError(f"Guardian not found: {guardian_id}")

        recipients = self._recipient_links(message, links)
        recipient_ids = {link.guardian_id for link in recipients}
        if guardian_id not in recipient_ids and any(
            link.guardian_id == guardian_id for link in links
        ):
            raise ConsentOverrideError(
                f"Guardian {guardian_id} is not a recipient of "
                f"{message.category.value} messages for {message.student_id}"
            )

        household = [
            contexts[link.guardian_id] for link in recipients if link.guardian_id in contexts
        ]
        channels = await self._transport.capabilities(guardian_id)
        decision = self.controller.can_admit(
            message,
            target,
            household,
            channels,
            now,
            current_hour=local_hour(now, self.settings.admission.timezone),
        )
        if decision.allowed:
            return decision, None

        if decision.consent is not None:
            clarity = decision.consent.clarity
        else:
            clarity = assess_clarity(target.consent, now, target.has_conflicting_consent)
        original_status = target.consent.status if target.consent else None

        entry = await self._overrides.apply(request, original_status, clarity)
        admitted = self.controller.apply_override(decision, target, channels, entry)

        if self._event_bus is not None:
            await self._event_bus.publish(
                EventTypes.Consent.OVERRIDE_APPLIED,
                {
                    "override_id": entry.id,
                    "audit_id": entry.audit_id,
                    "message_id": message.id,
                    "guardian_id": guardian_id,
                    "blocked_reason": decision.reason.value,
                    "allowed": admitted.allowed,
                },
                source="overrides",
            )
        return admitted, entry

    # =========================================================================
    # Deliveries
    # =========================================================================

    def status(self, delivery_id: str) -> DeliveryStatusSnapshot:
        return self.orchestrator.status(delivery_id)

    def list_deliveries(self, message_id: str | None = None) -> list[DeliveryStatusSnapshot]:
        return self.orchestrator.list_statuses(message_id)

    async def cancel(self, delivery_id: str) -> DeliveryState:
        return await self.orchestrator.cancel(delivery_id)

    async def resend(self, delivery_id: str) -> DeliveryState:
        return await self.orchestrator.resend(delivery_id)

    async def confirm_delivery(self, delivery_id: str) -> DeliveryState:
        return await self.orchestrator.confirm_delivery(delivery_id)

    async def network_offline(self) -> int:
        return await self.orchestrator.network_offline()

    async def network_online(self) -> int:
        """Reconnect: sync offline consent, then replay parked deliveries."""
        if self._local_consents is not None:
            await self.sync_local_consents()
        return await self.orchestrator.network_online()

    # =========================================================================
    # Consent and preferences
    # =========================================================================

    async def record_offline_consent(
        self,
        guardian_id: str,
        student_id: str,
        category: ConsentCategory,
        status: ConsentStatus,
        source: ConsentSource,
        recorded_by: str,
        recorded_by_role: RecorderRole,
        *,
        witness_name: str | None = None,
        paper_form_ref: str | None = None,
        notes: str | None = None,
    ) -> ConsentRecord:
        """Capture a consent decision on the device.

        Raises:
            OfflineConsentUnavailableError: If no local store is configured.
            InvalidConsentSourceError: If the source is not accepted for
                the category.
        """
        if self._local_consents is None:
            raise OfflineConsentUnavailableError("No local consent store configured")

        record = create_offline_consent_record(
            guardian_id,
            student_id,
            category,
            status,
            source,
            recorded_by,
            recorded_by_role,
            witness_name=witness_name,
            paper_form_ref=paper_form_ref,
            notes=notes,
            now=self._clock(),
        )
        await self._local_consents.save(record)
        logger.info(
            "Recorded offline consent %s: guardian=%s category=%s status=%s",
            record.id,
            guardian_id,
            category.value,
            status.value,
        )
        return record

    async def sync_local_consents(self) -> int:
        """Push unsynced local consent records to the consent store.

        Returns:
            Number of records synced.
        """
        if self._local_consents is None:
            return 0

        synced = 0
        for record in await self._local_consents.list_unsynced():
            now = self._clock()
            await self._store.save_consent(record.model_copy(update={"synced_at": now}))
            await self._local_consents.mark_synced(record.id, now)
            synced += 1
        if synced:
            logger.info("Synced %d offline consent records", synced)
        return synced

    async def change_preferences(
        self,
        guardian_id: str,
        changes: dict[str, Any],
        changed_by: str,
        changed_by_role: RecorderRole,
        reason: str | None = None,
    ) -> tuple[ParentPreferences, PreferenceHistoryEntry | None]:
        """Apply and store a preference change.

        Raises:
            GuardianNotFoundError: If the guardian is unknown.
            PreferenceInvariantError: If emergency alerts would be disabled.
        """
        if await self._store.get_guardian(guardian_id) is None:
            raise GuardianNotFoundError(f"Guardian not found: {guardian_id}")

        current = await self._preferences_for(guardian_id)
        updated, entry = update_preferences(
            current,
            changes,
            changed_by,
            changed_by_role,
            reason=reason,
            now=self._clock(),
        )
        if entry is not None:
            await self._store.save_preferences(updated)
        return updated, entry
