# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Admission controller.

This module provides the AdmissionController, which decides whether a
message may be sent to one guardian and through which channel, by walking
the ordered rule table in rules.py. It is pure: everything it needs,
including the guardian's weekly send count, arrives in the call.

Example:
    >>> controller = AdmissionController()
    >>> decision = controller.can_admit(message, target, [target], channels, utc_now())
    >>> decision.allowed, decision.reason
    (False, <AdmissionReason.CATEGORY_OPT_OUT: 'category_opt_out'>)
"""

import logging
from dataclasses import replace
from datetime import datetime

from guardian_notify.core.config.settings import AdmissionSettings
from guardian_notify.domains.admission.models import (
    AdmissionDecision,
    AdmissionReason,
    GuardianContext,
)
from guardian_notify.domains.admission.rules import (
    ADMISSION_RULES,
    MANUAL_CHANNEL_PRIORITY,
    AdmissionContext,
    AdmissionRule,
)
from guardian_notify.domains.consent.conflict import GuardianConflictResolver
from guardian_notify.domains.consent.exceptions import WithdrawnConsentOverrideError
from guardian_notify.domains.consent.models import ConsentCategory, ConsentStatus
from guardian_notify.domains.consent.overrides import OverrideLogEntry
from guardian_notify.domains.consent.preferences import resolve_channel
from guardian_notify.domains.consent.resolver import ConsentResolver
from guardian_notify.domains.messaging.models import NotificationMessage
from guardian_notify.infrastructure.notifications.channels.base import ChannelAvailability

logger = logging.getLogger(__name__)


class AdmissionController:
    """Evaluates the admission rule table for one guardian at a time.

    Attributes:
        settings: Admission settings (manual bypass categories).
        consent_resolver: Single-guardian consent resolver.
        conflict_resolver: Multi-guardian reconciliation.
        rules: Ordered rule table.
    """

    def __init__(
        self,
        settings: AdmissionSettings | None = None,
        consent_resolver: ConsentResolver | None = None,
        conflict_resolver: GuardianConflictResolver | None = None,
        rules: tuple[AdmissionRule, ...] = ADMISSION_RULES,
    ) -> None:
        self.settings = settings or AdmissionSettings()
        self.consent_resolver = consent_resolver or ConsentResolver()
        self.conflict_resolver = conflict_resolver or GuardianConflictResolver()
        self.rules = rules
        self._bypass = frozenset(
            ConsentCategory(category) for category in self.settings.manual_bypass_categories
        )

    def can_admit(
        self,
        message: NotificationMessage,
        target: GuardianContext,
        guardians: list[GuardianContext],
        channels: ChannelAvailability,
        now: datetime,
        *,
        current_hour: int | None = None,
    ) -> AdmissionDecision:
        """Decide whether a message may be sent to a guardian.

        Args:
            message: Message to admit.
            target: Guardian the decision is for.
            guardians: All guardians linked to the student. The target is
                added when missing.
            channels: Channels that can reach the target.
            now: Reference time.
            current_hour: School-local hour of day; quiet hours are only
                checked when supplied.

        Returns:
            AdmissionDecision. Never raises for expected blocks.
        """
        household = list(guardians)
        if all(g.guardian_id != target.guardian_id for g in household):
            household.append(target)

        ctx = AdmissionContext(
            message=message,
            target=target,
            guardians=household,
            channels=channels,
            now=now,
            current_hour=current_hour,
            manual_bypass_categories=self._bypass,
            consent_resolver=self.consent_resolver,
            conflict_resolver=self.conflict_resolver,
        )

        for rule in self.rules:
            decision = rule.evaluate(ctx)
            if decision is None:
                continue
            if decision.allowed:
                logger.debug(
                    "Message %s admitted for guardian %s via %s on %s",
                    message.id,
                    target.guardian_id,
                    rule.name,
                    decision.channel.value if decision.channel else None,
                )
            else:
                logger.debug(
                    "Message %s blocked for guardian %s at step %d: %s",
                    message.id,
                    target.guardian_id,
                    rule.step,
                    decision.reason.value,
                )
            return decision

        # Only reachable with a custom rule table lacking a terminal rule
        return ctx.block("no_rule_matched", AdmissionReason.PREFERRED_CHANNEL_UNAVAILABLE)

    def apply_override(
        self,
        decision: AdmissionDecision,
        target: GuardianContext,
        channels: ChannelAvailability,
        override: OverrideLogEntry,
    ) -> AdmissionDecision:
        """Turn a blocked decision into an admitted one after an override.

        The override itself (role check, audit entry) is validated by
        ConsentOverrideService before this is called.

        Args:
            decision: Blocked decision.
            target: Guardian the decision is for.
            channels: Channels that can reach the target.
            override: Applied override.

        Returns:
            Admitted decision, or a no_channel_available block when no
            channel can reach the guardian.

        Raises:
            WithdrawnConsentOverrideError: If the guardian explicitly
                withdrew consent.
        """
        if decision.allowed:
            return decision

        withdrawn = target.consent is not None and target.consent.status == ConsentStatus.WITHDRAWN
        if decision.reason == AdmissionReason.CONSENT_WITHDRAWN or withdrawn:
            raise WithdrawnConsentOverrideError("Cannot override explicitly withdrawn consent")

        channel, is_fallback = resolve_channel(target.preferences.preferred_channel, channels)
        if channel is None:
            available = channels.in_order(MANUAL_CHANNEL_PRIORITY)
            if not available:
                return replace(decision, reason=AdmissionReason.NO_CHANNEL_AVAILABLE, rule="override")
            channel, is_fallback = available[0], True

        logger.info(
            "Override %s admits message %s for guardian %s (was %s)",
            override.id,
            override.request.message_id,
            target.guardian_id,
            decision.reason.value,
        )
        return replace(
            decision,
            allowed=True,
            reason=AdmissionReason.OVERRIDE_APPLIED,
            rule="override",
            channel=channel,
            is_fallback=is_fallback,
            is_automated=False,
        )
