# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Ordered admission rule table.

Admission walks ADMISSION_RULES in order and stops at the first rule that
returns a decision. The order is load-bearing: emergency bypass first,
channel resolution last. Each rule is a plain function over an
AdmissionContext so the precedence can be tested rule by rule.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from guardian_notify.domains.admission.models import (
    AdmissionDecision,
    AdmissionReason,
    GuardianContext,
)
from guardian_notify.domains.consent.conflict import (
    ConflictOutcome,
    GuardianConflictResolver,
    GuardianDecision,
    GuardianDecisionValue,
)
from guardian_notify.domains.consent.models import CATEGORY_RULES, ConsentCategory
from guardian_notify.domains.consent.opt_outs import applies_to, effective_opt_out
from guardian_notify.domains.consent.preferences import PreferredChannel, resolve_channel
from guardian_notify.domains.consent.resolver import ConsentResolution, ConsentResolver
from guardian_notify.domains.messaging.models import NotificationMessage
from guardian_notify.infrastructure.notifications.channels.base import ChannelAvailability, ChannelType

EMERGENCY_CHANNEL_PRIORITY: list[ChannelType] = [
    ChannelType.SMS,
    ChannelType.WHATSAPP,
    ChannelType.EMAIL,
]

MANUAL_CHANNEL_PRIORITY: list[ChannelType] = [
    ChannelType.WHATSAPP,
    ChannelType.SMS,
    ChannelType.EMAIL,
]


@dataclass
class AdmissionContext:
    """Inputs of one admission evaluation, plus results carried forward.

    Attributes:
        message: Message being admitted.
        target: Guardian the decision is for.
        guardians: Every guardian linked to the student, target included.
        channels: Channels that can reach the target.
        now: Reference time.
        current_hour: School-local hour for quiet hours, if known.
        manual_bypass_categories: Categories a manual sender may force.
        consent_resolver: Resolver for single-guardian consent.
        conflict_resolver: Resolver for multi-guardian reconciliation.
        consent: Target's consent resolution, set by the consent rule.
        conflict: Reconciliation outcome, set by the consent rule.
    """

    message: NotificationMessage
    target: GuardianContext
    guardians: list[GuardianContext]
    channels: ChannelAvailability
    now: datetime
    current_hour: int | None
    manual_bypass_categories: frozenset[ConsentCategory]
    consent_resolver: ConsentResolver
    conflict_resolver: GuardianConflictResolver
    consent: ConsentResolution | None = None
    conflict: ConflictOutcome | None = field(default=None)

    @property
    def category(self) -> ConsentCategory:
        return self.message.category

    @property
    def is_automated(self) -> bool:
        return not self.message.is_manual

    def allow(
        self,
        rule: str,
        reason: AdmissionReason,
        channel: ChannelType,
        *,
        is_fallback: bool = False,
        emergency_override: bool = False,
        is_automated: bool | None = None,
    ) -> AdmissionDecision:
        return AdmissionDecision(
            guardian_id=self.target.guardian_id,
            allowed=True,
            reason=reason,
            rule=rule,
            channel=channel,
            preferred_channel=self.target.preferences.preferred_channel.channel,
            is_fallback=is_fallback,
            emergency_override=emergency_override,
            is_automated=self.is_automated if is_automated is None else is_automated,
            consent=self.consent,
            conflict=self.conflict,
        )

    def block(self, rule: str, reason: AdmissionReason) -> AdmissionDecision:
        return AdmissionDecision(
            guardian_id=self.target.guardian_id,
            allowed=False,
            reason=reason,
            rule=rule,
            preferred_channel=self.target.preferences.preferred_channel.channel,
            is_automated=self.is_automated,
            consent=self.consent,
            conflict=self.conflict,
        )

    def resolve_consent(self, guardian: GuardianContext) -> ConsentResolution:
        return self.consent_resolver.resolve(
            self.category,
            guardian.consent,
            self.now,
            has_conflicting_records=guardian.has_conflicting_consent,
            is_emergency=self.message.is_emergency,
            guardian_id=guardian.guardian_id,
            student_id=guardian.student_id,
        )


AdmissionRuleFn = Callable[[AdmissionContext], AdmissionDecision | None]


@dataclass(frozen=True)
class AdmissionRule:
    """One step of the admission pipeline.

    Attributes:
        step: Position in the pipeline, starting at 1.
        name: Rule name, reported on decisions.
        evaluate: Returns a decision to stop, or None to continue.
    """

    step: int
    name: str
    evaluate: AdmissionRuleFn


def emergency_bypass(ctx: AdmissionContext) -> AdmissionDecision | None:
    """Admit emergencies on the first available channel, sms first."""
    if not ctx.message.treated_as_emergency:
        return None
    available = ctx.channels.in_order(EMERGENCY_CHANNEL_PRIORITY)
    if not available:
        return ctx.block("emergency_override", AdmissionReason.NO_CHANNEL_AVAILABLE)
    return ctx.allow(
        "emergency_override",
        AdmissionReason.EMERGENCY_OVERRIDE,
        available[0],
        emergency_override=True,
        is_automated=False,
    )


def manual_sender_bypass(ctx: AdmissionContext) -> AdmissionDecision | None:
    """Admit a human sender's message in an allow-listed category."""
    if not ctx.message.is_manual or ctx.category not in ctx.manual_bypass_categories:
        return None
    channel, is_fallback = resolve_channel(ctx.target.preferences.preferred_channel, ctx.channels)
    if channel is None:
        available = ctx.channels.in_order(MANUAL_CHANNEL_PRIORITY)
        if not available:
            return ctx.block("manual_sender_bypass", AdmissionReason.NO_CHANNEL_AVAILABLE)
        channel, is_fallback = available[0], True
    return ctx.allow(
        "manual_sender_bypass",
        AdmissionReason.MANUAL_BYPASS,
        channel,
        is_fallback=is_fallback,
        is_automated=False,
    )


def global_opt_out(ctx: AdmissionContext) -> AdmissionDecision | None:
    target = ctx.target
    silenced = target.preferences.global_opt_out or any(
        record.covers_all_automated
        and applies_to(record, target.guardian_id, target.student_id, ctx.category, ctx.now)
        for record in target.opt_outs
    )
    if silenced:
        return ctx.block("global_opt_out", AdmissionReason.GLOBAL_OPT_OUT)
    return None


def no_channel_preferred(ctx: AdmissionContext) -> AdmissionDecision | None:
    if ctx.target.preferences.preferred_channel == PreferredChannel.NONE:
        return ctx.block("no_channel_preferred", AdmissionReason.NO_CHANNEL_PREFERRED)
    return None


def category_opt_out(ctx: AdmissionContext) -> AdmissionDecision | None:
    target = ctx.target
    opted_out = effective_opt_out(
        target.guardian_id,
        target.student_id,
        ctx.category,
        list(target.opt_outs),
        ctx.now,
    )
    if not target.preferences.receives_category(ctx.category) or opted_out.is_opted_out:
        return ctx.block("category_opt_out", AdmissionReason.CATEGORY_OPT_OUT)
    return None


def _guardian_decision(ctx: AdmissionContext, guardian: GuardianContext) -> GuardianDecision:
    prefs = guardian.preferences
    opted_out = (
        prefs.global_opt_out
        or not prefs.receives_category(ctx.category)
        or effective_opt_out(
            guardian.guardian_id,
            guardian.student_id,
            ctx.category,
            list(guardian.opt_outs),
            ctx.now,
        ).is_opted_out
    )
    if opted_out:
        value = GuardianDecisionValue.OPTED_OUT
    else:
        resolution = ctx.resolve_consent(guardian)
        if resolution.allowed:
            value = GuardianDecisionValue.OPTED_IN
        elif resolution.is_withdrawn:
            value = GuardianDecisionValue.OPTED_OUT
        else:
            value = GuardianDecisionValue.NO_PREFERENCE

    return GuardianDecision(
        guardian_id=guardian.guardian_id,
        decision=value,
        is_primary=guardian.is_primary,
        guardian_name=guardian.guardian_name,
    )


def guardian_consent(ctx: AdmissionContext) -> AdmissionDecision | None:
    """Apply the target's consent, reconciled across guardians when several.

    An explicit withdrawal by the target always blocks, whatever the other
    guardians decided.
    """
    ctx.consent = ctx.resolve_consent(ctx.target)
    if ctx.consent.is_withdrawn:
        return ctx.block("guardian_consent", AdmissionReason.CONSENT_WITHDRAWN)

    if len(ctx.guardians) <= 1:
        if ctx.consent.allowed:
            return None
        return ctx.block("guardian_consent", AdmissionReason.CONSENT_NOT_GRANTED)

    decisions = [_guardian_decision(ctx, guardian) for guardian in ctx.guardians]
    ctx.conflict = ctx.conflict_resolver.resolve(
        decisions, CATEGORY_RULES[ctx.category].conflict_strategy
    )
    if ctx.conflict.allowed:
        return None
    if any(d.decision == GuardianDecisionValue.OPTED_IN for d in decisions):
        return ctx.block("guardian_consent", AdmissionReason.GUARDIAN_CONFLICT)
    return ctx.block("guardian_consent", AdmissionReason.CONSENT_NOT_GRANTED)


def quiet_hours(ctx: AdmissionContext) -> AdmissionDecision | None:
    if not ctx.is_automated or ctx.current_hour is None:
        return None
    if ctx.target.preferences.is_quiet_hour(ctx.current_hour):
        return ctx.block("quiet_hours", AdmissionReason.QUIET_HOURS)
    return None


def weekly_limit(ctx: AdmissionContext) -> AdmissionDecision | None:
    if not ctx.is_automated:
        return None
    if ctx.target.weekly_sent_count >= ctx.target.preferences.max_messages_per_week:
        return ctx.block("weekly_limit", AdmissionReason.WEEKLY_LIMIT_EXCEEDED)
    return None


def channel_resolution(ctx: AdmissionContext) -> AdmissionDecision:
    channel, is_fallback = resolve_channel(ctx.target.preferences.preferred_channel, ctx.channels)
    if channel is None:
        return ctx.block("channel_resolution", AdmissionReason.PREFERRED_CHANNEL_UNAVAILABLE)
    return ctx.allow(
        "channel_resolution",
        AdmissionReason.ALLOWED,
        channel,
        is_fallback=is_fallback,
    )


ADMISSION_RULES: tuple[AdmissionRule, ...] = (
    AdmissionRule(1, "emergency_override", emergency_bypass),
    AdmissionRule(2, "manual_sender_bypass", manual_sender_bypass),
    AdmissionRule(3, "global_opt_out", global_opt_out),
    AdmissionRule(4, "no_channel_preferred", no_channel_preferred),
    AdmissionRule(5, "category_opt_out", category_opt_out),
    AdmissionRule(6, "guardian_consent", guardian_consent),
    AdmissionRule(7, "quiet_hours", quiet_hours),
    AdmissionRule(8, "weekly_limit", weekly_limit),
    AdmissionRule(9, "channel_resolution", channel_resolution),
)
