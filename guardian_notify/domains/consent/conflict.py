# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Reconciliation of disagreeing guardians of one student."""

from dataclasses import dataclass, field
from enum import Enum

from guardian_notify.domains.consent.models import ConflictStrategy


class GuardianDecisionValue(str, Enum):
    """One guardian's stance on a message category."""

    OPTED_IN = "opted_in"
    OPTED_OUT = "opted_out"
    NO_PREFERENCE = "no_preference"


@dataclass(frozen=True)
class GuardianDecision:
    """A single guardian's decision, tagged with primacy.

    Attributes:
        guardian_id: Guardian identifier.
        decision: The guardian's stance.
        is_primary: Guardian holds a primary link to the student.
        guardian_name: Display name used when reporting overrides.
    """

    guardian_id: str
    decision: GuardianDecisionValue
    is_primary: bool = False
    guardian_name: str | None = None

    @property
    def label(self) -> str:
        return self.guardian_name or self.guardian_id


@dataclass(frozen=True)
class ConflictOutcome:
    """Result of reconciling several guardians.

    Attributes:
        allowed: Whether the household receives the message.
        applied_rule: Name of the rule that decided.
        strategy: Strategy applied, None when resolution was bypassed.
        overridden_by: Guardian whose decision overrode the others.
        decisions: Decisions that were reconciled.
    """

    allowed: bool
    applied_rule: str
    strategy: ConflictStrategy | None = None
    overridden_by: str | None = None
    decisions: tuple[GuardianDecision, ...] = field(default_factory=tuple)


class GuardianConflictResolver:
    """Pure multi-guardian reconciliation.

    most_permissive behaves like any_guardian_allows and most_restrictive
    like all_guardians_allow.
    """

    def resolve(
        self,
        decisions: list[GuardianDecision],
        strategy: ConflictStrategy,
    ) -> ConflictOutcome:
        """Reconcile guardian decisions under a strategy.

        Args:
            decisions: One decision per linked guardian.
            strategy: Strategy configured for the message category.

        Returns:
            ConflictOutcome describing whether the message is allowed.
        """
        recorded = tuple(decisions)
        if not recorded:
            return ConflictOutcome(
                allowed=False,
                applied_rule="consent_not_granted",
                decisions=recorded,
            )

        if len(recorded) == 1:
            only = recorded[0]
            return ConflictOutcome(
                allowed=only.decision == GuardianDecisionValue.OPTED_IN,
                applied_rule="single_guardian",
                decisions=recorded,
            )

        if strategy in (ConflictStrategy.ANY_GUARDIAN_ALLOWS, ConflictStrategy.MOST_PERMISSIVE):
            return self._any_allows(recorded, strategy, "any_guardian_allows")

        if strategy in (ConflictStrategy.ALL_GUARDIANS_ALLOW, ConflictStrategy.MOST_RESTRICTIVE):
            opted_in = _count(recorded, GuardianDecisionValue.OPTED_IN)
            opted_out = _count(recorded, GuardianDecisionValue.OPTED_OUT)
            return ConflictOutcome(
                allowed=opted_out == 0 and opted_in > 0,
                applied_rule="all_guardians_allow",
                strategy=strategy,
                decisions=recorded,
            )

        primary = next((d for d in recorded if d.is_primary), None)
        if primary is None:
            return self._any_allows(recorded, strategy, "no_primary_any_guardian_allows")

        allowed = primary.decision == GuardianDecisionValue.OPTED_IN
        someone_denied = any(
            d.decision == GuardianDecisionValue.OPTED_OUT
            for d in recorded
            if d is not primary
        )
        return ConflictOutcome(
            allowed=allowed,
            applied_rule="primary_guardian_decides",
            strategy=strategy,
            overridden_by=primary.label if allowed and someone_denied else None,
            decisions=recorded,
        )

    @staticmethod
    def _any_allows(
        decisions: tuple[GuardianDecision, ...],
        strategy: ConflictStrategy,
        rule: str,
    ) -> ConflictOutcome:
        return ConflictOutcome(
            allowed=_count(decisions, GuardianDecisionValue.OPTED_IN) > 0,
            applied_rule=rule,
            strategy=strategy,
            decisions=decisions,
        )


def _count(decisions: tuple[GuardianDecision, ...], value: GuardianDecisionValue) -> int:
    return sum(1 for d in decisions if d.decision == value)
