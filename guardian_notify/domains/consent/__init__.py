# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Consent domain package.

This package decides, for one guardian and one message category, whether
stored consent allows sending:
- Category rules and the fallback table for unclear consent
- ConsentResolver and GuardianConflictResolver
- Role-gated overrides with audit logging
- Opt-outs, preferences and offline consent capture
"""

from guardian_notify.domains.consent.conflict import (
    ConflictOutcome,
    GuardianConflictResolver,
    GuardianDecision,
    GuardianDecisionValue,
)
from guardian_notify.domains.consent.exceptions import (
    ConsentError,
    ConsentOverrideError,
    InvalidConsentSourceError,
    OptOutNotAllowedError,
    OverrideNotPermittedError,
    PreferenceInvariantError,
    WithdrawnConsentOverrideError,
)
from guardian_notify.domains.consent.models import (
    ALL_AUTOMATED,
    CATEGORY_RULES,
    MESSAGE_TO_CONSENT_CATEGORY,
    CategoryRules,
    ConflictStrategy,
    ConsentCategory,
    ConsentClarity,
    ConsentRecord,
    ConsentSource,
    ConsentStatus,
    FallbackAction,
    FallbackRule,
    FollowUpPriority,
    FollowUpTask,
    FollowUpType,
    MessageCategory,
    OptOutRecord,
    OptOutScope,
    RecorderRole,
    to_consent_category,
)
from guardian_notify.domains.consent.opt_outs import (
    EffectiveOptOut,
    effective_opt_out,
    multi_child_opt_out_status,
    validate_opt_out_request,
)
from guardian_notify.domains.consent.overrides import (
    ConsentOverrideService,
    OverrideLogEntry,
    OverrideReason,
    OverrideRequest,
)
from guardian_notify.domains.consent.preferences import (
    ParentPreferences,
    PreferenceHistoryEntry,
    PreferredChannel,
    default_preferences,
    resolve_channel,
    update_preferences,
)
from guardian_notify.domains.consent.records import (
    consent_summary,
    create_offline_consent_record,
    validate_consent_source,
)
from guardian_notify.domains.consent.resolver import (
    ConsentResolution,
    ConsentResolver,
    OverrideRole,
    assess_clarity,
)

__all__ = [
    # Models
    "ALL_AUTOMATED",
    "CATEGORY_RULES",
    "MESSAGE_TO_CONSENT_CATEGORY",
    "CategoryRules",
    "ConflictStrategy",
    "ConsentCategory",
    "ConsentClarity",
    "ConsentRecord",
    "ConsentSource",
    "ConsentStatus",
    "FallbackAction",
    "FallbackRule",
    "FollowUpPriority",
    "FollowUpTask",
    "FollowUpType",
    "MessageCategory",
    "OptOutRecord",
    "OptOutScope",
    "RecorderRole",
    "to_consent_category",
    # Resolution
    "ConsentResolution",
    "ConsentResolver",
    "OverrideRole",
    "assess_clarity",
    "ConflictOutcome",
    "GuardianConflictResolver",
    "GuardianDecision",
    "GuardianDecisionValue",
    # Overrides
    "ConsentOverrideService",
    "OverrideLogEntry",
    "OverrideReason",
    "OverrideRequest",
    # Opt-outs and preferences
    "EffectiveOptOut",
    "effective_opt_out",
    "multi_child_opt_out_status",
    "validate_opt_out_request",
    "ParentPreferences",
    "PreferenceHistoryEntry",
    "PreferredChannel",
    "default_preferences",
    "resolve_channel",
    "update_preferences",
    # Records
    "consent_summary",
    "create_offline_consent_record",
    "validate_consent_source",
    # Errors
    "ConsentError",
    "ConsentOverrideError",
    "InvalidConsentSourceError",
    "OptOutNotAllowedError",
    "OverrideNotPermittedError",
    "PreferenceInvariantError",
    "WithdrawnConsentOverrideError",
]
