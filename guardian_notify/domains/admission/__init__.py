# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Admission domain package.

This package decides whether a message may be sent at all, and through
which channel, before any transport attempt.
"""

from guardian_notify.domains.admission.controller import AdmissionController
from guardian_notify.domains.admission.models import (
    AdmissionDecision,
    AdmissionReason,
    GuardianContext,
)
from guardian_notify.domains.admission.rules import (
    ADMISSION_RULES,
    EMERGENCY_CHANNEL_PRIORITY,
    AdmissionContext,
    AdmissionRule,
)

__all__ = [
    "ADMISSION_RULES",
    "EMERGENCY_CHANNEL_PRIORITY",
    "AdmissionContext",
    "AdmissionController",
    "AdmissionDecision",
    "AdmissionReason",
    "AdmissionRule",
    "GuardianContext",
]
