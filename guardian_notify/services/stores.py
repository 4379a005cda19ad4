# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Consent and guardian data collaborators of the notification service.

ConsentStore is the read side of the school's records: guardians, their
links to students, consent decisions, preferences and opt-outs.
InMemoryConsentStore implements it for a single device and for tests.
"""

from typing import Protocol, runtime_checkable

from guardian_notify.domains.consent.models import (
    ConsentCategory,
    ConsentRecord,
    OptOutRecord,
)
from guardian_notify.domains.consent.preferences import ParentPreferences
from guardian_notify.domains.consent.records import latest_record
from guardian_notify.domains.guardians.models import Guardian, GuardianStudentLink


@runtime_checkable
class ConsentStore(Protocol):
    """Source of guardian, consent and preference data."""

    async def get_guardian(self, guardian_id: str) -> Guardian | None:
        ...

    async def get_student_links(self, student_id: str) -> list[GuardianStudentLink]:
        ...

    async def get_consent(
        self,
        guardian_id: str,
        student_id: str,
        category: ConsentCategory,
    ) -> ConsentRecord | None:
        """Latest consent record for the subject, if any."""
        ...

    async def save_consent(self, record: ConsentRecord) -> None:
        ...

    async def get_preferences(self, guardian_id: str) -> ParentPreferences | None:
        ...

    async def save_preferences(self, preferences: ParentPreferences) -> None:
        ...

    async def get_opt_outs(self, guardian_id: str) -> list[OptOutRecord]:
        ...


class InMemoryConsentStore:
    """ConsentStore held in process memory."""

    def __init__(self) -> None:
        self.guardians: dict[str, Guardian] = {}
        self.links: list[GuardianStudentLink] = []
        self.consents: list[ConsentRecord] = []
        self.preferences: dict[str, ParentPreferences] = {}
        self.opt_outs: list[OptOutRecord] = []

    def add_guardian(self, guardian: Guardian, *links: GuardianStudentLink) -> None:
        self.guardians[guardian.id] = guardian
        self.links.extend(links)

    def add_opt_out(self, record: OptOutRecord) -> None:
        self.opt_outs.append(record)

    async def get_guardian(self, guardian_id: str) -> Guardian | None:
        return self.guardians.get(guardian_id)

    async def get_student_links(self, student_id: str) -> list[GuardianStudentLink]:
        return [link for link in self.links if link.student_id == student_id]

    async def get_consent(
        self,
        guardian_id: str,
        student_id: str,
        category: ConsentCategory,
    ) -> ConsentRecord | None:
        records = [
            r for r in self.consents if r.guardian_id == guardian_id and r.student_id == student_id
        ]
        return latest_record(records, category)

    async def save_consent(self, record: ConsentRecord) -> None:
        self.consents.append(record)

    async def get_preferences(self, guardian_id: str) -> ParentPreferences | None:
        return self.preferences.get(guardian_id)

    async def save_preferences(self, preferences: ParentPreferences) -> None:
        self.preferences[preferences.guardian_id] = preferences

    async def get_opt_outs(self, guardian_id: str) -> list[OptOutRecord]:
        return [r for r in self.opt_outs if r.guardian_id == guardian_id]
