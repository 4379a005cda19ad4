# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Consent domain exceptions.

Expected admission outcomes are returned as decisions. These exceptions
are reserved for rejected operations: overriding where no override is
permitted, recording consent from an unacceptable source, or opting out
of a category that cannot be opted out of.
"""


class ConsentError(Exception):
    """Base exception for consent domain errors."""

    pass


class ConsentOverrideError(ConsentError):
    """Raised when an override request is rejected."""

    pass


class OverrideNotPermittedError(ConsentOverrideError):
    """Raised when the requesting role may not override this category."""

    pass


class WithdrawnConsentOverrideError(ConsentOverrideError):
    """Raised when an override targets an explicit withdrawal."""

    pass


class InvalidConsentSourceError(ConsentError):
    """Raised when consent is captured through an unacceptable source."""

    pass


class OptOutNotAllowedError(ConsentError):
    """Raised when an opt-out request violates the category rules."""

    pass


class PreferenceInvariantError(ConsentError):
    """Raised when a preference change would disable emergency alerts."""

    pass
