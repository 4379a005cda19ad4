# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities.

All timestamps handled by the consent and delivery core are timezone-aware
UTC datetimes. SQLite drops tzinfo on round trips, so values read back from
the local store go through ensure_utc().

Usage:
    from guardian_notify.utils.datetime import utc_now

    now = utc_now()
"""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime representing current UTC time.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.

    Note:
        - If dt is None, returns None
        - If dt is naive, assumes UTC and adds tzinfo
        - If dt is aware, converts to UTC
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def is_expired(expiry: datetime | None, now: datetime | None = None) -> bool:
    """Check if an expiry timestamp has passed.

    Unlike a session token, a consent or opt-out record without an
    expiry never expires.

    Args:
        expiry: The expiry datetime to check.
        now: Reference time, defaults to utc_now().

    Returns:
        True if expiry is set and lies strictly before now.
    """
    if expiry is None:
        return False

    reference = ensure_utc(now) if now is not None else utc_now()
    return ensure_utc(expiry) < reference


def local_hour(now: datetime, timezone_name: str) -> int:
    """Get the hour of day for a UTC instant in the given timezone.

    Args:
        now: Reference instant.
        timezone_name: IANA timezone name (e.g. "Africa/Lusaka").

    Returns:
        Hour of day, 0-23.
    """
    return ensure_utc(now).astimezone(ZoneInfo(timezone_name)).hour


def iso_week_key(now: datetime) -> str:
    """Build a stable key for the ISO week containing now.

    Args:
        now: Reference instant.

    Returns:
        Key like "2026-W42".
    """
    year, week, _ = ensure_utc(now).isocalendar()
    return f"{year}-W{week:02d}"


def add_seconds(dt: datetime, seconds: float) -> datetime:
    """Shift a datetime forward by a number of seconds."""
    return dt + timedelta(seconds=seconds)


def add_days(dt: datetime, days: int) -> datetime:
    """Shift a datetime forward by a number of days."""
    return dt + timedelta(days=days)


def format_iso(dt: datetime | None) -> str | None:
    """Format a datetime as ISO 8601 string.

    Args:
        dt: Datetime to format.

    Returns:
        ISO 8601 formatted string or None.
    """
    if dt is None:
        return None

    return ensure_utc(dt).isoformat()


def seconds_to_human(seconds: float) -> str:
    """Convert seconds to human-readable duration.

    Args:
        seconds: Duration in seconds.

    Returns:
        Human-readable string like "2h 30m" or "45m 10s".
    """
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"

    minutes = seconds // 60
    remaining_seconds = seconds % 60

    if minutes < 60:
        if remaining_seconds > 0:
            return f"{minutes}m {remaining_seconds}s"
        return f"{minutes}m"

    hours = minutes // 60
    remaining_minutes = minutes % 60

    if remaining_minutes > 0:
        return f"{hours}h {remaining_minutes}m"
    return f"{hours}h"
