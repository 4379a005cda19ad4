# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Messaging domain package: outbound messages and body rendering."""

from guardian_notify.domains.messaging.models import MessagePriority, NotificationMessage
from guardian_notify.domains.messaging.templates import render_template

__all__ = ["MessagePriority", "NotificationMessage", "render_template"]
