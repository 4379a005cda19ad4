# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-process event bus."""

from guardian_notify.infrastructure.events.bus import EventBus, EventData, EventHandler
from guardian_notify.infrastructure.events.types import EventTypes

__all__ = ["EventBus", "EventData", "EventHandler", "EventTypes"]
