# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Audit log collaborator."""

from guardian_notify.infrastructure.audit.sink import AuditEntry, AuditSink, EventBusAuditSink

__all__ = ["AuditEntry", "AuditSink", "EventBusAuditSink"]
