"""Audit side-channel adapters."""

from horde_text_bridge.infrastructure.audit.file_audit_log import (
    MODERATION_TRIGGER_EVENT,
    FileAuditLog,
)

__all__ = ["FileAuditLog", "MODERATION_TRIGGER_EVENT"]
