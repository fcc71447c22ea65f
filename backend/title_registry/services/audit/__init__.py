"""Audit log: append-only transition history."""
from .audit_log import AuditLogService

__all__ = ["AuditLogService"]
