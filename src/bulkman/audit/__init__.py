"""Audit trail for bulk jobs."""

from .recorder import AuditEntry, AuditRecorder, AuditSeverity, AuditStatus

__all__ = ["AuditEntry", "AuditRecorder", "AuditSeverity", "AuditStatus"]
