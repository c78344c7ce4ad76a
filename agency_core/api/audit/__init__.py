"""
Agency Core - Audit Module

Components:
- context.py: Immutable per-request audit context
- entries.py: Audit actions, entries and value sanitizing
- store.py: Audit log persistence, statistics and retention cleanup
- routes.py: Audit log API
"""

from agency_core.api.audit.context import AuditContext, build_audit_context
from agency_core.api.audit.entries import AuditAction, AuditLogEntry, sanitize_for_audit
from agency_core.api.audit.store import AuditLogStore, SqlAuditLogStore

__all__ = [
    "AuditContext",
    "build_audit_context",
    "AuditAction",
    "AuditLogEntry",
    "sanitize_for_audit",
    "AuditLogStore",
    "SqlAuditLogStore",
]
