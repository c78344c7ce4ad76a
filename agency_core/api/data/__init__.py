"""Audited data access."""

from agency_core.api.data.audited import AuditedDatabase

__all__ = ["AuditedDatabase"]
