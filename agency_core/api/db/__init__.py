"""Database module."""

from agency_core.api.db.session import get_db, get_session_maker, init_db, close_db
from agency_core.api.db.models import Base, Client, User, Call, AuditLog, audit_logs_summary

__all__ = [
    "get_db",
    "get_session_maker",
    "init_db",
    "close_db",
    "Base",
    "Client",
    "User",
    "Call",
    "AuditLog",
    "audit_logs_summary",
]
