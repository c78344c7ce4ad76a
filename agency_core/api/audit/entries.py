"""
Audit Log Entries

One AuditLogEntry is emitted per audited operation. Entries are
append-only: created once, never updated.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from agency_core.api.audit.context import AuditContext


class AuditAction(str, Enum):
    """Kind of data access being audited."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SELECT = "SELECT"
    TRANSACTION = "TRANSACTION"


# Statuses recorded on audit rows
STATUS_OK = 200
STATUS_CREATED = 201
STATUS_NOT_FOUND = 404
STATUS_CLIENT_CLOSED = 499
STATUS_ERROR = 500


@dataclass
class AuditLogEntry:
    """Complete audit row."""

    tenant_id: str
    table_name: str
    action: AuditAction
    status_code: int
    operation_duration_ms: int
    user_id: Optional[str] = None
    record_id: Optional[str] = None
    endpoint: Optional[str] = None
    http_method: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    error_message: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_context(
        cls,
        context: AuditContext,
        table_name: str,
        action: AuditAction,
        status_code: int,
        operation_duration_ms: int,
        **kwargs,
    ) -> "AuditLogEntry":
        metadata = context.metadata_dict()
        metadata.update(kwargs.pop("metadata", None) or {})
        return cls(
            tenant_id=context.tenant_id,
            user_id=context.user_id,
            session_id=context.session_id,
            endpoint=context.endpoint,
            http_method=context.http_method,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            table_name=table_name,
            action=action,
            status_code=status_code,
            operation_duration_ms=max(0, int(operation_duration_ms)),
            metadata=metadata,
            **kwargs,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage and structured logging."""
        return {
            "id": self.id,
            "client_id": self.tenant_id,
            "user_id": self.user_id,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "action": self.action.value,
            "endpoint": self.endpoint,
            "http_method": self.http_method,
            "status_code": self.status_code,
            "operation_duration_ms": self.operation_duration_ms,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "session_id": self.session_id,
            "error_message": self.error_message,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


SENSITIVE_FIELDS = {
    "password", "password_hash", "secret", "token", "api_key",
    "access_token", "refresh_token", "session_token", "authorization",
    "credit_card", "ssn", "private_key",
}

REDACTED = "[REDACTED]"


def sanitize_for_audit(data: Any) -> Any:
    """Remove sensitive fields from data before it is written to the audit log."""
    if isinstance(data, dict):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_FIELDS else sanitize_for_audit(v)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [sanitize_for_audit(item) for item in data]
    elif isinstance(data, datetime):
        return data.isoformat()
    elif isinstance(data, (str, int, float, bool)) or data is None:
        return data
    else:
        return str(data)


def error_summary(exc: BaseException) -> Dict[str, str]:
    """Short, log-safe description of an exception."""
    message = str(exc) or exc.__class__.__name__
    return {"type": exc.__class__.__name__, "message": message[:500]}
