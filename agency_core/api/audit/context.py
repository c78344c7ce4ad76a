"""
Audit Context

Immutable per-request metadata threaded through every data access call
made while handling that request.
"""

import copy
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from starlette.requests import Request

from agency_core.api.identity.device import resolve_client_ip
from agency_core.api.identity.extractor import EnhancedUser, generate_session_id, peer_address

UNKNOWN_TENANT = "unknown"


def _freeze(value: Any) -> Any:
    """Read-only deep copy: mappings become proxies, sequences become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(item) for item in value)
    return copy.deepcopy(value)


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    if isinstance(value, frozenset):
        return [_thaw(item) for item in value]
    return copy.deepcopy(value)


@dataclass(frozen=True)
class AuditContext:
    """Who, from where, and through which endpoint. Never mutated."""

    tenant_id: str
    user_id: Optional[str]
    session_id: str
    ip_address: str
    user_agent: str
    endpoint: str
    http_method: str
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self):
        object.__setattr__(self, "metadata", _freeze(self.metadata or {}))

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def metadata_dict(self) -> Dict[str, Any]:
        """A mutable deep copy of the metadata, safe to merge into audit rows."""
        return _thaw(self.metadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "endpoint": self.endpoint,
            "http_method": self.http_method,
            "metadata": self.metadata_dict(),
        }


def build_audit_context(request: Request, user: Optional[EnhancedUser]) -> AuditContext:
    """
    Derive the audit context for a request.

    Anonymous and invalid callers get tenant "unknown" so their operations
    are still traceable.
    """
    headers = request.headers
    metadata: Dict[str, Any] = {
        "referer": headers.get("referer"),
        "origin": headers.get("origin"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": headers.get("x-request-id") or secrets.token_hex(8),
        "user": user.snapshot() if user else None,
    }

    return AuditContext(
        tenant_id=user.tenant_id if user else UNKNOWN_TENANT,
        user_id=user.id if user else None,
        session_id=user.session_id if user else generate_session_id(),
        ip_address=resolve_client_ip(headers, peer_address(request)),
        user_agent=headers.get("user-agent") or "unknown",
        endpoint=request.url.path,
        http_method=request.method.upper(),
        metadata=metadata,
    )
