"""
Identity Extraction

Builds an EnhancedUser from an inbound request: verifies the credential,
derives permissions, classifies the device and records the session.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional

from starlette.requests import Request

from agency_core.api.access.rbac import Permission, Role, get_role_permissions, parse_role
from agency_core.api.auth.jwt import ClaimSet, CredentialVerifier
from agency_core.api.errors import SessionError, UnauthenticatedError
from agency_core.api.identity.device import (
    DeviceInfo,
    GeoLocation,
    lookup_location,
    parse_user_agent,
    resolve_client_ip,
)
from agency_core.api.identity.sessions import SessionRegistry, UserSession, utcnow

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    """Generate a random session id for credentials without a token id."""
    return f"sess_{secrets.token_urlsafe(16)}"


def peer_address(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@dataclass(frozen=True)
class EnhancedUser:
    """Identity plus session metadata for one authenticated actor."""

    id: str
    email: str
    name: str
    role: Role
    tenant_id: str
    permissions: FrozenSet[Permission]
    session_id: str
    login_time: datetime
    last_activity: datetime
    ip_address: str = "unknown"
    user_agent: str = ""
    device: DeviceInfo = field(default_factory=DeviceInfo)
    location: GeoLocation = field(default_factory=GeoLocation)

    def snapshot(self) -> Dict[str, Any]:
        """Self-contained copy of the identity for embedding in audit rows."""
        return {
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "login_time": self.login_time.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "device": self.device.to_dict(),
            "location": self.location.to_dict(),
        }


class IdentityExtractor:
    """Orchestrates credential verification, classification and session tracking."""

    def __init__(self, verifier: CredentialVerifier, registry: SessionRegistry):
        self.verifier = verifier
        self.registry = registry

    async def extract(self, request: Request) -> Optional[EnhancedUser]:
        """
        Extract the caller's identity.

        Returns None for anonymous callers: missing or invalid credentials,
        unknown roles, and ended or conflicting sessions. Never raises for
        credential problems.
        """
        try:
            claims = self.verifier.verify(request.cookies, request.headers)
        except UnauthenticatedError as e:
            logger.debug(f"No identity for {request.method} {request.url.path}: {e}")
            return None

        return await self.identify(claims, request)

    async def identify(self, claims: ClaimSet, request: Request) -> Optional[EnhancedUser]:
        """Build the user for verified claims and record its session."""
        role = parse_role(claims.role)
        if role is None:
            logger.warning(f"Credential for {claims.subject} carries unknown role {claims.role!r}")
            return None

        user = self.build_user(claims, role, request)

        try:
            await self.registry.upsert(
                UserSession(
                    session_id=user.session_id,
                    user_id=user.id,
                    tenant_id=user.tenant_id,
                    role=user.role.value,
                    login_time=user.login_time,
                    last_activity=user.last_activity,
                    ip_address=user.ip_address,
                    user_agent=user.user_agent,
                    metadata={
                        "endpoint": request.url.path,
                        "method": request.method,
                        "device": user.device.to_dict(),
                        "location": user.location.to_dict(),
                    },
                )
            )
        except SessionError as e:
            logger.warning(f"Rejecting session {user.session_id} for user {user.id}: {e}")
            return None

        return user

    def build_user(self, claims: ClaimSet, role: Role, request: Request) -> EnhancedUser:
        now = utcnow()
        ip_address = resolve_client_ip(request.headers, peer_address(request))
        user_agent = request.headers.get("user-agent", "")

        return EnhancedUser(
            id=claims.subject,
            email=claims.email,
            name=claims.name,
            role=role,
            tenant_id=claims.tenant_id,
            permissions=get_role_permissions(role),
            session_id=claims.token_id or generate_session_id(),
            login_time=claims.issued_at or now,
            last_activity=now,
            ip_address=ip_address,
            user_agent=user_agent,
            device=parse_user_agent(user_agent),
            location=lookup_location(ip_address),
        )
