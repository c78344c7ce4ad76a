"""
JWT Token Handling

Create and verify the two credential formats accepted by the API:

- session tokens, carried in the session cookie and signed with
  SESSION_SECRET_KEY
- standalone bearer tokens, sent as ``Authorization: Bearer <jwt>`` and
  signed with JWT_SECRET_KEY (or SESSION_SECRET_KEY when only that is set)

Verification is a pure function of the token and the configured secret.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional
from uuid import uuid4

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from agency_core.api.config import Settings, settings as default_settings
from agency_core.api.errors import UnauthenticatedError

logger = logging.getLogger(__name__)


SESSION_TOKEN_TYPE = "session"
ACCESS_TOKEN_TYPE = "access"
REQUIRED_CLAIMS = ("sub", "role", "tenant_id")


@dataclass(frozen=True)
class ClaimSet:
    """Verified identity fields extracted from a credential."""

    subject: str
    email: str
    name: str
    role: str
    tenant_id: str
    issued_at: Optional[datetime] = None
    token_id: Optional[str] = None
    source: str = ACCESS_TOKEN_TYPE


def _encode(
    payload: dict,
    secret: Optional[str],
    algorithm: str,
) -> str:
    if not secret:
        raise RuntimeError("No signing secret configured for this token type")
    return jwt.encode(payload, secret, algorithm=algorithm)


def _base_payload(
    user_id: str,
    email: str,
    name: str,
    role: str,
    tenant_id: str,
    token_type: str,
    expires_in: timedelta,
    token_id: Optional[str],
) -> dict:
    now = datetime.now(timezone.utc)
    return {
        "sub": str(user_id),
        "email": email,
        "name": name,
        "role": role,
        "tenant_id": str(tenant_id),
        "iat": now,
        "exp": now + expires_in,
        "jti": token_id or str(uuid4()),
        "type": token_type,
    }


def create_session_token(
    user_id: str,
    email: str,
    name: str,
    role: str,
    tenant_id: str,
    token_id: Optional[str] = None,
    settings: Settings = default_settings,
) -> str:
    """
    Create a session token for the session cookie.

    Returns:
        Encoded JWT session token
    """
    payload = _base_payload(
        user_id, email, name, role, tenant_id,
        SESSION_TOKEN_TYPE,
        timedelta(hours=settings.SESSION_TOKEN_EXPIRE_HOURS),
        token_id,
    )
    return _encode(payload, settings.SESSION_SECRET_KEY, settings.JWT_ALGORITHM)


def create_access_token(
    user_id: str,
    email: str,
    name: str,
    role: str,
    tenant_id: str,
    token_id: Optional[str] = None,
    settings: Settings = default_settings,
) -> str:
    """
    Create a standalone bearer token.

    Returns:
        Encoded JWT access token
    """
    payload = _base_payload(
        user_id, email, name, role, tenant_id,
        ACCESS_TOKEN_TYPE,
        timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        token_id,
    )
    secret = settings.JWT_SECRET_KEY or settings.SESSION_SECRET_KEY
    return _encode(payload, secret, settings.JWT_ALGORITHM)


class CredentialVerifier:
    """
    Turns a raw credential into a ClaimSet.

    Either verification path is disabled when its secret is not configured.
    """

    def __init__(self, settings: Settings = default_settings):
        self.algorithm = settings.JWT_ALGORITHM
        self.cookie_name = settings.SESSION_COOKIE_NAME
        self.session_secret = settings.SESSION_SECRET_KEY
        self.bearer_secret = settings.JWT_SECRET_KEY or settings.SESSION_SECRET_KEY

        if not self.session_secret:
            logger.warning("SESSION_SECRET_KEY not set; session cookie verification disabled")
        if not self.bearer_secret:
            logger.warning("JWT_SECRET_KEY not set; bearer token verification disabled")

    def verify_session_token(self, token: str) -> ClaimSet:
        if not self.session_secret:
            raise UnauthenticatedError("Session token verification disabled")
        payload = self._decode(token, self.session_secret)
        return self._to_claims(payload, SESSION_TOKEN_TYPE)

    def verify_bearer_token(self, token: str) -> ClaimSet:
        if not self.bearer_secret:
            raise UnauthenticatedError("Bearer token verification disabled")
        payload = self._decode(token, self.bearer_secret)
        return self._to_claims(payload, ACCESS_TOKEN_TYPE)

    def verify(
        self,
        cookies: Mapping[str, str],
        headers: Mapping[str, str],
    ) -> ClaimSet:
        """
        Verify the request credential.

        The session cookie is tried first; the bearer header only when no
        session cookie is present (or session verification is disabled).
        A present but invalid credential is terminal.

        Raises:
            UnauthenticatedError: If no credential verifies
        """
        session_token = cookies.get(self.cookie_name) if self.session_secret else None
        if session_token:
            return self.verify_session_token(session_token)

        bearer = extract_bearer(headers.get("authorization"))
        if bearer:
            return self.verify_bearer_token(bearer)

        raise UnauthenticatedError("No credential provided")

    def _decode(self, token: str, secret: str) -> dict:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "sub"]},
            )
        except ExpiredSignatureError:
            raise UnauthenticatedError("Token expired", code="TOKEN_EXPIRED") from None
        except InvalidTokenError as e:
            raise UnauthenticatedError(f"Invalid token: {e}", code="TOKEN_INVALID") from None

    def _to_claims(self, payload: dict, token_type: str) -> ClaimSet:
        if payload.get("type", token_type) != token_type:
            raise UnauthenticatedError("Unexpected token type", code="TOKEN_INVALID")

        missing = [claim for claim in REQUIRED_CLAIMS if not payload.get(claim)]
        if missing:
            raise UnauthenticatedError(
                f"Token missing claims: {', '.join(missing)}", code="TOKEN_INVALID"
            )

        return ClaimSet(
            subject=str(payload["sub"]),
            email=str(payload.get("email") or ""),
            name=str(payload.get("name") or ""),
            role=str(payload["role"]),
            tenant_id=str(payload["tenant_id"]),
            issued_at=_parse_issued_at(payload.get("iat")),
            token_id=str(payload["jti"]) if payload.get("jti") else None,
            source=token_type,
        )


def extract_bearer(header_value: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer`` header value."""
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _parse_issued_at(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None
