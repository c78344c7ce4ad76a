"""
Authentication Service

Business logic for user authentication. User lookups go through the
audited data layer, so logins are part of the audit trail.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import bcrypt

from agency_core.api.auth.jwt import create_access_token, create_session_token
from agency_core.api.config import Settings, settings as default_settings
from agency_core.api.data.audited import AuditedDatabase
from agency_core.api.identity.extractor import generate_session_id


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        # Malformed stored hash
        return False


@dataclass
class IssuedTokens:
    """Credentials minted at login. Both share one session id."""

    session_id: str
    access_token: str
    session_token: Optional[str]
    expires_in: int


class AuthService:
    """Authentication service with password and token management."""

    def __init__(self, db: AuditedDatabase, settings: Settings = default_settings):
        self.db = db
        self.settings = settings

    async def authenticate(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        """
        Authenticate user with email/password.

        Args:
            email: User's email
            password: Plain text password

        Returns:
            User row if authenticated, None otherwise
        """
        rows = await self.db.select(
            "users", {"email": email.lower()}, limit=1, case_insensitive=["email"]
        )
        user = rows[0] if rows else None

        if not user or not user["is_active"]:
            return None

        if not verify_password(password, user["password_hash"]):
            return None

        # Update last login
        await self.db.update(
            "users",
            user["id"],
            {"last_login_at": datetime.now(timezone.utc)},
            returning=["id"],
        )

        return user

    def create_tokens(self, user: Dict[str, Any]) -> IssuedTokens:
        """
        Create the session cookie token and the bearer token for a user.

        The session token is only issued when SESSION_SECRET_KEY is set.
        """
        session_id = generate_session_id()
        claims = dict(
            user_id=user["id"],
            email=user["email"],
            name=user["name"],
            role=user["role"],
            tenant_id=user["client_id"],
            token_id=session_id,
            settings=self.settings,
        )

        session_token = None
        if self.settings.SESSION_SECRET_KEY:
            session_token = create_session_token(**claims)

        return IssuedTokens(
            session_id=session_id,
            access_token=create_access_token(**claims),
            session_token=session_token,
            expires_in=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )

    @property
    def configured(self) -> bool:
        return bool(self.settings.JWT_SECRET_KEY or self.settings.SESSION_SECRET_KEY)
