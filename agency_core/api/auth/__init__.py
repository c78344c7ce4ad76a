"""Authentication module."""

from agency_core.api.auth.jwt import (
    ClaimSet,
    CredentialVerifier,
    create_access_token,
    create_session_token,
)

__all__ = ["ClaimSet", "CredentialVerifier", "create_access_token", "create_session_token"]
