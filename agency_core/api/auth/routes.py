"""
Authentication Routes

API endpoints for login, logout and the current identity.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from agency_core.api.audit.entries import AuditAction
from agency_core.api.auth.jwt import ClaimSet
from agency_core.api.auth.schemas import (
    AuthResponse,
    CurrentUserResponse,
    MessageResponse,
    UserLoginRequest,
)
from agency_core.api.auth.service import AuthService
from agency_core.api.config import settings
from agency_core.api.data.audited import AuditedDatabase
from agency_core.api.dependencies import (
    get_audited_db,
    get_identity_extractor,
    get_session_registry,
    require_user,
)
from agency_core.api.errors import AgencyCoreError, UnauthenticatedError
from agency_core.api.identity.extractor import EnhancedUser, IdentityExtractor
from agency_core.api.identity.sessions import SessionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


def get_auth_service(db: AuditedDatabase = Depends(get_audited_db)) -> AuthService:
    """Dependency to get auth service."""
    return AuthService(db)


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login and get tokens",
)
async def login(
    data: UserLoginRequest,
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    extractor: IdentityExtractor = Depends(get_identity_extractor),
) -> AuthResponse:
    """
    Authenticate with email and password.

    Sets the session cookie (when session tokens are enabled) and returns
    a bearer token bound to the same session.
    """
    if not auth_service.configured:
        raise AgencyCoreError("No token signing secret configured", code="AUTH_NOT_CONFIGURED")

    user = await auth_service.authenticate(data.email, data.password)
    if not user:
        error = UnauthenticatedError("Invalid email or password", code="INVALID_CREDENTIALS")
        await auth_service.db.record_denial(
            "users",
            AuditAction.SELECT,
            error=error,
            metadata={"event": "login", "email": data.email.lower()},
        )
        raise error

    tokens = auth_service.create_tokens(user)
    identity = await extractor.identify(
        ClaimSet(
            subject=user["id"],
            email=user["email"],
            name=user["name"],
            role=user["role"],
            tenant_id=user["client_id"],
            token_id=tokens.session_id,
        ),
        request,
    )
    if identity is None:
        raise UnauthenticatedError("Account role is not recognised", code="INVALID_ROLE")

    if tokens.session_token:
        response.set_cookie(
            key=settings.SESSION_COOKIE_NAME,
            value=tokens.session_token,
            max_age=settings.SESSION_TOKEN_EXPIRE_HOURS * 3600,
            httponly=True,
            samesite="lax",
            secure=not settings.DEBUG,
        )

    logger.info(f"User {identity.id} logged in (session {identity.session_id})")

    return AuthResponse(
        access_token=tokens.access_token,
        expires_in=tokens.expires_in,
        session_id=tokens.session_id,
        user=CurrentUserResponse.from_user(identity),
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="End the current session",
)
async def logout(
    response: Response,
    user: EnhancedUser = Depends(require_user),
    registry: SessionRegistry = Depends(get_session_registry),
    audited_db: AuditedDatabase = Depends(get_audited_db),
) -> MessageResponse:
    """
    End the caller's session.

    The session stays in the registry as inactive; the credential that
    carried it is rejected from now on.
    """
    await audited_db.audited(
        "sessions",
        AuditAction.UPDATE,
        lambda: registry.end(user.session_id, reason="logout"),
        record_id=user.session_id,
        metadata={"end_reason": "logout"},
    )
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return MessageResponse(message="Successfully logged out", session_id=user.session_id)


@router.get(
    "/me",
    response_model=CurrentUserResponse,
    summary="Current identity",
)
async def me(user: EnhancedUser = Depends(require_user)) -> CurrentUserResponse:
    return CurrentUserResponse.from_user(user)
