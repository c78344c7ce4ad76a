"""
Session Routes

API endpoints for listing and ending registry sessions.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from agency_core.api.access.rbac import Permission, has_permission
from agency_core.api.audit.entries import AuditAction
from agency_core.api.auth.schemas import MessageResponse
from agency_core.api.data.audited import AuditedDatabase
from agency_core.api.dependencies import (
    get_audited_db,
    get_session_registry,
    require_permission,
    require_user,
)
from agency_core.api.errors import ForbiddenError
from agency_core.api.identity.extractor import EnhancedUser
from agency_core.api.identity.sessions import SessionRegistry, UserSession
from agency_core.api.sessions.schemas import SessionListResponse, SessionResponse


router = APIRouter()


def _listing(sessions) -> SessionListResponse:
    sessions = sorted(sessions, key=lambda s: s.last_activity, reverse=True)
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(s) for s in sessions],
        total=len(sessions),
    )


def _can_end(user: EnhancedUser, session: UserSession) -> bool:
    if session.user_id == user.id:
        return True
    if has_permission(user, Permission.ADMIN_ALL):
        return True
    return session.tenant_id == user.tenant_id and has_permission(user, Permission.ADMIN_CLIENT)


@router.get(
    "",
    response_model=SessionListResponse,
    summary="List my active sessions",
)
async def list_my_sessions(
    include_inactive: bool = Query(False),
    user: EnhancedUser = Depends(require_user),
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionListResponse:
    sessions = await registry.list_by_user(user.id, include_inactive=include_inactive)
    return _listing(sessions)


@router.get(
    "/tenant",
    response_model=SessionListResponse,
    summary="List active sessions in my tenant",
)
async def list_tenant_sessions(
    include_inactive: bool = Query(False),
    user: EnhancedUser = Depends(
        require_permission(Permission.ADMIN_CLIENT, Permission.ADMIN_ALL, table_name="sessions")
    ),
    registry: SessionRegistry = Depends(get_session_registry),
) -> SessionListResponse:
    sessions = await registry.list_by_tenant(user.tenant_id, include_inactive=include_inactive)
    return _listing(sessions)


@router.delete(
    "/{session_id}",
    response_model=MessageResponse,
    summary="End a session",
)
async def end_session(
    session_id: str,
    user: EnhancedUser = Depends(require_user),
    registry: SessionRegistry = Depends(get_session_registry),
    audited_db: AuditedDatabase = Depends(get_audited_db),
) -> MessageResponse:
    """
    End one of the caller's sessions.

    Tenant admins may end any session in their tenant; global admins any
    session at all.
    """
    session = await registry.get(session_id)

    # Sessions outside the caller's reach are reported as missing.
    if session is None or (
        session.tenant_id != user.tenant_id and not has_permission(user, Permission.ADMIN_ALL)
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )

    if not _can_end(user, session):
        await audited_db.record_denial(
            "sessions", AuditAction.UPDATE, [Permission.ADMIN_CLIENT, Permission.ADMIN_ALL]
        )
        raise ForbiddenError()

    reason = "ended" if session.user_id == user.id else f"revoked_by:{user.id}"
    await audited_db.audited(
        "sessions",
        AuditAction.UPDATE,
        lambda: registry.end(session_id, reason=reason),
        record_id=session_id,
        metadata={"end_reason": reason},
    )

    return MessageResponse(message="Session ended", session_id=session_id)
