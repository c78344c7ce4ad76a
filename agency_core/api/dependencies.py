"""
FastAPI Dependencies

Request-scoped wiring: identity, audit context, the audited data layer
and permission gates. Shared services (session registry, identity
extractor, audit store) live on ``app.state`` and are set up in the
application lifespan.
"""

import logging
from typing import Optional, Union

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from agency_core.api.access.rbac import Permission, has_any_permission
from agency_core.api.audit.context import AuditContext, build_audit_context
from agency_core.api.audit.entries import AuditAction
from agency_core.api.audit.store import AuditLogStore
from agency_core.api.data.audited import AuditedDatabase
from agency_core.api.db.session import get_db
from agency_core.api.errors import ForbiddenError, UnauthenticatedError
from agency_core.api.identity.extractor import EnhancedUser, IdentityExtractor
from agency_core.api.identity.sessions import SessionRegistry

logger = logging.getLogger(__name__)

_UNSET = object()


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.session_registry


def get_identity_extractor(request: Request) -> IdentityExtractor:
    return request.app.state.identity_extractor


def get_audit_store(request: Request) -> AuditLogStore:
    return request.app.state.audit_store


async def get_identity(
    request: Request,
    extractor: IdentityExtractor = Depends(get_identity_extractor),
) -> Optional[EnhancedUser]:
    """
    The caller's identity, or None when anonymous.

    Extracted once per request; the result is cached on ``request.state``.
    """
    cached = getattr(request.state, "identity", _UNSET)
    if cached is not _UNSET:
        return cached

    user = await extractor.extract(request)
    request.state.identity = user
    return user


async def get_audit_context(
    request: Request,
    user: Optional[EnhancedUser] = Depends(get_identity),
) -> AuditContext:
    cached = getattr(request.state, "audit_context", None)
    if cached is not None:
        return cached

    context = build_audit_context(request, user)
    request.state.audit_context = context
    return context


async def get_audited_db(
    db: AsyncSession = Depends(get_db),
    context: AuditContext = Depends(get_audit_context),
    audit_store: AuditLogStore = Depends(get_audit_store),
) -> AuditedDatabase:
    return AuditedDatabase(db, context, audit_store)


async def _reject_anonymous(
    audited_db: AuditedDatabase,
    table_name: str,
    action: AuditAction,
    permissions=(),
) -> UnauthenticatedError:
    error = UnauthenticatedError()
    logger.info(
        f"Unauthenticated request to {audited_db.context.http_method} {audited_db.context.endpoint}"
    )
    await audited_db.record_denial(table_name, action, permissions, error=error)
    return error


async def require_user(
    user: Optional[EnhancedUser] = Depends(get_identity),
    audited_db: AuditedDatabase = Depends(get_audited_db),
) -> EnhancedUser:
    """
    Require an authenticated caller.

    An anonymous request is written to the audit log (status 401, table
    ``api``) before it is rejected.

    Raises:
        UnauthenticatedError: If the request carries no valid identity
    """
    if user is None:
        raise await _reject_anonymous(audited_db, "api", AuditAction.SELECT)
    return user


def require_permission(
    *permissions: Union[Permission, str],
    table_name: str = "api",
    action: AuditAction = AuditAction.SELECT,
):
    """
    Dependency factory: require any one of ``permissions``.

    Rejections are written to the audit log on ``table_name`` before the
    request fails: 401 for an anonymous caller, 403 for a missing
    permission. The response never names the missing permission.

    Usage:
        @router.get("/audit")
        async def list_audit(
            user: EnhancedUser = Depends(require_permission(Permission.AUDIT_CLIENT, Permission.AUDIT_ALL)),
        ): ...
    """
    if not permissions:
        raise ValueError("require_permission needs at least one permission")

    async def dependency(
        user: Optional[EnhancedUser] = Depends(get_identity),
        audited_db: AuditedDatabase = Depends(get_audited_db),
    ) -> EnhancedUser:
        if user is None:
            raise await _reject_anonymous(audited_db, table_name, action, permissions)
        if has_any_permission(user, permissions):
            return user

        logger.warning(
            f"Permission denied for user {user.id} ({user.role.value}) "
            f"on {audited_db.context.http_method} {audited_db.context.endpoint}"
        )
        await audited_db.record_denial(table_name, action, permissions)
        raise ForbiddenError()

    return dependency
