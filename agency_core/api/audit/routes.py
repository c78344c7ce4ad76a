"""
Audit Routes

Read access to the audit trail. Tenant auditors (audit:client) only ever
see their own tenant; global auditors (audit:all) may pick one or see all.
Every read of the trail is itself audited.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from agency_core.api.access.rbac import Permission, has_permission
from agency_core.api.audit.entries import AuditAction
from agency_core.api.audit.schemas import (
    AuditLogListResponse,
    AuditLogResponse,
    AuditStatsResponse,
)
from agency_core.api.audit.store import AuditLogQuery, AuditLogStore
from agency_core.api.config import settings
from agency_core.api.data.audited import AuditedDatabase
from agency_core.api.dependencies import get_audit_store, get_audited_db, require_permission
from agency_core.api.identity.extractor import EnhancedUser


router = APIRouter()

require_auditor = require_permission(
    Permission.AUDIT_CLIENT, Permission.AUDIT_ALL, table_name="audit_logs"
)


def _tenant_scope(user: EnhancedUser, requested: Optional[str]) -> Optional[str]:
    """Tenant filter to apply; None means every tenant."""
    if has_permission(user, Permission.AUDIT_ALL):
        return requested
    return user.tenant_id


@router.get(
    "",
    response_model=AuditLogListResponse,
    summary="List audit log entries",
)
async def list_audit_logs(
    limit: int = Query(50, ge=1, le=settings.AUDIT_PAGE_SIZE_MAX),
    offset: int = Query(0, ge=0),
    table: Optional[str] = Query(None, max_length=100),
    action: Optional[AuditAction] = Query(None),
    since: Optional[datetime] = Query(None),
    user_id: Optional[str] = Query(None, alias="userId"),
    tenant_id: Optional[str] = Query(None, alias="tenantId"),
    user: EnhancedUser = Depends(require_auditor),
    audited_db: AuditedDatabase = Depends(get_audited_db),
    store: AuditLogStore = Depends(get_audit_store),
) -> AuditLogListResponse:
    """Newest first, from the audit_logs_summary view."""
    query = AuditLogQuery(
        tenant_id=_tenant_scope(user, tenant_id),
        user_id=user_id,
        table_name=table,
        action=action,
        since=since,
        limit=limit,
        offset=offset,
    )

    page = await audited_db.audited(
        "audit_logs_summary",
        AuditAction.SELECT,
        lambda: store.query(query),
        metadata={
            "query": {
                "tenant_id": query.tenant_id,
                "user_id": user_id,
                "table": table,
                "action": action.value if action else None,
                "since": since.isoformat() if since else None,
                "limit": limit,
                "offset": offset,
            }
        },
    )

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(row) for row in page.rows],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        has_more=page.has_more,
    )


@router.get(
    "/stats",
    response_model=AuditStatsResponse,
    summary="Audit log statistics",
)
async def audit_log_stats(
    tenant_id: Optional[str] = Query(None, alias="tenantId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    days: int = Query(settings.AUDIT_STATS_DEFAULT_DAYS, ge=1, le=3650),
    user: EnhancedUser = Depends(require_auditor),
    audited_db: AuditedDatabase = Depends(get_audited_db),
    store: AuditLogStore = Depends(get_audit_store),
) -> AuditStatsResponse:
    scope = _tenant_scope(user, tenant_id)

    stats = await audited_db.audited(
        "audit_logs_summary",
        AuditAction.SELECT,
        lambda: store.get_audit_log_stats(tenant_id=scope, user_id=user_id, retention_days=days),
        metadata={"stats": {"tenant_id": scope, "user_id": user_id, "days": days}},
    )

    return AuditStatsResponse(
        total_logs=stats.total_logs,
        logs_by_action=stats.logs_by_action,
        logs_by_table=stats.logs_by_table,
        logs_by_user=stats.logs_by_user,
        logs_by_endpoint=stats.logs_by_endpoint,
        average_operation_duration=stats.average_operation_duration,
        error_count=stats.error_count,
        error_rate=stats.error_rate,
        window_days=stats.window_days,
        date_from=stats.date_from,
        date_to=stats.date_to,
    )
