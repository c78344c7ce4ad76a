"""
Call Routes

API endpoints for sales call records. Every read and write goes through
the audited data layer; the caller's widest scope (own, client, all)
narrows what they can see and touch.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from agency_core.api.access.rbac import Permission, highest_scope
from agency_core.api.audit.entries import AuditAction
from agency_core.api.auth.schemas import MessageResponse
from agency_core.api.calls.schemas import (
    CallCreateRequest,
    CallListResponse,
    CallResponse,
    CallUpdateRequest,
)
from agency_core.api.data.audited import AuditedDatabase
from agency_core.api.dependencies import get_audited_db, require_permission
from agency_core.api.identity.extractor import EnhancedUser


router = APIRouter()

TABLE = "calls"


def scope_conditions(user: EnhancedUser, verb: str) -> Optional[Dict[str, Any]]:
    """Row filter for the caller's widest scope on ``verb``; None if they hold none."""
    scope = highest_scope(user, verb)
    if scope == "all":
        return {}
    if scope == "client":
        return {"client_id": user.tenant_id}
    if scope == "own":
        return {"client_id": user.tenant_id, "user_id": user.id}
    return None


def in_scope(user: EnhancedUser, verb: str, row: Dict[str, Any]) -> bool:
    conditions = scope_conditions(user, verb)
    if conditions is None:
        return False
    return all(row.get(key) == value for key, value in conditions.items())


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Call not found",
    )


@router.get(
    "",
    response_model=CallListResponse,
    summary="List calls",
)
async def list_calls(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: EnhancedUser = Depends(
        require_permission(
            Permission.READ_OWN, Permission.READ_CLIENT, Permission.READ_ALL, table_name=TABLE
        )
    ),
    audited_db: AuditedDatabase = Depends(get_audited_db),
) -> CallListResponse:
    conditions = scope_conditions(user, "read")

    rows = await audited_db.select(
        TABLE,
        conditions,
        limit=limit,
        offset=offset,
        order_by="created_at",
        order_direction="DESC",
    )
    total = await audited_db.count(TABLE, conditions)

    return CallListResponse(
        calls=[CallResponse.model_validate(row) for row in rows],
        total=total,
        scope=highest_scope(user, "read"),
    )


@router.post(
    "",
    response_model=CallResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Log a call",
)
async def create_call(
    data: CallCreateRequest,
    user: EnhancedUser = Depends(
        require_permission(
            Permission.WRITE_OWN,
            Permission.WRITE_CLIENT,
            Permission.WRITE_ALL,
            table_name=TABLE,
            action=AuditAction.INSERT,
        )
    ),
    audited_db: AuditedDatabase = Depends(get_audited_db),
) -> CallResponse:
    """The call is owned by the caller and belongs to the caller's tenant."""
    row = await audited_db.insert(
        TABLE,
        {
            **data.model_dump(),
            "client_id": user.tenant_id,
            "user_id": user.id,
        },
    )
    return CallResponse.model_validate(row)


@router.get(
    "/{call_id}",
    response_model=CallResponse,
    summary="Get a call",
)
async def get_call(
    call_id: str,
    user: EnhancedUser = Depends(
        require_permission(
            Permission.READ_OWN, Permission.READ_CLIENT, Permission.READ_ALL, table_name=TABLE
        )
    ),
    audited_db: AuditedDatabase = Depends(get_audited_db),
) -> CallResponse:
    row = await audited_db.find_by_id(TABLE, call_id)
    if row is None or not in_scope(user, "read", row):
        raise _not_found()
    return CallResponse.model_validate(row)


@router.patch(
    "/{call_id}",
    response_model=CallResponse,
    summary="Update a call",
)
async def update_call(
    call_id: str,
    data: CallUpdateRequest,
    user: EnhancedUser = Depends(
        require_permission(
            Permission.WRITE_OWN,
            Permission.WRITE_CLIENT,
            Permission.WRITE_ALL,
            table_name=TABLE,
            action=AuditAction.UPDATE,
        )
    ),
    audited_db: AuditedDatabase = Depends(get_audited_db),
) -> CallResponse:
    existing = await audited_db.find_by_id(TABLE, call_id, columns=["id", "client_id", "user_id"])
    if existing is None or not in_scope(user, "write", existing):
        raise _not_found()

    changes = data.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update",
        )

    row = await audited_db.update(TABLE, call_id, changes)
    if row is None:
        raise _not_found()
    return CallResponse.model_validate(row)


@router.delete(
    "/{call_id}",
    response_model=MessageResponse,
    summary="Delete a call",
)
async def delete_call(
    call_id: str,
    user: EnhancedUser = Depends(
        require_permission(
            Permission.DELETE_CLIENT,
            Permission.DELETE_ALL,
            table_name=TABLE,
            action=AuditAction.DELETE,
        )
    ),
    audited_db: AuditedDatabase = Depends(get_audited_db),
) -> MessageResponse:
    existing = await audited_db.find_by_id(TABLE, call_id, columns=["id", "client_id", "user_id"])
    if existing is None or not in_scope(user, "delete", existing):
        raise _not_found()

    await audited_db.delete(TABLE, call_id, returning=["id"])
    return MessageResponse(message="Call deleted")
