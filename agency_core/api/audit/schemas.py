"""
Audit Schemas

Pydantic models for the audit log listing and statistics.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditLogResponse(BaseModel):
    """One row of the audit_logs_summary view."""

    id: str
    client_id: str
    client_name: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    user_role: Optional[str] = None
    table_name: str
    record_id: Optional[str] = None
    action: str
    endpoint: Optional[str] = None
    http_method: Optional[str] = None
    status_code: Optional[int] = None
    operation_duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Paginated audit rows."""

    items: List[AuditLogResponse]
    total: int
    limit: int
    offset: int
    has_more: bool


class AuditStatsResponse(BaseModel):
    """Aggregates over a trailing window."""

    total_logs: int
    logs_by_action: Dict[str, int]
    logs_by_table: Dict[str, int]
    logs_by_user: Dict[str, int]
    logs_by_endpoint: Dict[str, int]
    average_operation_duration: float
    error_count: int
    error_rate: float = Field(..., description="Percentage of rows with status >= 400")
    window_days: int
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
