"""
Session Schemas

Pydantic models for session registry listings.
"""

from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict


class SessionResponse(BaseModel):
    """One registry entry."""

    session_id: str
    user_id: str
    tenant_id: str
    role: str
    login_time: datetime
    last_activity: datetime
    ip_address: str
    user_agent: str
    is_active: bool
    metadata: Dict[str, Any] = {}

    model_config = ConfigDict(from_attributes=True)


class SessionListResponse(BaseModel):
    """List of sessions."""

    sessions: List[SessionResponse]
    total: int
