"""
Call Schemas

Pydantic models for sales call records.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


CallStatus = Literal["scheduled", "completed", "cancelled", "no_show"]


class CallCreateRequest(BaseModel):
    """Request to log a call."""

    prospect_name: str = Field(..., min_length=1, max_length=255)
    status: CallStatus = "scheduled"
    outcome: Optional[str] = Field(None, max_length=32)
    notes: Optional[str] = None


class CallUpdateRequest(BaseModel):
    """Partial update; only fields that are set are written."""

    prospect_name: Optional[str] = Field(None, min_length=1, max_length=255)
    status: Optional[CallStatus] = None
    outcome: Optional[str] = Field(None, max_length=32)
    notes: Optional[str] = None


class CallResponse(BaseModel):
    """Call record."""

    id: str
    client_id: str
    user_id: str
    prospect_name: str
    status: str
    outcome: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CallListResponse(BaseModel):
    """Page of calls."""

    calls: List[CallResponse]
    total: int
    scope: str
