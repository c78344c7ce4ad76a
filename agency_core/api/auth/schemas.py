"""
Authentication Schemas

Pydantic models for auth request/response validation.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr

from agency_core.api.identity.extractor import EnhancedUser


class UserLoginRequest(BaseModel):
    """User login request."""

    email: EmailStr
    password: str


class DeviceResponse(BaseModel):
    type: str
    browser: str
    os: str


class LocationResponse(BaseModel):
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None


class CurrentUserResponse(BaseModel):
    """The caller's identity, as seen by the API."""

    id: str
    email: str
    name: str
    role: str
    tenant_id: str
    permissions: List[str]
    session_id: str
    login_time: datetime
    last_activity: datetime
    ip_address: str
    device: DeviceResponse
    location: LocationResponse

    @classmethod
    def from_user(cls, user: EnhancedUser) -> "CurrentUserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role.value,
            tenant_id=user.tenant_id,
            permissions=sorted(p.value for p in user.permissions),
            session_id=user.session_id,
            login_time=user.login_time,
            last_activity=user.last_activity,
            ip_address=user.ip_address,
            device=DeviceResponse(**user.device.to_dict()),
            location=LocationResponse(**user.location.to_dict()),
        )


class AuthResponse(BaseModel):
    """Login response. The session token is also set as a cookie."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    session_id: str
    user: CurrentUserResponse


class MessageResponse(BaseModel):
    """Simple message response."""

    message: str
    success: bool = True
    session_id: Optional[str] = None
