"""Request identity: device classification, session registry, identity extraction."""

from agency_core.api.identity.device import DeviceInfo, GeoLocation, parse_user_agent
from agency_core.api.identity.sessions import InMemorySessionRegistry, SessionRegistry, UserSession
from agency_core.api.identity.extractor import EnhancedUser, IdentityExtractor

__all__ = [
    "DeviceInfo",
    "GeoLocation",
    "parse_user_agent",
    "InMemorySessionRegistry",
    "SessionRegistry",
    "UserSession",
    "EnhancedUser",
    "IdentityExtractor",
]
