"""
Device & Network Classification

Coarse user-agent parsing, client address resolution and best-effort
geo lookup. Everything here is advisory telemetry for the audit trail and
is never used for authorization.
"""

import ipaddress
from dataclasses import asdict, dataclass
from typing import Dict, Mapping, Optional

UNKNOWN = "unknown"
LOCAL = "Local"


@dataclass(frozen=True)
class DeviceInfo:
    """Device classification derived from the user-agent."""

    type: str = UNKNOWN  # desktop | mobile | tablet | unknown
    browser: str = UNKNOWN
    os: str = UNKNOWN

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class GeoLocation:
    """Best-effort location for a network address."""

    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return asdict(self)


# Order matters: first match wins.
_TABLET_MARKERS = ("ipad", "tablet", "kindle", "silk")
_MOBILE_MARKERS = ("mobile", "android", "iphone", "ipod")
_DESKTOP_MARKERS = ("windows", "macintosh", "linux", "x11", "cros")

_BROWSERS = (
    ("edg", "Edge"),
    ("opr/", "Opera"),
    ("opera", "Opera"),
    ("firefox", "Firefox"),
    ("fxios", "Firefox"),
    ("chrome", "Chrome"),
    ("crios", "Chrome"),
    ("safari", "Safari"),
)

_OPERATING_SYSTEMS = (
    ("windows", "Windows"),
    ("iphone", "iOS"),
    ("ipad", "iOS"),
    ("ipod", "iOS"),
    ("android", "Android"),
    ("macintosh", "macOS"),
    ("mac os x", "macOS"),
    ("cros", "ChromeOS"),
    ("linux", "Linux"),
)


def parse_user_agent(user_agent: Optional[str]) -> DeviceInfo:
    """Classify a user-agent string with case-insensitive substring heuristics."""
    if not user_agent:
        return DeviceInfo()

    ua = user_agent.lower()

    if any(marker in ua for marker in _TABLET_MARKERS):
        device_type = "tablet"
    elif any(marker in ua for marker in _MOBILE_MARKERS):
        device_type = "mobile"
    elif any(marker in ua for marker in _DESKTOP_MARKERS):
        device_type = "desktop"
    else:
        device_type = UNKNOWN

    browser = next((name for marker, name in _BROWSERS if marker in ua), UNKNOWN)
    os_name = next((name for marker, name in _OPERATING_SYSTEMS if marker in ua), UNKNOWN)

    return DeviceInfo(type=device_type, browser=browser, os=os_name)


def resolve_client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """
    Resolve the caller's address.

    Order: X-Forwarded-For (first entry) -> X-Real-IP -> transport peer -> "unknown".
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return peer or UNKNOWN


def is_local_address(ip_address: Optional[str]) -> bool:
    if not ip_address or ip_address == UNKNOWN:
        return True
    try:
        return ipaddress.ip_address(ip_address).is_loopback
    except ValueError:
        # Test clients and proxies report hostnames such as "testclient".
        return ip_address in ("localhost", "testclient")


def lookup_location(ip_address: Optional[str]) -> GeoLocation:
    """
    Best-effort geo lookup.

    Loopback and unknown addresses map to "Local"; everything else gets a
    placeholder until a geo-IP provider is wired in.
    """
    if is_local_address(ip_address):
        return GeoLocation(country=LOCAL, region=LOCAL, city=LOCAL)
    return GeoLocation(country="Unknown", region="Unknown", city="Unknown")
