# ==============================================================================
# Client Context Parsing
# ==============================================================================
"""
Build a ClientContext (IP address, user agent, device info) from request data.

Browser and OS detection is a first-match-wins scan over regex patterns.
Mobile platforms are checked before desktop ones because mobile user agents
also carry "Linux" (Android) or "Mac OS X" (iOS).
"""

import re
from collections.abc import Mapping
from typing import Optional

from engagement.core.models import ClientContext, DeviceInfo

UNKNOWN = "Unknown"

MOBILE_PATTERN = re.compile(r"Mobile|Android|iPhone|iPad|iPod", re.IGNORECASE)

# Patterns matched in order - first match wins
BROWSER_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("Edge", re.compile(r"Edg(e|A|iOS)?/")),
    ("Chrome", re.compile(r"Chrome/|CriOS/")),
    ("Firefox", re.compile(r"Firefox/|FxiOS/")),
    ("Safari", re.compile(r"Safari/")),
    ("Internet Explorer", re.compile(r"MSIE |Trident/")),
]

OS_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("Android", re.compile(r"Android")),
    ("iOS", re.compile(r"iPhone|iPad|iPod")),
    ("Windows", re.compile(r"Windows")),
    ("macOS", re.compile(r"Mac OS|Macintosh")),
    ("Linux", re.compile(r"Linux")),
]


def _first_match(user_agent: str, patterns: list[tuple[str, re.Pattern]]) -> str:
    for name, pattern in patterns:
        if pattern.search(user_agent):
            return name
    return UNKNOWN


def parse_device_info(user_agent: Optional[str]) -> DeviceInfo:
    """
    Parse a user agent string into DeviceInfo.

    Returns a DeviceInfo with "Unknown" fields when the user agent is empty.
    """
    if not user_agent:
        return DeviceInfo()
    return DeviceInfo(
        user_agent=user_agent,
        is_mobile=bool(MOBILE_PATTERN.search(user_agent)),
        browser=_first_match(user_agent, BROWSER_PATTERNS),
        os=_first_match(user_agent, OS_PATTERNS),
    )


def client_ip(headers: Mapping[str, str], remote_addr: Optional[str] = None) -> Optional[str]:
    """
    Client IP address, preferring the first X-Forwarded-For hop.

    Header names are matched case-insensitively.
    """
    lowered = {name.lower(): value for name, value in headers.items()}
    forwarded = lowered.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = lowered.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return remote_addr


def build_client_context(
    headers: Optional[Mapping[str, str]] = None,
    remote_addr: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> ClientContext:
    """
    Build a ClientContext from request headers.

    Args:
        headers: Request headers (User-Agent, X-Forwarded-For...)
        remote_addr: Socket peer address, used when no proxy header is present
        user_agent: Explicit user agent, overrides the header
    """
    headers = headers or {}
    if user_agent is None:
        user_agent = next((v for k, v in headers.items() if k.lower() == "user-agent"), None)
    return ClientContext(
        ip_address=client_ip(headers, remote_addr),
        user_agent=user_agent,
        device_info=parse_device_info(user_agent),
    )
