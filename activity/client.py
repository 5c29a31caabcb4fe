"""
activity/client.py -- Client classification for activity log rows.

Turns request metadata into the userIP / userOS / userBrowser values stored
with each log entry. Pattern tables are scanned in order and the LAST match
wins, so more specific entries sit below the generic ones they overlap
(Android below Linux, Chrome below Safari, Handheld last).
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Optional

# Header precedence for the client address, most specific first.
_IP_HEADERS = ("client-ip", "x-forwarded-for", "x-forwarded", "forwarded-for", "forwarded")

_OS_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(p, re.IGNORECASE), name)
    for p, name in (
        (r"windows nt 10", "Windows 10"),
        (r"windows nt 6\.3", "Windows 8.1"),
        (r"windows nt 6\.2", "Windows 8"),
        (r"windows nt 6\.1", "Windows 7"),
        (r"windows nt 6\.0", "Windows Vista"),
        (r"windows nt 5\.2", "Windows Server 2003/XP x64"),
        (r"windows nt 5\.1", "Windows XP"),
        (r"windows xp", "Windows XP"),
        (r"windows nt 5\.0", "Windows 2000"),
        (r"windows me", "Windows ME"),
        (r"win98", "Windows 98"),
        (r"win95", "Windows 95"),
        (r"win16", "Windows 3.11"),
        (r"macintosh|mac os x", "Mac OS X"),
        (r"mac_powerpc", "Mac OS 9"),
        (r"linux", "Linux"),
        (r"ubuntu", "Ubuntu"),
        (r"iphone", "iPhone"),
        (r"ipod", "iPod"),
        (r"ipad", "iPad"),
        (r"android", "Android"),
        (r"blackberry", "BlackBerry"),
        (r"webos", "Mobile"),
    )
]

_BROWSER_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(p, re.IGNORECASE), name)
    for p, name in (
        (r"msie", "Internet Explorer"),
        (r"trident", "Internet Explorer"),
        (r"firefox", "Firefox"),
        (r"safari", "Safari"),
        (r"chrome", "Chrome"),
        (r"edge", "Edge"),
        (r"opera", "Opera"),
        (r"netscape", "Netscape"),
        (r"maxthon", "Maxthon"),
        (r"konqueror", "Konqueror"),
        (r"ubrowser", "UC Browser"),
        (r"mobile", "Handheld"),
    )
]

UNKNOWN_OS = "Unknown OS Platform"
UNKNOWN_BROWSER = "Unknown Browser"


def _last_match(patterns: list[tuple[re.Pattern, str]], user_agent: str, default: str) -> str:
    result = default
    for pattern, name in patterns:
        if pattern.search(user_agent):
            result = name
    return result


def classify_os(user_agent: Optional[str]) -> str:
    return _last_match(_OS_PATTERNS, user_agent or "", UNKNOWN_OS)


def classify_browser(user_agent: Optional[str]) -> str:
    return _last_match(_BROWSER_PATTERNS, user_agent or "", UNKNOWN_BROWSER)


def client_ip(headers: Mapping[str, str], remote_addr: Optional[str] = None) -> str:
    """Pick the client address from proxy headers, falling back to the socket peer.

    Header values are reported as sent (X-Forwarded-For may hold a list);
    they are informational only and never used for access decisions.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in _IP_HEADERS:
        value = lowered.get(name)
        if value:
            return value
    return remote_addr or "UNKNOWN"
