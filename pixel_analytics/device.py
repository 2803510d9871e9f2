"""
User-agent classification.

Coarse keyword/regex matching on purpose: the result feeds dashboards and
session snapshots, not feature detection. Never raises.
"""

from dataclasses import dataclass
import re

UNKNOWN = "Unknown"

MOBILE = "mobile"
TABLET = "tablet"
DESKTOP = "desktop"

MOBILE_MAX_WIDTH = 768
TABLET_MAX_WIDTH = 1024

# Order matters: Chromium derivatives advertise "Chrome" and "Safari" too.
_BROWSERS = (
    ("Edge", re.compile(r"(?:Edg|Edge|EdgA|EdgiOS)/([\d.]+)")),
    ("Opera", re.compile(r"(?:OPR|Opera)/([\d.]+)")),
    ("Samsung Internet", re.compile(r"SamsungBrowser/([\d.]+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/([\d.]+)")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/([\d.]+)")),
    ("Safari", re.compile(r"Version/([\d.]+).*Safari/")),
    ("Internet Explorer", re.compile(r"(?:MSIE |Trident/.*rv:)([\d.]+)")),
)

_WINDOWS_VERSIONS = {
    "10.0": "10",
    "6.3": "8.1",
    "6.2": "8",
    "6.1": "7",
    "6.0": "Vista",
    "5.1": "XP",
}

_TABLET_PATTERN = re.compile(r"iPad|Tablet|PlayBook|Silk|Kindle|(Android(?!.*Mobile))", re.IGNORECASE)
_MOBILE_PATTERN = re.compile(
    r"Mobi|iPhone|iPod|Android.*Mobile|BlackBerry|IEMobile|Opera Mini|Windows Phone",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class DeviceInfo:
    browser: str = UNKNOWN
    browser_version: str = UNKNOWN
    os: str = UNKNOWN
    os_version: str = UNKNOWN


def _parse_browser(ua: str) -> tuple[str, str]:
    for name, pattern in _BROWSERS:
        match = pattern.search(ua)
        if match:
            return name, match.group(1)
    return UNKNOWN, UNKNOWN


def _parse_os(ua: str) -> tuple[str, str]:
    match = re.search(r"Windows NT ([\d.]+)", ua)
    if match:
        return "Windows", _WINDOWS_VERSIONS.get(match.group(1), match.group(1))

    match = re.search(r"(?:iPhone|CPU) OS ([\d_]+)", ua)
    if match or "iPad" in ua or "iPhone" in ua:
        return "iOS", match.group(1).replace("_", ".") if match else UNKNOWN

    match = re.search(r"Android ([\d.]+)", ua)
    if match or "Android" in ua:
        return "Android", match.group(1) if match else UNKNOWN

    match = re.search(r"Mac OS X ([\d_.]+)", ua)
    if match or "Macintosh" in ua:
        return "macOS", match.group(1).replace("_", ".") if match else UNKNOWN

    match = re.search(r"CrOS \S+ ([\d.]+)", ua)
    if match:
        return "Chrome OS", match.group(1)

    if "Linux" in ua:
        return "Linux", UNKNOWN

    return UNKNOWN, UNKNOWN


def parse_user_agent(user_agent: str | None) -> DeviceInfo:
    """Return browser and OS names and versions, ``"Unknown"`` where not recognised."""
    if not user_agent or not isinstance(user_agent, str):
        return DeviceInfo()

    browser, browser_version = _parse_browser(user_agent)
    os_name, os_version = _parse_os(user_agent)
    return DeviceInfo(
        browser=browser,
        browser_version=browser_version,
        os=os_name,
        os_version=os_version,
    )


def get_device_type(user_agent: str | None, screen_width: int | None = None) -> str:
    """Classify as mobile/tablet/desktop.

    User-agent keywords win over the reported screen width.
    """
    ua = user_agent or ""
    if _TABLET_PATTERN.search(ua):
        return TABLET
    if _MOBILE_PATTERN.search(ua):
        return MOBILE

    if isinstance(screen_width, (int, float)) and not isinstance(screen_width, bool) and screen_width > 0:
        if screen_width < MOBILE_MAX_WIDTH:
            return MOBILE
        if screen_width < TABLET_MAX_WIDTH:
            return TABLET
    return DESKTOP
