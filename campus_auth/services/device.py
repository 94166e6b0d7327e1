"""
Device-context parsing.

Classifies a request's user-agent once, at session creation.  Each
classification is an ordered table of (substrings, result) rules
evaluated first-match-wins against the lower-cased user-agent.

Precedence:
- Browsers: Edge and Opera before Chrome (their UAs also say
  "chrome"); Firefox before Chrome (iOS Firefox says "fxios" only);
  Chrome before Safari (Chrome UAs also say "safari").
- Platforms: iPhone / iPad / Android before Mac / Linux (iOS UAs say
  "mac os x", Android UAs say "linux").
"""

from dataclasses import dataclass

from campus_auth.models.session import DeviceType

UNKNOWN_BROWSER = "Unknown Browser"
UNKNOWN_PLATFORM = ("unknown", "Unknown Device")

DEVICE_TYPE_RULES: tuple[tuple[tuple[str, ...], DeviceType], ...] = (
    (("mobile", "android", "iphone"), DeviceType.MOBILE),
    (("tablet", "ipad"), DeviceType.TABLET),
)

BROWSER_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("edg",), "Edge"),
    (("opr/", "opera"), "Opera"),
    (("firefox", "fxios"), "Firefox"),
    (("chrome", "crios"), "Chrome"),
    (("safari",), "Safari"),
)

PLATFORM_RULES: tuple[tuple[tuple[str, ...], tuple[str, str]], ...] = (
    (("iphone",), ("ios", "iPhone")),
    (("ipad",), ("ios", "iPad")),
    (("android",), ("android", "Android Device")),
    (("windows",), ("windows", "Windows PC")),
    (("mac",), ("mac", "Mac")),
    (("linux",), ("linux", "Linux PC")),
)


def _first_match(ua: str, rules, default):
    for needles, result in rules:
        if any(needle in ua for needle in needles):
            return result
    return default


@dataclass(frozen=True)
class DeviceContext:
    """Everything the session row records about the client."""

    device_type: DeviceType
    device_info: str
    browser_info: str
    platform: str
    ip_address: str
    user_agent: str


def parse_user_agent(user_agent: str | None, ip_address: str | None = None) -> DeviceContext:
    raw = user_agent or ""
    ua = raw.lower()
    platform, device_info = _first_match(ua, PLATFORM_RULES, UNKNOWN_PLATFORM)
    return DeviceContext(
        device_type=_first_match(ua, DEVICE_TYPE_RULES, DeviceType.DESKTOP),
        device_info=device_info,
        browser_info=_first_match(ua, BROWSER_RULES, UNKNOWN_BROWSER),
        platform=platform,
        ip_address=(ip_address or "unknown")[:45],
        user_agent=raw,
    )


def client_ip(forwarded_for: str | None, peer_host: str | None) -> str:
    """First hop of X-Forwarded-For, else the socket peer."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return peer_host or "unknown"
