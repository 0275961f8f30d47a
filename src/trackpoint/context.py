"""Environment-derived context properties.

``build_context`` turns an ``EnvironmentProbe`` into the properties that are
installed as super-properties when an engine starts: locale, coarse device
class, OS family, UTM campaign tags and the referring domain.
"""

from __future__ import annotations

import locale
import platform
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlsplit

UTM_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content")

_BOT_PATTERN = re.compile(r"bot|crawl|spider|slurp|headless", re.IGNORECASE)
_TABLET_PATTERN = re.compile(r"ipad|tablet|kindle|silk|playbook", re.IGNORECASE)
_MOBILE_PATTERN = re.compile(r"mobi|iphone|ipod|android.+mobile|windows phone", re.IGNORECASE)

# Order matters: iOS user agents mention "Mac OS X", Android ones mention "Linux"
_OS_PATTERNS = [
    (re.compile(r"iphone|ipad|ipod", re.IGNORECASE), "iOS"),
    (re.compile(r"android", re.IGNORECASE), "Android"),
    (re.compile(r"windows", re.IGNORECASE), "Windows"),
    (re.compile(r"cros", re.IGNORECASE), "Chrome OS"),
    (re.compile(r"mac os x|macintosh|darwin", re.IGNORECASE), "macOS"),
    (re.compile(r"linux", re.IGNORECASE), "Linux"),
]


@dataclass(frozen=True)
class EnvironmentProbe:
    """Snapshot of the host environment the engine runs in.

    Every field is optional; absent fields produce no context property.
    """

    user_agent: Optional[str] = None
    url: Optional[str] = None
    referrer: Optional[str] = None
    title: Optional[str] = None
    locale: Optional[str] = None
    os_name: Optional[str] = None

    @classmethod
    def from_process(cls) -> "EnvironmentProbe":
        """Probe the running interpreter (no user agent, no URL)."""
        try:
            lang = locale.getlocale()[0]
        except ValueError:
            lang = None
        return cls(
            locale=lang.replace("_", "-") if lang else None,
            os_name=platform.system() or None,
        )

    def location_hint(self) -> Optional[str]:
        """Path plus query string of ``url``, used as the event location."""
        if not self.url:
            return None
        parts = urlsplit(self.url)
        path = parts.path or "/"
        return f"{path}?{parts.query}" if parts.query else path


def device_type(user_agent: str) -> str:
    """Classify a user agent as ``bot``, ``tablet``, ``mobile`` or ``desktop``."""
    if _BOT_PATTERN.search(user_agent):
        return "bot"
    if _TABLET_PATTERN.search(user_agent):
        return "tablet"
    if _MOBILE_PATTERN.search(user_agent):
        return "mobile"
    return "desktop"


def os_family(user_agent: str) -> Optional[str]:
    for pattern, family in _OS_PATTERNS:
        if pattern.search(user_agent):
            return family
    return None


def utm_params(url: Optional[str]) -> Dict[str, str]:
    """Extract UTM campaign parameters from a URL's query string."""
    if not url:
        return {}
    query = parse_qs(urlsplit(url).query)
    return {key: query[key][0] for key in UTM_PARAMS if query.get(key)}


def build_context(probe: EnvironmentProbe) -> Dict[str, Any]:
    """Derive context properties from ``probe``.

    Pure and idempotent: the same probe always yields the same mapping.

    Args:
        probe: The environment snapshot.

    Returns:
        Context properties; keys whose value cannot be derived are omitted.

    Examples:
        >>> build_context(EnvironmentProbe(url="/p?utm_source=news", locale="en-US"))
        {'locale': 'en-US', 'utm_source': 'news'}
    """
    context: Dict[str, Any] = {}

    if probe.locale:
        context["locale"] = probe.locale

    if probe.user_agent:
        context["device_type"] = device_type(probe.user_agent)
        family = os_family(probe.user_agent)
        if family:
            context["os"] = family
    elif probe.os_name:
        context["os"] = probe.os_name

    context.update(utm_params(probe.url))

    if probe.referrer:
        domain = urlsplit(probe.referrer).hostname
        if domain:
            context["referring_domain"] = domain

    return context
