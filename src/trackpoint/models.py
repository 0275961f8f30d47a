"""Event data type."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Event:
    """A single named occurrence attributed to a session.

    Events are immutable once assembled. Plugins that need to alter one
    return a new instance built with ``dataclasses.replace``.
    """

    name: str
    session_id: str
    timestamp: str
    distinct_id: Optional[str] = None
    url: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        """Render the collector's JSON shape, omitting absent optional fields."""
        payload: Dict[str, Any] = {
            "event": self.name,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "properties": dict(self.properties),
        }
        if self.distinct_id is not None:
            payload["distinct_id"] = self.distinct_id
        if self.url is not None:
            payload["url"] = self.url
        return payload
