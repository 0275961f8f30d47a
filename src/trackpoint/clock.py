"""Clock and timer abstractions used by the engine.

The engine never reads the wall clock or arms timers directly. It goes
through a ``Clock`` and a ``Scheduler`` so that tests can simulate elapsed
time deterministically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Anything with a ``cancel()`` method."""

    def cancel(self) -> None: ...


class Clock:
    """Wall clock in epoch milliseconds."""

    def now_ms(self) -> float:
        return time.time() * 1000

    def now_iso(self) -> str:
        """Current instant as an ISO-8601 UTC string with millisecond precision."""
        moment = datetime.fromtimestamp(self.now_ms() / 1000, tz=timezone.utc)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Scheduler:
    """Arms one-shot timers on the running asyncio event loop.

    Without a running loop no timer is armed and ``call_later`` returns
    None; the engine then relies on size-triggered and explicit flushes.
    """

    def call_later(
        self, delay_ms: float, callback: Callable[[], Any]
    ) -> Optional[TimerHandle]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; flush timer not armed")
            return None
        return loop.call_later(delay_ms / 1000, callback)
