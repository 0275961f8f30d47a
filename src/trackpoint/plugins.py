"""Plugin hooks applied at enqueue time and after each delivery attempt."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from .errors import report_internal_error
from .models import Event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlushResult:
    """Outcome of one delivery attempt as seen by plugins.

    ``ok`` is False only when the request never completed. A completed
    request with a non-2xx status is ``ok`` with that ``status``. Beacon
    sends are unconfirmed: ``ok`` with no status and ``beacon`` set.
    """

    ok: bool
    count: int
    status: Optional[int] = None
    beacon: bool = False


class Plugin:
    """Base class for plugins; both hooks are optional.

    Any object providing ``before_enqueue`` and/or ``after_flush`` can be
    registered, subclassing is not required.
    """

    def before_enqueue(self, event: Event) -> Union[Event, bool, None]:
        """Return the (possibly replaced) event, ``None`` to keep it, or ``False`` to drop it."""
        return event

    def after_flush(self, result: FlushResult) -> None:
        """Observe the outcome of a delivery attempt."""


class PluginPipeline:
    """Ordered plugins with isolated hook invocation."""

    def __init__(self) -> None:
        self._plugins: List[Any] = []

    def __len__(self) -> int:
        return len(self._plugins)

    @property
    def plugins(self) -> List[Any]:
        return list(self._plugins)

    def register(self, plugin: Any) -> None:
        if not (hasattr(plugin, "before_enqueue") or hasattr(plugin, "after_flush")):
            raise TypeError(f"{plugin!r} defines neither before_enqueue nor after_flush")
        self._plugins.append(plugin)

    def before_enqueue(self, event: Event) -> Optional[Event]:
        """Run ``event`` through every plugin in registration order.

        Returns:
            The event to buffer, or None if a plugin vetoed it.
        """
        for plugin in self._plugins:
            hook = getattr(plugin, "before_enqueue", None)
            if hook is None:
                continue
            try:
                result = hook(event)
            except Exception as e:
                report_internal_error(
                    f"Plugin {type(plugin).__name__}.before_enqueue failed",
                    e,
                    event_name=event.name,
                )
                continue
            if result is False:
                logger.debug("Event %r dropped by %s", event.name, type(plugin).__name__)
                return None
            if isinstance(result, Event):
                event = result
            elif result is not None and result is not True:
                logger.warning(
                    "Plugin %s.before_enqueue returned %r; keeping the event unchanged",
                    type(plugin).__name__,
                    result,
                )
        return event

    def after_flush(self, result: FlushResult) -> None:
        """Notify every plugin of a delivery outcome."""
        for plugin in self._plugins:
            hook = getattr(plugin, "after_flush", None)
            if hook is None:
                continue
            try:
                hook(result)
            except Exception as e:
                report_internal_error(
                    f"Plugin {type(plugin).__name__}.after_flush failed",
                    e,
                    ok=result.ok,
                    count=result.count,
                )
