"""Error types and internal failure reporting.

Internal failures never propagate out of the tracking API. They are logged
and forwarded to Sentry, which is a no-op unless the host application has
called ``sentry_sdk.init()``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import sentry_sdk

logger = logging.getLogger(__name__)


class UninitializedError(RuntimeError):
    """Raised when the convenience engine is used before ``init_engine()``."""

    def __init__(
        self,
        message: str = "trackpoint engine is not initialized; call init_engine() first",
    ) -> None:
        super().__init__(message)


def report_delivery_failure(error: Optional[BaseException], count: int) -> None:
    """Record a failed delivery attempt.

    Delivery failures are expected (offline clients, flaky networks), so
    they are recorded as a breadcrumb instead of a captured exception.
    """
    logger.warning("Delivery of %d events failed, requeueing: %s", count, error)
    sentry_sdk.add_breadcrumb(
        message=f"trackpoint delivery failed: {error}",
        category="trackpoint.delivery",
        level="warning",
        data={"count": count, "error_type": type(error).__name__ if error is not None else None},
    )


def report_internal_error(
    message: str,
    error: Optional[BaseException] = None,
    **context: Any,
) -> None:
    """Log and capture an unexpected internal failure.

    Args:
        message: Human-readable description of where the failure happened.
        error: The exception, if any.
        **context: Extra data attached to the Sentry scope.
    """
    logger.error(message, exc_info=error)
    if error is None:
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("component", "trackpoint")
        for key, value in context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(error)
