"""Convenience wrappers over ``Engine.track`` for common product events.

Each helper takes an optional ``engine``; without one it uses the
convenience engine from ``init_engine()`` and raises ``UninitializedError``
if there is none.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from .engine import Engine, require_engine


class EventCategory(str, Enum):
    """Categories attached to convenience events."""

    FEATURE = "feature"
    BILLING = "billing"
    CONVERSION = "conversion"
    CHURN = "churn"
    PERFORMANCE = "performance"


class BillingEvent(str, Enum):
    NEW = "new"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    CANCEL = "cancel"


class ConversionEvent(str, Enum):
    TRIAL_TO_PAID = "trial_to_paid"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"


def _track(
    engine: Optional[Engine],
    name: str,
    category: EventCategory,
    properties: Dict[str, Any],
) -> None:
    target = engine if engine is not None else require_engine()
    target.track(name, {"category": category.value, **properties})


def track_feature_adoption(
    feature_name: str,
    metadata: Optional[Dict[str, Any]] = None,
    engine: Optional[Engine] = None,
) -> None:
    """Track use of a product feature.

    Args:
        feature_name: Name of the feature, e.g. ``"export.csv"``.
        metadata: Additional properties.
        engine: Engine to track on; defaults to the convenience engine.
    """
    _track(
        engine,
        f"feature:{feature_name}",
        EventCategory.FEATURE,
        {"feature": feature_name, **(metadata or {})},
    )


def track_billing(
    event_type: str,
    amount: float,
    currency: str,
    plan: str,
    interval: str = "monthly",
    metadata: Optional[Dict[str, Any]] = None,
    engine: Optional[Engine] = None,
) -> None:
    """Track a revenue event.

    Args:
        event_type: One of ``new``, ``upgrade``, ``downgrade``, ``cancel``.
        amount: Amount in ``currency`` units.
        currency: ISO currency code.
        plan: Plan identifier.
        interval: Billing interval, ``monthly`` or ``yearly``.
        metadata: Additional properties.
        engine: Engine to track on; defaults to the convenience engine.

    Raises:
        ValueError: If ``event_type`` is not a known billing event.
    """
    kind = BillingEvent(event_type)
    _track(
        engine,
        f"billing:{kind.value}",
        EventCategory.BILLING,
        {
            "amount": amount,
            "currency": currency,
            "plan": plan,
            "interval": interval,
            **(metadata or {}),
        },
    )


def track_conversion(
    event_type: str,
    metadata: Optional[Dict[str, Any]] = None,
    engine: Optional[Engine] = None,
) -> None:
    """Track a plan conversion (``trial_to_paid``, ``upgrade``, ``downgrade``)."""
    kind = ConversionEvent(event_type)
    _track(engine, f"conversion:{kind.value}", EventCategory.CONVERSION, dict(metadata or {}))


def track_churn(
    reason: str,
    metadata: Optional[Dict[str, Any]] = None,
    engine: Optional[Engine] = None,
) -> None:
    """Track a customer leaving, with the stated reason."""
    _track(
        engine,
        "customer_churned",
        EventCategory.CHURN,
        {"reason": reason, **(metadata or {})},
    )
