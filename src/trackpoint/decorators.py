"""Convenience decorators for tracking.

This module provides decorators for adding tracking to functions:
- track_feature: Track feature usage on every call
- track_performance: Track execution time and outcome
"""

from __future__ import annotations

import functools
import time
from typing import Any, Callable, Optional, TypeVar

from .engine import Engine, get_engine
from .events import EventCategory, track_feature_adoption

F = TypeVar("F", bound=Callable[..., Any])


def _resolve(engine: Optional[Engine]) -> Optional[Engine]:
    # Decorated functions must keep working before init_engine() is called
    return engine if engine is not None else get_engine()


def track_feature(
    feature_name: str,
    engine: Optional[Engine] = None,
) -> Callable[[F], F]:
    """Decorator to track feature usage.

    Records a feature adoption event each time the function is called.

    Args:
        feature_name: Name of the feature being tracked.
        engine: Engine to track on; defaults to the convenience engine.
            Calls go untracked while there is none.

    Returns:
        Decorated function.

    Example:
        @track_feature("reports.export")
        def export_report(report_id):
            ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            target = _resolve(engine)
            if target is not None:
                track_feature_adoption(
                    feature_name,
                    {"function": func.__name__, "module": func.__module__},
                    engine=target,
                )
            return func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator


def track_performance(
    name: Optional[str] = None,
    engine: Optional[Engine] = None,
) -> Callable[[F], F]:
    """Decorator to track function execution time.

    Tracks a ``performance:<name>`` event with ``duration_ms`` and
    ``success`` once the function returns or raises. Exceptions propagate.

    Args:
        name: Operation name. Defaults to the function name.
        engine: Engine to track on; defaults to the convenience engine.

    Returns:
        Decorated function.
    """

    def decorator(func: F) -> F:
        operation_name = name or func.__name__

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            success = False
            try:
                result = func(*args, **kwargs)
                success = True
                return result
            finally:
                target = _resolve(engine)
                if target is not None:
                    target.track(
                        f"performance:{operation_name}",
                        {
                            "category": EventCategory.PERFORMANCE.value,
                            "duration_ms": (time.perf_counter() - start) * 1000,
                            "success": success,
                        },
                    )

        return wrapper  # type: ignore

    return decorator
