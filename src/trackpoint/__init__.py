"""trackpoint - client-side product event capture and delivery.

This package buffers product events, attributes them to sessions, enriches
them with context and ships them in batches to an HTTP collector.

Features:
- Batched delivery with head-of-line requeue on network failure
- Inactivity-based session rotation with session_start/session_end events
- Persisted identity, super-properties, user properties and consent
- Plugin hooks before buffering and after each delivery attempt
- Opt-out (engine.opt_out(), DO_NOT_TRACK, TRACKPOINT_ENABLED)

Quick Start:
    from trackpoint import init_engine

    engine = init_engine(api_key="key", collect_url="https://collector.example.com/collect")
    engine.identify("user-42")
    engine.set_super_properties({"app_version": "2.3.0"})
    engine.track("report_exported", {"format": "csv"})

Plugins:
    from trackpoint import Plugin, PrivacyPlugin

    class DropInternal(Plugin):
        def before_enqueue(self, event):
            return False if event.properties.get("internal") else event

    engine.register_plugin(PrivacyPlugin())
    engine.register_plugin(DropInternal())

Opt-out:
    engine.opt_out()
    # Or for the whole environment
    export DO_NOT_TRACK=1
"""

import logging

from trackpoint.buffer import EventBuffer
from trackpoint.clock import Clock, Scheduler
from trackpoint.config import (
    CONFIG_DIR,
    CONFIG_FILE,
    DEFAULTS,
    EngineConfig,
    load_config,
    save_config,
)
from trackpoint.consent import ConsentGate
from trackpoint.context import EnvironmentProbe, build_context
from trackpoint.decorators import track_feature, track_performance
from trackpoint.engine import (
    Engine,
    get_engine,
    init_engine,
    require_engine,
    reset_engine,
)
from trackpoint.errors import UninitializedError
from trackpoint.events import (
    EventCategory,
    track_billing,
    track_churn,
    track_conversion,
    track_feature_adoption,
)
from trackpoint.models import Event
from trackpoint.plugins import FlushResult, Plugin, PluginPipeline
from trackpoint.privacy import PII_DENYLIST, PrivacyPlugin, scrub_dict
from trackpoint.session import SessionManager, SessionState
from trackpoint.storage import JsonFileStorage, KeyValueStore, MemoryStorage, Scope
from trackpoint.transport import DeliveryOutcome, HttpTransport

logging.getLogger("trackpoint").addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Engine
    "Engine",
    "init_engine",
    "get_engine",
    "require_engine",
    "reset_engine",
    "UninitializedError",
    # Config
    "EngineConfig",
    "load_config",
    "save_config",
    "CONFIG_DIR",
    "CONFIG_FILE",
    "DEFAULTS",
    # Components
    "Event",
    "EventBuffer",
    "ConsentGate",
    "SessionManager",
    "SessionState",
    "KeyValueStore",
    "MemoryStorage",
    "JsonFileStorage",
    "Scope",
    "EnvironmentProbe",
    "build_context",
    "Clock",
    "Scheduler",
    # Delivery
    "HttpTransport",
    "DeliveryOutcome",
    # Plugins
    "Plugin",
    "PluginPipeline",
    "FlushResult",
    "PrivacyPlugin",
    "PII_DENYLIST",
    "scrub_dict",
    # Convenience
    "EventCategory",
    "track_feature_adoption",
    "track_billing",
    "track_conversion",
    "track_churn",
    "track_feature",
    "track_performance",
]
