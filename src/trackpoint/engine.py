"""The tracking engine.

The engine owns the storage adapter, consent gate, session manager, plugin
pipeline, event buffer and transport, and exposes the public tracking API.

Quick Start:
    from trackpoint import Engine, EngineConfig

    engine = Engine(EngineConfig(api_key="key", collect_url="https://example.com/collect"))
    engine.identify("user-42")
    engine.track("signup_completed", {"plan": "pro"})

Everything runs on one thread. Inside a running asyncio loop deliveries are
awaited in a background task and a flush timer is armed; without a loop the
engine delivers synchronously when a flush is due.
"""

from __future__ import annotations

import asyncio
import atexit
import dataclasses
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from . import config as config_module
from .buffer import EventBuffer
from .clock import Clock, Scheduler, TimerHandle
from .config import EngineConfig, apply_log_level, load_config
from .consent import ConsentGate
from .context import EnvironmentProbe, build_context
from .errors import UninitializedError, report_delivery_failure, report_internal_error
from .models import Event
from .plugins import FlushResult, PluginPipeline
from .session import ACTIVITY_SIGNALS, BoundaryEvent, SessionManager
from .storage import JsonFileStorage, KeyValueStore, Scope, StorageBackend
from .transport import DeliveryOutcome, HttpTransport, Transport

logger = logging.getLogger(__name__)

DISTINCT_ID_KEY = "distinct_id"
SUPER_PROPS_KEY = "super_props"
USER_PROPS_KEY = "user_props"

PAGE_VIEW = "page_view"
CLICK_TEXT_LIMIT = 200


class Engine:
    """Client-side event capture and delivery engine.

    Args:
        config: Resolved configuration. Loaded from defaults, config file and
            environment when omitted.
        local_storage: Durable storage backend. Defaults to a JSON file under
            ``~/.config/trackpoint`` when persistence is enabled.
        session_storage: Process-scoped storage backend. Defaults to an
            in-process map.
        transport: Delivery transport. Defaults to ``HttpTransport``.
        clock: Time source.
        scheduler: Timer source for the periodic flush.
        probe: Environment snapshot for context properties and location hints.
        plugins: Plugins registered before any event is synthesized.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        *,
        local_storage: Optional[StorageBackend] = None,
        session_storage: Optional[StorageBackend] = None,
        transport: Optional[Transport] = None,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        probe: Optional[EnvironmentProbe] = None,
        plugins: Optional[Iterable[Any]] = None,
    ) -> None:
        self.config = config if config is not None else load_config()
        apply_log_level(self.config.effective_log_level)

        self._clock = clock or Clock()
        self._scheduler = scheduler or Scheduler()
        self._transport: Transport = transport or HttpTransport()
        self._probe = probe or EnvironmentProbe.from_process()

        if self.config.enable_persistence:
            if local_storage is None:
                local_storage = JsonFileStorage(config_module.STATE_FILE)
        else:
            local_storage = session_storage = None
        self._store = KeyValueStore(
            local=local_storage,
            session=session_storage,
            prefix=self.config.storage_prefix,
        )

        self._consent = ConsentGate(self._store)
        self._distinct_id = self._store.get(Scope.LOCAL, DISTINCT_ID_KEY)
        self._super_props = self._load_props(SUPER_PROPS_KEY)
        self._user_props = self._load_props(USER_PROPS_KEY)

        self._pipeline = PluginPipeline()
        for plugin in plugins or ():
            self._pipeline.register(plugin)

        self._buffer = EventBuffer(self.config.max_batch_size)
        self._flush_timer: Optional[TimerHandle] = None
        self._in_flight: Optional[asyncio.Task] = None
        self._delivering = False
        self._flush_requested = False
        self._hidden = False

        self._session = SessionManager(
            self._store, self._clock, lambda: self.config.session_timeout_ms
        )
        boundaries = self._session.start()
        if not boundaries and not self.opted_out:
            # A restored session may already have timed out
            boundaries = self._session.touch()

        self.set_super_properties(build_context(self._probe))
        self._enqueue_boundaries(boundaries)

        if self.config.auto_pageview:
            self._track_page_view()

    # Introspection

    @property
    def opted_out(self) -> bool:
        """Whether tracking is currently a no-op."""
        return self._consent.opted_out or not self.config.enabled

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def distinct_id(self) -> Optional[str]:
        return self._distinct_id

    @property
    def super_properties(self) -> Dict[str, Any]:
        return dict(self._super_props)

    @property
    def user_properties(self) -> Dict[str, Any]:
        return dict(self._user_props)

    @property
    def pending(self) -> List[Event]:
        """Events buffered and not yet handed to the transport."""
        return list(self._buffer)

    @property
    def store(self) -> KeyValueStore:
        return self._store

    # Public API

    def init(self, partial: Optional[Mapping[str, Any]] = None, **changes: Any) -> None:
        """Merge configuration changes into the running engine.

        Raises:
            TypeError: On unknown configuration keys.
            ValueError: If the merged configuration is invalid.
        """
        merged = dict(partial or {})
        merged.update(changes)
        self.config.update(**merged)

        apply_log_level(self.config.effective_log_level)
        self._buffer.max_batch_size = self.config.max_batch_size
        if "flush_interval_ms" in merged or "collect_url" in merged:
            self._cancel_flush_timer()
            self._ensure_flush_timer()
        logger.debug("Configuration updated: %s", sorted(merged))

        if len(self._buffer) >= self.config.max_batch_size:
            self.flush()

    def track(self, name: str, properties: Optional[Mapping[str, Any]] = None) -> None:
        """Queue an event.

        A no-op when opted out. Never raises.
        """
        if self.opted_out:
            return
        try:
            self._enqueue_boundaries(self._session.touch())
            self._enqueue(self._assemble(name, properties or {}))
        except Exception as e:
            report_internal_error(f"track({name!r}) failed", e)

    def identify(self, distinct_id: str) -> None:
        self._distinct_id = distinct_id
        self._store.set(Scope.LOCAL, DISTINCT_ID_KEY, distinct_id)

    def set_super_properties(self, props: Mapping[str, Any]) -> None:
        """Merge ``props`` into the properties added to every event."""
        self._super_props.update(props)
        self._store.set_json(Scope.LOCAL, SUPER_PROPS_KEY, self._super_props)

    def set_user_properties(self, props: Mapping[str, Any]) -> None:
        """Merge ``props`` into the user snapshot sent with every batch."""
        self._user_props.update(props)
        self._store.set_json(Scope.LOCAL, USER_PROPS_KEY, self._user_props)

    def reset(self) -> None:
        """Forget identity and properties; consent and session are kept."""
        self._distinct_id = None
        self._super_props = {}
        self._user_props = {}
        for key in (DISTINCT_ID_KEY, SUPER_PROPS_KEY, USER_PROPS_KEY):
            self._store.remove(Scope.LOCAL, key)

    def opt_out(self) -> None:
        self._consent.opt_out()

    def opt_in(self) -> None:
        self._consent.opt_in()

    def register_plugin(self, plugin: Any) -> None:
        self._pipeline.register(plugin)

    def flush(self) -> Optional[asyncio.Task]:
        """Send the next batch.

        Returns:
            The delivery task when running inside an event loop, otherwise
            None (the batch was delivered synchronously, or there was
            nothing to send). Never raises.
        """
        try:
            return self._flush()
        except Exception as e:
            report_internal_error("flush failed", e)
            return None

    async def idle(self) -> None:
        """Wait until no delivery is in flight."""
        while self._in_flight is not None:
            await self._in_flight

    # Instrumentation entry points

    def record_activity(self, kind: str = "activity") -> None:
        """Signal user activity (click, keypress, scroll, ...).

        Runs the session rotation check without queueing an event of its own.
        """
        if self.opted_out:
            return
        if kind not in ACTIVITY_SIGNALS:
            logger.debug("Unrecognized activity signal %r", kind)
        try:
            self._enqueue_boundaries(self._session.touch())
        except Exception as e:
            report_internal_error(f"record_activity({kind!r}) failed", e)

    def capture_click(
        self,
        name: Optional[str] = None,
        text: Optional[str] = None,
        href: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> None:
        """Track a click on an instrumented element."""
        if not self.config.capture_clicks:
            return
        props = {
            "text": (text or "").strip()[:CLICK_TEXT_LIMIT],
            "href": href,
            "tag": tag,
        }
        self.track(name or "click", {k: v for k, v in props.items() if v is not None})

    def on_navigation(self, url: str, title: Optional[str] = None) -> None:
        """Observe a route change; tracks a page view when enabled."""
        previous = self._probe.url
        self._probe = dataclasses.replace(
            self._probe, url=url, title=title, referrer=previous or self._probe.referrer
        )
        if self.config.auto_pageview:
            self._track_page_view()

    def on_visibility_change(self, hidden: bool) -> None:
        """Observe the host becoming hidden or visible again.

        Becoming hidden flushes the whole buffer via the beacon path.
        """
        self._hidden = hidden
        self.record_activity("visibilitychange")
        if hidden:
            self._cancel_flush_timer()
            self.flush()
        else:
            self._ensure_flush_timer()

    def on_unload(self) -> None:
        """Flush everything synchronously before the host goes away."""
        self._hidden = True
        self._cancel_flush_timer()
        try:
            self._flush_beacon()
        except Exception as e:
            report_internal_error("unload flush failed", e)

    def close(self) -> None:
        """Flush remaining events and release the transport."""
        self.on_unload()
        close = getattr(self._transport, "close", None)
        if close is not None:
            close()

    async def aclose(self) -> None:
        """Wait for in-flight delivery, flush remaining events, release the transport."""
        await self.idle()
        self.on_unload()
        aclose = getattr(self._transport, "aclose", None)
        if aclose is not None:
            await aclose()

    # Internals

    def _load_props(self, key: str) -> Dict[str, Any]:
        stored = self._store.get_json(Scope.LOCAL, key)
        return stored if isinstance(stored, dict) else {}

    def _assemble(
        self,
        name: str,
        properties: Mapping[str, Any],
        session_id: Optional[str] = None,
    ) -> Event:
        return Event(
            name=name,
            session_id=session_id or self._session.session_id,
            timestamp=self._clock.now_iso(),
            distinct_id=self._distinct_id,
            url=self._probe.location_hint(),
            properties={**self._super_props, **properties},
        )

    def _enqueue_boundaries(self, boundaries: List[BoundaryEvent]) -> None:
        if self.opted_out:
            return
        for boundary in boundaries:
            self._enqueue(
                self._assemble(boundary.name, boundary.properties, session_id=boundary.session_id)
            )

    def _enqueue(self, event: Event) -> None:
        accepted = self._pipeline.before_enqueue(event)
        if accepted is None:
            return
        logger.debug("Queued %r", accepted.name)
        if self._buffer.enqueue(accepted):
            self.flush()
        self._ensure_flush_timer()

    def _track_page_view(self) -> None:
        props = {"title": self._probe.title, "referrer": self._probe.referrer}
        self.track(PAGE_VIEW, {k: v for k, v in props.items() if v is not None})

    def _payload(self, batch: List[Event]) -> Dict[str, Any]:
        return {
            "apiKey": self.config.api_key,
            "events": [event.to_wire() for event in batch],
            "user": dict(self._user_props),
        }

    def _flush(self) -> Optional[asyncio.Task]:
        if self._hidden:
            self._flush_beacon()
            return None
        if self._delivering:
            self._flush_requested = True
            return self._in_flight

        url = self.config.collect_url
        if not url:
            logger.debug("No collect_url configured; keeping %d events", len(self._buffer))
            return None

        loop = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            pass

        if loop is not None:
            batch = self._start_batch()
            if not batch:
                return None
            self._in_flight = loop.create_task(self._deliver(batch, url, self._payload(batch)))
            return self._in_flight

        # Without a loop, drain iteratively until nothing more is due
        while True:
            batch = self._start_batch()
            if not batch:
                return None
            try:
                outcome = self._transport.send_blocking(url, self._payload(batch))
            except Exception as e:
                outcome = DeliveryOutcome(ok=False, error=e)
            if not self._finish(batch, outcome):
                return None

    def _start_batch(self) -> List[Event]:
        batch = self._buffer.cut_batch()
        if batch:
            self._cancel_flush_timer()
            self._delivering = True
        return batch

    async def _deliver(self, batch: List[Event], url: str, payload: Dict[str, Any]) -> None:
        try:
            outcome = await self._transport.send(url, payload)
        except asyncio.CancelledError:
            self._buffer.requeue_front(batch)
            self._delivering = False
            self._flush_requested = False
            self._in_flight = None
            self._ensure_flush_timer()
            raise
        except Exception as e:
            outcome = DeliveryOutcome(ok=False, error=e)
        self._in_flight = None
        if self._finish(batch, outcome):
            self.flush()

    def _finish(self, batch: List[Event], outcome: DeliveryOutcome) -> bool:
        """Settle a resolved delivery attempt.

        Returns:
            True if another flush is due right away. Otherwise the flush
            timer has been re-armed as needed.
        """
        self._delivering = False
        if outcome.ok:
            logger.info("Flushed %d events (status %s)", len(batch), outcome.status)
        else:
            self._buffer.requeue_front(batch)
            report_delivery_failure(outcome.error, len(batch))

        self._pipeline.after_flush(
            FlushResult(
                ok=outcome.ok,
                count=len(batch),
                status=outcome.status,
                beacon=outcome.beacon,
            )
        )

        requested, self._flush_requested = self._flush_requested, False
        if outcome.ok and (requested or len(self._buffer) >= self.config.max_batch_size):
            return True
        self._ensure_flush_timer()
        return False

    def _flush_beacon(self) -> None:
        url = self.config.collect_url
        if not url:
            return
        while True:
            batch = self._buffer.cut_batch()
            if not batch:
                return
            outcome = self._transport.send_beacon(url, self._payload(batch))
            if outcome.ok:
                logger.info("Flushed %d events via beacon", len(batch))
            else:
                self._buffer.requeue_front(batch)
                report_delivery_failure(outcome.error, len(batch))
            self._pipeline.after_flush(
                FlushResult(ok=outcome.ok, count=len(batch), status=outcome.status, beacon=True)
            )
            if not outcome.ok:
                return

    def _ensure_flush_timer(self) -> None:
        if (
            self._flush_timer is not None
            or self._delivering
            or self._hidden
            or not self.config.collect_url
            or not len(self._buffer)
        ):
            return
        self._flush_timer = self._scheduler.call_later(
            self.config.flush_interval_ms, self._on_flush_timer
        )

    def _cancel_flush_timer(self) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

    def _on_flush_timer(self) -> None:
        self._flush_timer = None
        self.flush()


# Convenience boundary accessor; the engine itself never reads it
_default_engine: Optional[Engine] = None


def init_engine(config: Optional[EngineConfig] = None, **overrides: Any) -> Engine:
    """Create the process-wide convenience engine, or reconfigure it.

    The first call builds the engine (from ``config`` or ``load_config``
    plus ``overrides``) and registers an exit hook that flushes remaining
    events. Later calls merge ``overrides`` into the existing engine.

    Args:
        config: Explicit configuration for the first call.
        **overrides: Configuration fields; ``transport``, ``probe``,
            ``plugins``, ``local_storage`` and ``session_storage`` are passed
            to the ``Engine`` constructor on the first call.

    Returns:
        The convenience engine.
    """
    global _default_engine

    engine_kwargs = {
        key: overrides.pop(key)
        for key in ("transport", "probe", "plugins", "local_storage", "session_storage")
        if key in overrides
    }

    if _default_engine is not None:
        if overrides:
            _default_engine.init(**overrides)
        return _default_engine

    if config is None:
        config = load_config(**overrides)
    elif overrides:
        config.update(**overrides)

    _default_engine = Engine(config, **engine_kwargs)
    atexit.register(_default_engine.on_unload)
    return _default_engine


def get_engine() -> Optional[Engine]:
    """The convenience engine, or None before ``init_engine()``."""
    return _default_engine


def require_engine() -> Engine:
    """The convenience engine.

    Raises:
        UninitializedError: If ``init_engine()`` has not been called.
    """
    if _default_engine is None:
        raise UninitializedError()
    return _default_engine


def reset_engine() -> None:
    """Drop the convenience engine (useful for testing)."""
    global _default_engine
    if _default_engine is not None:
        atexit.unregister(_default_engine.on_unload)
    _default_engine = None
