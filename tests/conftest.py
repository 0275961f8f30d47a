"""Pytest configuration and fixtures for trackpoint tests."""

import asyncio
import os
from unittest.mock import patch

import pytest

from trackpoint.clock import Clock
from trackpoint.config import EngineConfig
from trackpoint.context import EnvironmentProbe
from trackpoint.engine import Engine, reset_engine
from trackpoint.plugins import FlushResult, Plugin
from trackpoint.storage import MemoryStorage
from trackpoint.transport import DeliveryOutcome

COLLECT_URL = "https://collector.example.com/collect"
PREFIX = "__trackpoint_"
START_MS = 1_700_000_000_000


class FakeClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, now_ms: float = START_MS) -> None:
        self.now = now_ms

    def now_ms(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class _Handle:
    def __init__(self, scheduler: "ManualScheduler", delay_ms: float, callback) -> None:
        self.scheduler = scheduler
        self.delay_ms = delay_ms
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose timers fire only when the test says so."""

    def __init__(self) -> None:
        self.handles = []

    def call_later(self, delay_ms, callback):
        handle = _Handle(self, delay_ms, callback)
        self.handles.append(handle)
        return handle

    @property
    def armed(self):
        return [h for h in self.handles if not h.cancelled]

    def fire(self) -> int:
        """Run every armed timer once; returns how many fired."""
        due = self.armed
        for handle in due:
            handle.cancelled = True
            handle.callback()
        return len(due)


class FakeTransport:
    """Transport recording payloads, with scriptable failures."""

    def __init__(self) -> None:
        self.sent = []
        self.beacons = []
        self.fail_next = 0
        self.status = 200
        self.gate = None  # asyncio.Event holding awaited sends while unset
        self.active = 0
        self.max_active = 0

    def _outcome(self, payload) -> DeliveryOutcome:
        if self.fail_next > 0:
            self.fail_next -= 1
            return DeliveryOutcome(ok=False, error=ConnectionError("network down"))
        self.sent.append(payload)
        return DeliveryOutcome(ok=True, status=self.status)

    async def send(self, url, payload):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            return self._outcome(payload)
        finally:
            self.active -= 1

    def send_blocking(self, url, payload):
        return self._outcome(payload)

    def send_beacon(self, url, payload):
        self.beacons.append(payload)
        return DeliveryOutcome(ok=True, beacon=True)

    @property
    def batches(self):
        return [[e["event"] for e in payload["events"]] for payload in self.sent]


class RecordingPlugin(Plugin):
    """Plugin remembering every flush result."""

    def __init__(self) -> None:
        self.results = []

    def after_flush(self, result: FlushResult) -> None:
        self.results.append(result)


@pytest.fixture(autouse=True)
def reset_default_engine():
    """Reset the convenience engine before and after each test."""
    reset_engine()
    yield
    reset_engine()


@pytest.fixture
def clean_env():
    """Provide a clean environment without trackpoint-related variables."""
    env_vars_to_clear = [
        "DO_NOT_TRACK",
        "TRACKPOINT_ENABLED",
        "TRACKPOINT_API_KEY",
        "TRACKPOINT_COLLECT_URL",
        "TRACKPOINT_FLUSH_INTERVAL_MS",
        "TRACKPOINT_MAX_BATCH_SIZE",
        "TRACKPOINT_SESSION_TIMEOUT_MS",
        "TRACKPOINT_LOG_LEVEL",
        "TRACKPOINT_DEBUG",
    ]
    env = {var: value for var, value in os.environ.items() if var not in env_vars_to_clear}
    with patch.dict(os.environ, env, clear=True):
        yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def local_storage():
    return MemoryStorage()


@pytest.fixture
def session_storage():
    """Session storage holding an existing session, so no session_start is queued."""
    storage = MemoryStorage()
    storage.set_item(PREFIX + "session", "existing-session")
    return storage


@pytest.fixture
def make_engine(clock, scheduler, transport, local_storage, session_storage):
    """Factory building engines on shared fakes.

    Engines default to no automatic page view and a restored session, so
    the buffer starts empty.
    """

    def factory(plugins=None, probe=None, timer_source=None, **overrides) -> Engine:
        options = {
            "api_key": "test-key",
            "collect_url": COLLECT_URL,
            "auto_pageview": False,
        }
        options.update(overrides)
        return Engine(
            EngineConfig(**options),
            local_storage=local_storage,
            session_storage=session_storage,
            transport=transport,
            clock=clock,
            scheduler=timer_source or scheduler,
            plugins=plugins,
            probe=probe or EnvironmentProbe(),
        )

    return factory


@pytest.fixture
def engine(make_engine):
    return make_engine()


async def settle(engine: Engine) -> None:
    """Let scheduled delivery tasks start, then wait for them to finish."""
    await asyncio.sleep(0)
    await engine.idle()
