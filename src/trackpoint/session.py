"""Session identity and inactivity tracking.

A session starts when the engine is built and rotates whenever an activity
probe finds that more than the inactivity timeout has elapsed since the last
recorded activity. Rotation yields a ``session_end`` boundary for the old
session followed by a ``session_start`` for the new one. The last activity
instant is persisted on every update so that a reload mid-session keeps the
session until the timeout really elapses.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .clock import Clock
from .storage import KeyValueStore, Scope

logger = logging.getLogger(__name__)

SESSION_KEY = "session"
LAST_ACTIVITY_KEY = "last_activity"

SESSION_START = "session_start"
SESSION_END = "session_end"

# Activity signals that pass through the rotation check
ACTIVITY_SIGNALS = frozenset(
    {"click", "keypress", "scroll", "pointermove", "touchstart", "visibilitychange"}
)


@dataclass
class SessionState:
    """The active session."""

    session_id: str
    last_activity_at: float


@dataclass(frozen=True)
class BoundaryEvent:
    """A session boundary to be turned into an event by the engine."""

    name: str
    session_id: str
    properties: Dict[str, Any] = field(default_factory=dict)


def new_session_id() -> str:
    return uuid.uuid4().hex


class SessionManager:
    """Owns the session state of one engine.

    Args:
        store: Where the session id (session scope) and last activity
            instant (local scope) are persisted.
        clock: Time source.
        timeout_ms: Inactivity timeout in milliseconds, or a callable
            returning it so that reconfiguration applies to later checks.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock,
        timeout_ms: Union[float, Callable[[], float]],
    ) -> None:
        self._store = store
        self._clock = clock
        self._timeout_ms = timeout_ms
        self._state: Optional[SessionState] = None

    @property
    def timeout_ms(self) -> float:
        if callable(self._timeout_ms):
            return self._timeout_ms()
        return self._timeout_ms

    @property
    def state(self) -> SessionState:
        if self._state is None:
            raise RuntimeError("SessionManager.start() has not been called")
        return self._state

    @property
    def session_id(self) -> str:
        return self.state.session_id

    def start(self) -> List[BoundaryEvent]:
        """Restore the persisted session or mint a new one.

        A restored session keeps its persisted last activity instant, so the
        next ``touch()`` rotates it if it has already timed out.

        Returns:
            A ``session_start`` boundary if a session was minted.
        """
        now = self._clock.now_ms()
        existing = self._store.get(Scope.SESSION, SESSION_KEY)
        if existing:
            last_activity = self._load_last_activity()
            self._state = SessionState(
                session_id=existing,
                last_activity_at=last_activity if last_activity is not None else now,
            )
            logger.debug("Restored session %s", existing)
            return []

        self._state = SessionState(session_id=new_session_id(), last_activity_at=now)
        self._persist()
        logger.debug("Started session %s", self._state.session_id)
        return [BoundaryEvent(SESSION_START, self._state.session_id)]

    def touch(self) -> List[BoundaryEvent]:
        """Record activity now, rotating the session if it has timed out.

        Returns:
            ``[session_end, session_start]`` on rotation, else ``[]``.
        """
        state = self.state
        now = self._clock.now_ms()
        gap = now - state.last_activity_at
        boundaries: List[BoundaryEvent] = []

        if gap > self.timeout_ms:
            old_id = state.session_id
            state.session_id = new_session_id()
            boundaries.append(
                BoundaryEvent(
                    SESSION_END,
                    old_id,
                    {"inactivity_ms": gap, "reason": "inactivity"},
                )
            )
            boundaries.append(BoundaryEvent(SESSION_START, state.session_id))
            logger.info(
                "Session %s ended after %.0f ms of inactivity; started %s",
                old_id,
                gap,
                state.session_id,
            )

        state.last_activity_at = now
        self._persist()
        return boundaries

    def _load_last_activity(self) -> Optional[float]:
        raw = self._store.get(Scope.LOCAL, LAST_ACTIVITY_KEY)
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            return None

    def _persist(self) -> None:
        state = self.state
        self._store.set(Scope.SESSION, SESSION_KEY, state.session_id)
        self._store.set(Scope.LOCAL, LAST_ACTIVITY_KEY, str(int(state.last_activity_at)))
