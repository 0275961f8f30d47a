"""Opt-in/opt-out consent state."""

from __future__ import annotations

import logging

from .storage import KeyValueStore, Scope

logger = logging.getLogger(__name__)

CONSENT_KEY = "consent"


class ConsentGate:
    """Persisted opt-out switch guarding whether new events may be queued.

    Events already buffered or in flight are unaffected by opting out.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        stored = store.get_json(Scope.LOCAL, CONSENT_KEY)
        if isinstance(stored, dict) and isinstance(stored.get("optedOut"), bool):
            self._opted_out = stored["optedOut"]
        else:
            self._opted_out = False

    @property
    def opted_out(self) -> bool:
        return self._opted_out

    def opt_out(self) -> None:
        self._set(True)

    def opt_in(self) -> None:
        self._set(False)

    def _set(self, opted_out: bool) -> None:
        self._opted_out = opted_out
        self._store.set_json(Scope.LOCAL, CONSENT_KEY, {"optedOut": opted_out})
        logger.info("Tracking consent: %s", "opted out" if opted_out else "opted in")
