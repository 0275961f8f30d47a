"""Key-value persistence over two independent scopes.

The durable ``local`` scope survives process restarts (a JSON file by
default). The ``session`` scope lives as long as the process. Each scope is
probed once when the store is built; a scope whose backend fails the probe
is replaced by an in-process map for the rest of the store's lifetime.
Callers never see a storage error, only a possible loss of durability.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

logger = logging.getLogger(__name__)

_SENTINEL_KEY = "__trackpoint_probe"


class Scope(str, Enum):
    """Storage scopes."""

    LOCAL = "local"
    SESSION = "session"


class StorageBackend(Protocol):
    """Minimal string key-value backend."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """In-process backend."""

    def __init__(self) -> None:
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileStorage:
    """Backend persisting all items to a single JSON file.

    The file is re-read on every access so that several processes see each
    other's writes; an unreadable or malformed file reads as empty.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                data = json.load(f)
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, items: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(items, f, indent=2)

    def get_item(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        items = self._read()
        items[key] = value
        self._write(items)

    def remove_item(self, key: str) -> None:
        items = self._read()
        if key in items:
            del items[key]
            self._write(items)


def _probe(backend: StorageBackend) -> bool:
    """Check that a backend accepts a write followed by a delete."""
    try:
        backend.set_item(_SENTINEL_KEY, "1")
        backend.remove_item(_SENTINEL_KEY)
    except Exception as e:
        logger.debug("Storage backend %r unavailable: %s", backend, e)
        return False
    return True


class KeyValueStore:
    """Uniform get/set/remove over the local and session scopes.

    Args:
        local: Durable backend. Defaults to an in-process map.
        session: Process-scoped backend. Defaults to an in-process map.
        prefix: Namespace prepended to every key, so that several stores can
            share one backend.
    """

    def __init__(
        self,
        local: Optional[StorageBackend] = None,
        session: Optional[StorageBackend] = None,
        prefix: str = "",
    ) -> None:
        self.prefix = prefix
        self._backends: Dict[Scope, StorageBackend] = {}
        for scope, backend in ((Scope.LOCAL, local), (Scope.SESSION, session)):
            if backend is None or not _probe(backend):
                backend = MemoryStorage()
            self._backends[scope] = backend

    def backend(self, scope: Scope) -> StorageBackend:
        """The backend actually serving ``scope`` after probing."""
        return self._backends[scope]

    def is_durable(self, scope: Scope) -> bool:
        """Whether ``scope`` is served by something other than an in-process map."""
        return not isinstance(self._backends[scope], MemoryStorage)

    def get(self, scope: Scope, key: str) -> Optional[str]:
        try:
            return self._backends[scope].get_item(self.prefix + key)
        except Exception as e:
            logger.debug("Storage read of %s/%s failed: %s", scope.value, key, e)
            return None

    def set(self, scope: Scope, key: str, value: str) -> None:
        try:
            self._backends[scope].set_item(self.prefix + key, value)
        except Exception as e:
            logger.debug("Storage write of %s/%s failed: %s", scope.value, key, e)

    def remove(self, scope: Scope, key: str) -> None:
        try:
            self._backends[scope].remove_item(self.prefix + key)
        except Exception as e:
            logger.debug("Storage removal of %s/%s failed: %s", scope.value, key, e)

    def get_json(self, scope: Scope, key: str, default: Any = None) -> Any:
        """Read a JSON value; missing or malformed values yield ``default``."""
        raw = self.get(scope, key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.debug("Ignoring malformed JSON in %s/%s", scope.value, key)
            return default

    def set_json(self, scope: Scope, key: str, value: Any) -> None:
        try:
            raw = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.debug("Could not serialize %s/%s: %s", scope.value, key, e)
            return
        self.set(scope, key, raw)
