"""Configuration management for trackpoint.

This module handles configuration from environment variables, config files,
and package defaults following the priority order:
1. Explicit keyword overrides (highest priority)
2. Environment variables
3. Configuration file (~/.config/trackpoint/config.json)
4. Package defaults (lowest priority)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# Default configuration values
DEFAULTS = {
    "api_key": None,
    "collect_url": None,  # Must be provided via env, config or init()
    "flush_interval_ms": 3000,
    "max_batch_size": 20,
    "auto_pageview": True,
    "capture_clicks": True,
    "enable_persistence": True,
    "log_level": "warn",
    "debug": False,
    "session_timeout_ms": 30 * 60 * 1000,
    "enabled": True,
    "storage_prefix": "__trackpoint_",
}

# Config file location
CONFIG_DIR = Path.home() / ".config" / "trackpoint"
CONFIG_FILE = CONFIG_DIR / "config.json"
STATE_FILE = CONFIG_DIR / "state.json"

# Log level names mapped onto the stdlib logging levels
LOG_LEVELS: Dict[str, int] = {
    "silent": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

_INT_KEYS = ("flush_interval_ms", "max_batch_size", "session_timeout_ms")
_BOOL_KEYS = ("auto_pageview", "capture_clicks", "enable_persistence", "debug", "enabled")


@dataclass
class EngineConfig:
    """Resolved configuration for a tracking engine."""

    api_key: Optional[str] = None
    collect_url: Optional[str] = None
    flush_interval_ms: int = 3000
    max_batch_size: int = 20
    auto_pageview: bool = True
    capture_clicks: bool = True
    enable_persistence: bool = True
    log_level: str = "warn"
    debug: bool = False
    session_timeout_ms: int = 30 * 60 * 1000
    enabled: bool = True
    storage_prefix: str = "__trackpoint_"

    def __post_init__(self) -> None:
        """Validate configuration values."""
        self._validate()

    def _validate(self) -> None:
        if self.flush_interval_ms <= 0:
            raise ValueError(f"flush_interval_ms must be positive, got {self.flush_interval_ms}")
        if self.max_batch_size < 1:
            raise ValueError(f"max_batch_size must be at least 1, got {self.max_batch_size}")
        if self.session_timeout_ms <= 0:
            raise ValueError(
                f"session_timeout_ms must be positive, got {self.session_timeout_ms}"
            )
        if self.log_level not in LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {sorted(LOG_LEVELS)}, got {self.log_level!r}"
            )

    @property
    def effective_log_level(self) -> str:
        """The log level actually applied; ``debug=True`` wins."""
        return "debug" if self.debug else self.log_level

    def update(self, **changes: Any) -> None:
        """Merge ``changes`` into this configuration in place.

        Raises:
            TypeError: If a key is not a configuration field.
            ValueError: If the merged configuration is invalid. The previous
                values are restored in that case.
        """
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown configuration keys: {sorted(unknown)}")

        previous = {key: getattr(self, key) for key in changes}
        for key, value in changes.items():
            setattr(self, key, value)
        try:
            self._validate()
        except ValueError:
            for key, value in previous.items():
                setattr(self, key, value)
            raise


def apply_log_level(level: str) -> None:
    """Set the level of the ``trackpoint`` logger from a level name."""
    logging.getLogger("trackpoint").setLevel(LOG_LEVELS.get(level, logging.WARNING))


def _parse_bool(value: str) -> bool:
    """Parse a boolean from a string value."""
    return value.lower() in ("true", "1", "yes", "on")


def _normalize_file_config(data: dict[str, Any]) -> dict[str, Any]:
    """Coerce file values the way environment values are parsed.

    Numbers written as strings are converted, boolean strings are parsed and
    log level names are lowercased. Values that cannot be used are dropped
    so the lower-priority value applies.
    """
    config: dict[str, Any] = {}
    for key, value in data.items():
        if key in _INT_KEYS:
            try:
                value = int(value)
            except (TypeError, ValueError):
                value = 0
            if value < 1:
                logger.warning("Ignoring invalid %s in %s: %r", key, CONFIG_FILE, data[key])
                continue
        elif key in _BOOL_KEYS and isinstance(value, str):
            value = _parse_bool(value)
        elif key == "log_level":
            if not isinstance(value, str) or value.lower() not in LOG_LEVELS:
                logger.warning("Ignoring invalid log_level in %s: %r", CONFIG_FILE, value)
                continue
            value = value.lower()
        config[key] = value
    return config


def _load_config_file() -> dict[str, Any]:
    """Load configuration from file if it exists."""
    if not CONFIG_FILE.exists():
        return {}

    try:
        with open(CONFIG_FILE) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return _normalize_file_config(data) if isinstance(data, dict) else {}


def _get_env_config() -> dict[str, Any]:
    """Get configuration from environment variables."""
    config: dict[str, Any] = {}

    # Universal opt-out (DO_NOT_TRACK standard)
    if os.getenv("DO_NOT_TRACK", "").lower() in ("1", "true"):
        config["enabled"] = False

    # Package-specific kill switch
    enabled_env = os.getenv("TRACKPOINT_ENABLED", "")
    if enabled_env:
        config["enabled"] = _parse_bool(enabled_env)

    api_key = os.getenv("TRACKPOINT_API_KEY")
    if api_key:
        config["api_key"] = api_key

    collect_url = os.getenv("TRACKPOINT_COLLECT_URL")
    if collect_url:
        config["collect_url"] = collect_url

    for env_name, key in (
        ("TRACKPOINT_FLUSH_INTERVAL_MS", "flush_interval_ms"),
        ("TRACKPOINT_MAX_BATCH_SIZE", "max_batch_size"),
        ("TRACKPOINT_SESSION_TIMEOUT_MS", "session_timeout_ms"),
    ):
        raw = os.getenv(env_name)
        if raw:
            try:
                config[key] = int(raw)
            except ValueError:
                pass

    log_level = os.getenv("TRACKPOINT_LOG_LEVEL")
    if log_level and log_level.lower() in LOG_LEVELS:
        config["log_level"] = log_level.lower()

    debug = os.getenv("TRACKPOINT_DEBUG")
    if debug:
        config["debug"] = _parse_bool(debug)

    return config


def load_config(**overrides: Any) -> EngineConfig:
    """Load engine configuration from all sources.

    Priority order (highest to lowest):
    1. Keyword overrides
    2. Environment variables
    3. Configuration file
    4. Package defaults

    Args:
        **overrides: Explicit configuration values, e.g. from ``init_engine``.

    Returns:
        EngineConfig: The merged configuration.
    """
    merged = dict(DEFAULTS)
    merged.update(_load_config_file())
    merged.update(_get_env_config())
    merged.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in fields(EngineConfig)}
    return EngineConfig(**{k: v for k, v in merged.items() if k in known})


def save_config(config: EngineConfig) -> None:
    """Save configuration to file.

    Args:
        config: The configuration to save.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    with open(CONFIG_FILE, "w") as f:
        json.dump(asdict(config), f, indent=2)
