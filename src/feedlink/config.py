"""Client configuration.

Values come from constructor arguments or from FEEDLINK_* environment
variables via `FeedClientConfig.from_env()`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

MODE_WEBSOCKET = "websocket"
MODE_HTTP = "http"
MODE_MOCK = "mock"

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


@dataclass
class FeedClientConfig:
    """Configuration for a feed context and its connection."""

    # Connection mode
    mode: str = MODE_WEBSOCKET  # "websocket" | "http" | "mock"

    base_url: str = "http://localhost:8080"
    api_key: str | None = None
    timeout: float = 30.0  # seconds to wait for a command response

    # Client-side message contract validation on send
    field_validation: bool = True

    history_limit: int = 10

    @classmethod
    def from_env(cls) -> FeedClientConfig:
        """Build a config from FEEDLINK_* environment variables."""
        defaults = cls()
        return cls(
            mode=os.environ.get("FEEDLINK_MODE", defaults.mode).lower(),
            base_url=os.environ.get("FEEDLINK_URL", defaults.base_url),
            api_key=os.environ.get("FEEDLINK_API_KEY") or None,
            timeout=float(os.environ.get("FEEDLINK_TIMEOUT", defaults.timeout)),
            field_validation=_env_flag("FEEDLINK_VALIDATION", defaults.field_validation),
            history_limit=int(os.environ.get("FEEDLINK_HISTORY_LIMIT", defaults.history_limit)),
        )

    @property
    def ws_url(self) -> str:
        """Base URL with the scheme switched to ws/wss."""
        return self.base_url.replace("http://", "ws://").replace("https://", "wss://")
