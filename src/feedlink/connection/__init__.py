"""Connections to the feed service.

- WebSocketConnection: full-duplex socket (commands and pushes)
- HTTPConnection: REST commands with a server-sent event push stream
- MockConnection: in-memory, for tests
"""

from ..config import MODE_HTTP, MODE_MOCK, MODE_WEBSOCKET, FeedClientConfig
from .base import BaseConnection, Connection, ConnectionState
from .http import HTTPConnection
from .mock import MockConnection
from .websocket import WebSocketConnection

__all__ = [
    "BaseConnection",
    "Connection",
    "ConnectionState",
    "HTTPConnection",
    "MockConnection",
    "WebSocketConnection",
    "create_connection",
]

_CONNECTIONS: dict[str, type[BaseConnection]] = {
    MODE_WEBSOCKET: WebSocketConnection,
    MODE_HTTP: HTTPConnection,
    MODE_MOCK: MockConnection,
}


def create_connection(config: FeedClientConfig) -> BaseConnection:
    """Build the connection matching `config.mode`."""
    if config.mode not in _CONNECTIONS:
        raise ValueError(f"Unknown connection mode: {config.mode}")
    return _CONNECTIONS[config.mode](config)
