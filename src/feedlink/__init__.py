"""feedlink - client for a hosted real-time publish/subscribe feed service."""

from .config import FeedClientConfig
from .connection import (
    BaseConnection,
    Connection,
    ConnectionState,
    HTTPConnection,
    MockConnection,
    WebSocketConnection,
    create_connection,
)
from .context import FeedContext
from .contract import MessageContractValidator, ValidationResult
from .dispatcher import DispatchEvent, DispatchKey, EventDispatcher, EventKind, FeedListener
from .feed import Feed
from .handler import FeedHandler
from .protocol import Command, CommandType, Event, EventType
from .registry import FeedRegistry
from .types import FeedSettings, FeedState, FeedType, FieldDescriptor, FieldType

__version__ = "0.1.0"

__all__ = [
    "BaseConnection",
    "Command",
    "CommandType",
    "Connection",
    "ConnectionState",
    "DispatchEvent",
    "DispatchKey",
    "Event",
    "EventDispatcher",
    "EventKind",
    "EventType",
    "Feed",
    "FeedClientConfig",
    "FeedContext",
    "FeedHandler",
    "FeedListener",
    "FeedRegistry",
    "FeedSettings",
    "FeedState",
    "FeedType",
    "FieldDescriptor",
    "FieldType",
    "HTTPConnection",
    "MessageContractValidator",
    "MockConnection",
    "ValidationResult",
    "WebSocketConnection",
    "create_connection",
]
