"""Event definitions for the feed protocol.

Events are frames sent by the server. They can be:
- Correlated: the single response to a command (has correlation_id)
- Pushes: feed messages addressed to a feed key (no correlation_id)
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types in the protocol."""

    # Response events (correlated to commands)
    RESULT = "result"
    ERROR = "error"

    # Server pushes (uncorrelated)
    FEED_MESSAGE = "feed.message"
    CONNECTED = "connected"


class Event(BaseModel):
    """A frame from server to client.

    Example (correlated response):
        {
            "id": "evt_xyz789",
            "type": "result",
            "correlation_id": "cmd_abc123",
            "data": {"feedKey": "fk_1", "procId": 42, "state": "open"}
        }

    Example (push):
        {
            "id": "evt_001",
            "type": "feed.message",
            "data": {"feedKey": "fk_1", "msg": {"s": "x", "d": 1343805046698}}
        }
    """

    id: str = Field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:12]}")
    type: str
    correlation_id: str | None = None  # Links to command.id
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def is_correlated(self) -> bool:
        """Check if this event is a response to a command."""
        return self.correlation_id is not None

    def is_error(self) -> bool:
        """Check if this is an error event."""
        return self.type == EventType.ERROR.value

    def is_push(self) -> bool:
        """Check if this is a feed message push."""
        return self.type == EventType.FEED_MESSAGE.value

    def error_message(self) -> str:
        """Error text carried by an error event."""
        return str(self.data.get("error", "Unknown error"))

    @property
    def feed_key(self) -> str | None:
        """Feed key a push is addressed to."""
        key = self.data.get("feedKey")
        return None if key is None else str(key)

    @classmethod
    def create(
        cls,
        event_type: str | EventType,
        data: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> Event:
        """Factory method for creating events."""
        return cls(
            type=event_type.value if isinstance(event_type, EventType) else event_type,
            data=data or {},
            correlation_id=correlation_id,
        )

    @classmethod
    def result(cls, correlation_id: str | None, data: dict[str, Any]) -> Event:
        """Create a successful result event."""
        return cls.create(EventType.RESULT, data=data, correlation_id=correlation_id)

    @classmethod
    def error(
        cls,
        correlation_id: str | None,
        error: str,
        code: str | None = None,
    ) -> Event:
        """Create an error event."""
        data: dict[str, Any] = {"error": error}
        if code:
            data["code"] = code
        return cls.create(EventType.ERROR, data=data, correlation_id=correlation_id)

    @classmethod
    def feed_message(cls, feed_key: str, message: Any) -> Event:
        """Create a push carrying one message for a feed key."""
        return cls.create(EventType.FEED_MESSAGE, data={"feedKey": feed_key, "msg": message})

    @classmethod
    def connected(cls, protocol_version: str = "1.0") -> Event:
        """Create a connected event (sent on transport connect)."""
        return cls.create(EventType.CONNECTED, data={"protocol_version": protocol_version})
