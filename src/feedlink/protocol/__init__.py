"""Feed command/event protocol.

Defines the request/response frames exchanged with the feed service,
independent of the connection carrying them.

Key concepts:
- Commands: client -> server requests with correlation IDs
- Events: server -> client responses (correlated) and feed pushes
- Correlation: every response links back to its originating command
"""

from .commands import Command, CommandType
from .events import Event, EventType

__all__ = [
    "Command",
    "CommandType",
    "Event",
    "EventType",
]
