"""Mock connection for testing.

No actual I/O; responses are canned per command path and pushes are injected
directly.

Usage:
    conn = MockConnection()
    conn.set_response("/feed/session/create", Event.result(None, {"feedKey": "fk_1", ...}))
    await conn.connect()

    feed = Feed(42)
    await feed.open(conn, registry)

    assert conn.recorded_commands[0].path == "/feed/session/create"
    await conn.push("fk_1", {"s": "hello"})
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

from ..config import MODE_MOCK, FeedClientConfig
from ..protocol.commands import Command
from ..protocol.events import Event
from .base import BaseConnection

MockResponse = Event | Callable[[Command], Event]


class MockConnection(BaseConnection):
    """In-memory connection recording commands and replaying canned responses."""

    def __init__(self, config: FeedClientConfig | None = None) -> None:
        super().__init__(config or FeedClientConfig(mode=MODE_MOCK, timeout=1.0))
        self._responses: dict[str, MockResponse] = {}
        self._recorded_commands: list[Command] = []
        self._mock_events: asyncio.Queue[Event] = asyncio.Queue()
        self._held: set[str] = set()
        self.close_count = 0

    @property
    def recorded_commands(self) -> list[Command]:
        """Get all commands sent through this connection."""
        return self._recorded_commands.copy()

    def commands_for(self, path: str) -> list[Command]:
        """Recorded commands sent to one path."""
        return [c for c in self._recorded_commands if c.path == path]

    def set_response(self, path: str, response: MockResponse) -> None:
        """Set canned response for a command path.

        Args:
            path: Command path (e.g., "/feed/session/create")
            response: Event to answer with, or a callable building one from the command
        """
        self._responses[path] = response

    def set_error(self, path: str, error: str) -> None:
        """Answer every command to `path` with an error event."""
        self._responses[path] = Event.error(None, error, code="mock_error")

    def hold(self, path: str) -> None:
        """Leave commands to `path` unanswered until `respond` is called."""
        self._held.add(path)

    async def respond(self, command: Command, event: Event | None = None) -> None:
        """Answer a held command, with its canned response by default."""
        self._held.discard(command.path)
        await self._route_event(self._build_response(command, event))

    async def push(self, feed_key: str, message: Any) -> None:
        """Deliver a feed push straight to the push handler."""
        await self._deliver_push(feed_key, message)

    def inject_event(self, event: Event) -> None:
        """Queue an event for the background reader."""
        self._mock_events.put_nowait(event)

    def clear(self) -> None:
        """Clear recorded commands and responses."""
        self._recorded_commands.clear()
        self._responses.clear()
        self._held.clear()

    def _build_response(self, command: Command, event: Event | None = None) -> Event:
        response = event or self._responses.get(command.path) or Event.result(None, {"mock": True})
        if not isinstance(response, Event):
            response = response(command)
        return response.model_copy(update={"correlation_id": command.id})

    async def _do_connect(self) -> None:
        """No-op for mock."""
        pass

    async def _do_disconnect(self) -> None:
        """Count closes so tests can check release happens once."""
        self.close_count += 1

    async def _do_send(self, command: Command) -> None:
        """Record command and answer with its canned response."""
        self._recorded_commands.append(command)
        if command.path in self._held:
            return
        await self._route_event(self._build_response(command))

    async def _receive_events(self) -> AsyncIterator[Event]:
        """Yield injected events."""
        while True:
            yield await self._mock_events.get()
