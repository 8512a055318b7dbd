"""Connection abstraction for the feed client.

A connection carries Commands to the feed service and Events back. It
correlates each response with the pending command that asked for it and
hands uncorrelated feed pushes to a push handler.

Architecture:
- Connection is the PROTOCOL every connection satisfies
- BaseConnection holds the state machine, correlation table and reader task
- Subclasses only implement the wire format

Pushes are delivered by their own task, in arrival order, so a push handler
may send commands (and wait for their responses) without stalling the reader.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from ..config import FeedClientConfig
from ..protocol.commands import Command
from ..protocol.events import Event

logger = logging.getLogger(__name__)

PushHandler = Callable[[str, Any], Awaitable[None] | None]
LostHandler = Callable[[], Awaitable[None] | None]


class ConnectionState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


@runtime_checkable
class Connection(Protocol):
    """Protocol for feed connections.

    All connections must implement:
    - send: submit a command and wait for its correlated response
    - close: release the underlying transport (idempotent)
    """

    @property
    def is_connected(self) -> bool:
        """Check if the connection is usable."""
        ...

    async def send(self, command: Command) -> Event:
        """Send a command and return the correlated response event.

        Raises:
            ConnectionError: If not connected
        """
        ...

    async def close(self) -> None:
        """Close the connection."""
        ...


class BaseConnection(ABC):
    """Base class for connections with common functionality.

    Provides:
    - State management
    - Response routing by correlation id
    - Push routing by feed key
    - Background reader and push delivery tasks
    """

    def __init__(self, config: FeedClientConfig):
        self.config = config
        self._state = ConnectionState.DISCONNECTED
        self._pending_commands: dict[str, asyncio.Future[Event]] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._push_task: asyncio.Task[None] | None = None
        self._push_queue: asyncio.Queue[tuple[str, Any] | None] = asyncio.Queue()
        self._lock = asyncio.Lock()
        self._push_handler: PushHandler | None = None
        self._lost_handler: LostHandler | None = None

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if the connection is usable."""
        return self._state == ConnectionState.CONNECTED

    def set_push_handler(self, handler: PushHandler | None) -> None:
        """Set the callback receiving (feed_key, message) for every push."""
        self._push_handler = handler

    def set_lost_handler(self, handler: LostHandler | None) -> None:
        """Set the callback fired when the reader stops without close()."""
        self._lost_handler = handler

    async def connect(self) -> None:
        """Establish connection."""
        async with self._lock:
            if self._state == ConnectionState.CONNECTED:
                return

            self._state = ConnectionState.CONNECTING
            try:
                await self._do_connect()
                self._state = ConnectionState.CONNECTED

                self._push_queue = asyncio.Queue()
                self._push_task = asyncio.create_task(self._push_loop())
                self._reader_task = asyncio.create_task(self._read_loop())

                logger.info(f"{self.__class__.__name__} connected")
            except Exception as e:
                self._state = ConnectionState.DISCONNECTED
                raise ConnectionError(f"Failed to connect: {e}") from e

    async def close(self) -> None:
        """Close the connection. Calling it again is a no-op."""
        async with self._lock:
            if self._state in (ConnectionState.DISCONNECTED, ConnectionState.CLOSED):
                return

            self._state = ConnectionState.CLOSED

            # close() may run inside the push task (a handler closing its feed)
            current = asyncio.current_task()
            if self._reader_task and self._reader_task is not current:
                self._reader_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._reader_task
            self._reader_task = None
            self._stop_push_task(current)

            self._fail_pending("Connection closed", code="connection_closed")

            await self._do_disconnect()
            self._state = ConnectionState.DISCONNECTED
            logger.info(f"{self.__class__.__name__} closed")

    async def send(self, command: Command) -> Event:
        """Send command and wait for the correlated response."""
        if not self.is_connected:
            raise ConnectionError("Connection not open")

        loop = asyncio.get_running_loop()
        response: asyncio.Future[Event] = loop.create_future()
        self._pending_commands[command.id] = response

        try:
            await self._do_send(command)
            try:
                return await asyncio.wait_for(response, timeout=self.config.timeout)
            except TimeoutError:
                return Event.error(command.id, "Command timed out", code="timeout")
        finally:
            self._pending_commands.pop(command.id, None)

    async def _route_event(self, event: Event) -> None:
        """Deliver one inbound event to its pending command or the push queue."""
        if event.correlation_id and event.correlation_id in self._pending_commands:
            future = self._pending_commands[event.correlation_id]
            if not future.done():
                future.set_result(event)
            return

        if event.is_push():
            feed_key = event.feed_key
            if feed_key is None:
                logger.debug(f"Dropping push without feed key: {event.id}")
                return
            self._push_queue.put_nowait((feed_key, event.data.get("msg")))
            return

        logger.debug(f"Ignoring uncorrelated event {event.type} ({event.id})")

    async def _deliver_push(self, feed_key: str, message: Any) -> None:
        if self._push_handler is None:
            logger.debug(f"No push handler, dropping message for feed {feed_key}")
            return
        result = self._push_handler(feed_key, message)
        if inspect.isawaitable(result):
            await result

    async def _push_loop(self) -> None:
        """Background task delivering pushes in arrival order."""
        while True:
            item = await self._push_queue.get()
            if item is None:
                return
            feed_key, message = item
            try:
                await self._deliver_push(feed_key, message)
            except Exception:
                logger.exception(f"Error delivering push for feed {feed_key}")

    def _stop_push_task(self, current: asyncio.Task[Any] | None) -> None:
        if self._push_task is None:
            return
        if self._push_task is current:
            self._push_queue.put_nowait(None)
        else:
            self._push_task.cancel()
        self._push_task = None

    def _fail_pending(self, error: str, code: str) -> None:
        for command_id, future in self._pending_commands.items():
            if not future.done():
                future.set_result(Event.error(command_id, error, code=code))

    async def _read_loop(self) -> None:
        """Background task reading events and routing them."""
        try:
            async for event in self._receive_events():
                await self._route_event(event)
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.error(f"Read loop error: {e}")

        # Reader ended without close(): the transport is gone
        if self._state == ConnectionState.CONNECTED:
            self._state = ConnectionState.DISCONNECTED
            self._reader_task = None
            self._stop_push_task(None)
            self._fail_pending("Connection lost", code="connection_lost")
            logger.warning(f"{self.__class__.__name__} lost its connection")
            if self._lost_handler is not None:
                result = self._lost_handler()
                if inspect.isawaitable(result):
                    await result

    # Abstract methods for subclasses
    @abstractmethod
    async def _do_connect(self) -> None:
        """Implementation-specific connection logic."""
        ...

    @abstractmethod
    async def _do_disconnect(self) -> None:
        """Implementation-specific disconnection logic."""
        ...

    @abstractmethod
    async def _do_send(self, command: Command) -> None:
        """Implementation-specific send logic."""
        ...

    @abstractmethod
    def _receive_events(self) -> AsyncIterator[Event]:
        """Implementation-specific receive logic. Must be an async generator."""
        ...

    async def __aenter__(self) -> BaseConnection:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
