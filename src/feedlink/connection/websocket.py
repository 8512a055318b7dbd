"""WebSocket connection.

Full-duplex connection to the feed service. Commands and responses share the
socket with feed pushes.

Wire format:
- Client -> server: Command JSON ({id, method, path, params})
- Server -> client: Event JSON ({id, type, correlation_id, data})
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from ..config import MODE_WEBSOCKET, FeedClientConfig
from ..protocol.commands import Command
from ..protocol.events import Event, EventType
from .base import BaseConnection

logger = logging.getLogger(__name__)

SOCKET_PATH = "/feed/socket"


class WebSocketConnection(BaseConnection):
    """Connection over a single WebSocket."""

    def __init__(self, config: FeedClientConfig | None = None):
        super().__init__(config or FeedClientConfig(mode=MODE_WEBSOCKET))
        self._ws: Any = None  # websockets ClientConnection

    @property
    def url(self) -> str:
        url = f"{self.config.ws_url.rstrip('/')}{SOCKET_PATH}"
        if self.config.api_key:
            url = f"{url}?apiKey={self.config.api_key}"
        return url

    async def _do_connect(self) -> None:
        """Open the socket and wait for the server's connected frame."""
        self._ws = await websockets.connect(
            self.url,
            ping_interval=30,
            ping_timeout=10,
        )

        data = await self._ws.recv()
        msg = json.loads(data)
        if msg.get("type") != EventType.CONNECTED.value:
            await self._ws.close()
            self._ws = None
            raise ConnectionError(f"Unexpected message: {msg}")

        logger.info(
            f"WebSocket connected, protocol: {msg.get('data', {}).get('protocol_version')}"
        )

    async def _do_disconnect(self) -> None:
        """Close WebSocket connection."""
        if self._ws:
            await self._ws.close()
            self._ws = None

    async def _do_send(self, command: Command) -> None:
        """Send command as one text frame."""
        if not self._ws:
            raise ConnectionError("WebSocket not connected")
        try:
            await self._ws.send(json.dumps(command.to_wire()))
        except ConnectionClosed as e:
            raise ConnectionError(f"WebSocket closed: {e}") from e

    async def _receive_events(self) -> AsyncIterator[Event]:
        """Receive events from the socket until it closes."""
        if not self._ws:
            raise ConnectionError("WebSocket not connected")

        try:
            async for data in self._ws:
                try:
                    yield Event.model_validate(json.loads(data))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning(f"Invalid WebSocket frame: {e}")
        except ConnectionClosed as e:
            logger.info(f"WebSocket closed by server: {e}")
