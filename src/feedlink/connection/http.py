"""HTTP connection.

Commands map directly onto REST calls (the command's method and path);
pushes arrive over a server-sent event stream:
- POST /feed/session/create, POST /feed/session/delete, POST /feed/message/create
- GET  /feed/message/history
- GET  /feed/events (text/event-stream of Event JSON)
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import MODE_HTTP, FeedClientConfig
from ..protocol.commands import Command
from ..protocol.events import Event
from .base import BaseConnection

logger = logging.getLogger(__name__)

EVENTS_PATH = "/feed/events"
HEALTH_PATH = "/health"


class HTTPConnection(BaseConnection):
    """Connection over HTTP REST + SSE."""

    def __init__(self, config: FeedClientConfig | None = None):
        super().__init__(config or FeedClientConfig(mode=MODE_HTTP))
        self._http_client: httpx.AsyncClient | None = None

    async def _do_connect(self) -> None:
        """Connect to HTTP server."""
        headers = {"X-Api-Key": self.config.api_key} if self.config.api_key else None
        client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout, read=None),
            headers=headers,
        )

        # Verify server is reachable
        try:
            response = await client.get(HEALTH_PATH)
            response.raise_for_status()
        except httpx.HTTPError as e:
            await client.aclose()
            raise ConnectionError(f"Server not reachable: {e}") from e

        self._http_client = client

    async def _do_disconnect(self) -> None:
        """Close HTTP connection."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _do_send(self, command: Command) -> None:
        """Send command as a REST call and route its response."""
        if not self._http_client:
            raise ConnectionError("HTTP client not connected")

        try:
            if command.method == "GET":
                response = await self._http_client.get(
                    command.path, params=self._query_params(command.params)
                )
            else:
                response = await self._http_client.request(
                    command.method, command.path, json=command.params
                )
            response.raise_for_status()
            event = Event.result(command.id, self._response_data(response))
        except httpx.HTTPStatusError as e:
            event = Event.error(command.id, self._error_text(e.response), code="http_error")
        except ValueError as e:
            event = Event.error(command.id, f"Invalid response body: {e}", code="bad_response")
        except httpx.TransportError as e:
            raise ConnectionError(f"HTTP request failed: {e}") from e

        await self._route_event(event)

    @staticmethod
    def _query_params(params: dict[str, Any]) -> dict[str, Any]:
        return {
            k: v if isinstance(v, str | int | float) else json.dumps(v)
            for k, v in params.items()
            if v is not None
        }

    @staticmethod
    def _response_data(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        data = response.json()
        if isinstance(data, list):
            return {"messages": data}
        return data if isinstance(data, dict) else {"value": data}

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return f"HTTP {response.status_code}: {response.text[:200]}"
        if isinstance(data, dict) and "error" in data:
            return str(data["error"])
        return f"HTTP {response.status_code}"

    async def _receive_events(self) -> AsyncIterator[Event]:
        """Read pushes from the server-sent event stream."""
        if not self._http_client:
            raise ConnectionError("HTTP client not connected")

        async with self._http_client.stream(
            "GET",
            EVENTS_PATH,
            headers={"Accept": "text/event-stream"},
        ) as response:
            response.raise_for_status()

            async for line in response.aiter_lines():
                if not line or not line.startswith("data: "):
                    continue

                data_str = line[6:]  # Strip "data: " prefix
                try:
                    yield Event.model_validate(json.loads(data_str))
                except (json.JSONDecodeError, ValidationError) as e:
                    logger.warning(f"Failed to parse SSE event: {e}")
