"""Command definitions for the feed protocol.

Commands are requests from the client that expect exactly one response.
Each command carries a unique ID used as the correlation token; the server
answers with a result or error Event whose `correlation_id` is that ID.
"""

from __future__ import annotations

import inspect
import logging
import uuid
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, PrivateAttr

if TYPE_CHECKING:
    from ..connection.base import Connection

logger = logging.getLogger(__name__)


class CommandType(str, Enum):
    """Server command surface, by path."""

    SESSION_CREATE = "/feed/session/create"
    SESSION_DELETE = "/feed/session/delete"
    MESSAGE_HISTORY = "/feed/message/history"
    MESSAGE_CREATE = "/feed/message/create"


COMMAND_METHODS: dict[CommandType, str] = {
    CommandType.SESSION_CREATE: "POST",
    CommandType.SESSION_DELETE: "POST",
    CommandType.MESSAGE_HISTORY: "GET",
    CommandType.MESSAGE_CREATE: "POST",
}


ResponseCallback = Callable[[Any], Any]
ErrorCallback = Callable[[str], Any]


class Command(BaseModel):
    """A request from client to server.

    Example:
        {
            "id": "cmd_abc123",
            "method": "POST",
            "path": "/feed/session/create",
            "params": {"feed": {"procId": 42}}
        }

    Completion is reported through `on_response(data)` or `on_error(error)`.
    Exactly one of them fires, exactly once, per `send`.
    """

    id: str = Field(default_factory=lambda: f"cmd_{uuid.uuid4().hex[:12]}")
    method: str = "POST"
    path: str
    params: dict[str, Any] = Field(default_factory=dict)

    on_response: ResponseCallback | None = Field(default=None, exclude=True)
    on_error: ErrorCallback | None = Field(default=None, exclude=True)

    _completed: bool = PrivateAttr(default=False)

    def add_param(self, params: dict[str, Any]) -> None:
        """Merge extra parameters into the command."""
        self.params.update(params)

    def get_param(self, key: str, default: Any = None) -> Any:
        """Get a parameter with optional default."""
        return self.params.get(key, default)

    def to_wire(self) -> dict[str, Any]:
        """Serialize for transmission."""
        return self.model_dump(mode="json")

    @property
    def completed(self) -> bool:
        """True once a completion callback has fired."""
        return self._completed

    async def send(self, connection: Connection) -> None:
        """Send over a connection and wait for the correlated response.

        Never raises for transport or server failures; those are routed to
        `on_error`.
        """
        try:
            event = await connection.send(self)
        except (ConnectionError, TimeoutError) as e:
            await self._complete(self.on_error, str(e) or e.__class__.__name__)
            return
        except Exception as e:
            logger.exception(f"Unexpected failure sending command {self.id}")
            await self._complete(self.on_error, f"{e.__class__.__name__}: {e}")
            return

        if event.is_error():
            await self._complete(self.on_error, event.error_message())
        else:
            await self._complete(self.on_response, event.data)

    async def _complete(self, callback: Callable[[Any], Any] | None, arg: Any) -> None:
        if self._completed:
            logger.warning(f"Command {self.id} already completed, ignoring late response")
            return
        self._completed = True
        if callback is None:
            return
        result = callback(arg)
        if inspect.isawaitable(result):
            await result

    @classmethod
    def create(
        cls,
        command_type: CommandType | str,
        params: dict[str, Any] | None = None,
        command_id: str | None = None,
    ) -> Command:
        """Factory method for creating commands."""
        if isinstance(command_type, CommandType):
            method, path = COMMAND_METHODS[command_type], command_type.value
        else:
            method, path = "POST", command_type
        return cls(
            id=command_id or f"cmd_{uuid.uuid4().hex[:12]}",
            method=method,
            path=path,
            params=params or {},
        )

    # Convenience factories for the feed commands
    @classmethod
    def session_create(
        cls,
        feed_settings: dict[str, Any],
        write_key: str | None = None,
    ) -> Command:
        """Create a feed session create command."""
        cmd = cls.create(CommandType.SESSION_CREATE, {"feed": feed_settings})
        if write_key is not None:
            cmd.add_param({"writeKey": write_key})
        return cmd

    @classmethod
    def session_delete(cls, feed_key: str | None) -> Command:
        """Create a feed session delete command."""
        return cls.create(CommandType.SESSION_DELETE, {"fklist": feed_key})

    @classmethod
    def message_history(cls, feed_key: str | None, limit: int, since_ts: int) -> Command:
        """Create a history command bounded by `limit` and an epoch-ms upper bound."""
        return cls.create(
            CommandType.MESSAGE_HISTORY,
            {"feedKey": feed_key, "limit": limit, "sinceTS": since_ts},
        )

    @classmethod
    def message_create(
        cls,
        feed_key: str | None,
        message: Any,
        write_key: str | None = None,
    ) -> Command:
        """Create a command publishing one message on an open feed."""
        cmd = cls.create(CommandType.MESSAGE_CREATE, {"feedKey": feed_key, "msg": message})
        if write_key is not None:
            cmd.add_param({"writeKey": write_key})
        return cmd
