"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio

from feedlink.connection.mock import MockConnection
from feedlink.protocol.commands import Command, CommandType
from feedlink.protocol.events import Event

CONTRACT = [
    {"fieldName": "s", "fieldType": "S", "required": True},
    {"fieldName": "d", "fieldType": "D"},
    {"fieldName": "n", "fieldType": "N", "min": 0, "max": 1000},
]


def feed_settings_response(
    feed_key: str | None = "fk_1",
    feed_type: str = "IN",
    contract: list[dict[str, Any]] | None = None,
    **extra: Any,
):
    """Build a create-session responder echoing the requested settings.

    With feed_key=None each processor gets its own key, fk_<procId>.
    """

    def respond(command: Command) -> Event:
        settings = dict(command.get_param("feed", {}))
        settings.update(
            {
                "feedKey": feed_key or f"fk_{settings.get('procId')}",
                "feedType": feed_type,
                "state": "open",
                "msgContract": CONTRACT if contract is None else contract,
            }
        )
        settings.update(extra)
        return Event.result(None, settings)

    return respond


class Recorder:
    """Listener recording every event it handles, in order."""

    def __init__(self, name: str = "recorder", log: list[tuple[str, str, Any]] | None = None):
        self.name = name
        self.log = log if log is not None else []

    def _record(self, kind: str, *args: Any) -> None:
        self.log.append((self.name, kind, args[0] if len(args) == 1 else args))

    def on_open(self, feed: Any) -> None:
        self._record("open", feed)

    def on_close(self, feed: Any) -> None:
        self._record("close", feed)

    def on_msg_received(self, message: Any) -> None:
        self._record("msg_received", message)

    def on_msg_sent(self, message: Any) -> None:
        self._record("msg_sent", message)

    def on_history(self, feed: Any, messages: list[Any]) -> None:
        self._record("history", feed, messages)

    def on_error(self, error: str) -> None:
        self._record("error", error)

    def events(self, kind: str) -> list[Any]:
        return [payload for name, k, payload in self.log if k == kind and name == self.name]


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def make_recorder() -> type[Recorder]:
    """Recorder class, for tests needing several listeners sharing one log."""
    return Recorder


@pytest.fixture
def settings_response():
    """Factory for create-session responders."""
    return feed_settings_response


@pytest_asyncio.fixture
async def connection() -> AsyncIterator[MockConnection]:
    """Connected mock connection answering create-session with fk_1."""
    conn = MockConnection()
    conn.set_response(CommandType.SESSION_CREATE.value, feed_settings_response())
    await conn.connect()
    yield conn
    await conn.close()
