"""Event dispatcher - fans feed events out to listeners.

Listeners are registered under a dispatch key: either an object's identity
key (locally originated events) or a server feed key (events addressed to an
open feed session). Events are delivered to every listener under the event's
key, in registration order.

A listener is any object exposing handlers named for the events it cares
about (`on_open`, `on_close`, `on_msg_received`, `on_msg_sent`,
`on_history`, `on_error`). Listeners without the relevant handler are
skipped. Handlers may be plain functions or coroutines.

Usage:
    dispatcher = EventDispatcher()
    key = dispatcher.get_object_key(feed)
    dispatcher.register(key, FeedListener(on_open=lambda f: print("open", f)))
    await dispatcher.dispatch(DispatchEvent(EventKind.OPEN, key, (feed,)))
"""

from __future__ import annotations

import inspect
import logging
import uuid
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Feed event kinds. The handler for kind `x` is named `on_x`."""

    OPEN = "open"
    CLOSE = "close"
    MSG_RECEIVED = "msg_received"
    MSG_SENT = "msg_sent"
    HISTORY = "history"
    ERROR = "error"
    # Server push addressed to a feed key, handled by the feeds themselves
    FEED_MESSAGE = "feed_message"

    @property
    def handler_name(self) -> str:
        return f"on_{self.value}"


class KeyKind(str, Enum):
    """What a dispatch key identifies."""

    IDENTITY = "identity"
    FEED = "feed"


@dataclass(frozen=True)
class DispatchKey:
    """Lookup key for listener registrations."""

    kind: KeyKind
    value: str

    @classmethod
    def identity(cls, value: str) -> DispatchKey:
        return cls(KeyKind.IDENTITY, value)

    @classmethod
    def feed(cls, feed_key: str) -> DispatchKey:
        return cls(KeyKind.FEED, str(feed_key))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"


@dataclass(frozen=True)
class DispatchEvent:
    """One event addressed to the listeners of a dispatch key."""

    kind: EventKind
    target_key: DispatchKey
    args: tuple[Any, ...] = ()


# =============================================================================
# Listener capabilities
# =============================================================================


@runtime_checkable
class OpenHandler(Protocol):
    def on_open(self, feed: Any) -> Any: ...


@runtime_checkable
class CloseHandler(Protocol):
    def on_close(self, feed: Any) -> Any: ...


@runtime_checkable
class MessageHandler(Protocol):
    def on_msg_received(self, message: Any) -> Any: ...


@runtime_checkable
class MessageSentHandler(Protocol):
    def on_msg_sent(self, message: Any) -> Any: ...


@runtime_checkable
class HistoryHandler(Protocol):
    def on_history(self, feed: Any, messages: list[Any]) -> Any: ...


@runtime_checkable
class ErrorHandler(Protocol):
    def on_error(self, error: str) -> Any: ...


@dataclass(eq=False)
class FeedListener:
    """Listener built from optional callbacks.

    Unset callbacks are not handlers, so events of that kind skip this
    listener.
    """

    on_open: Callable[[Any], Any] | None = None
    on_close: Callable[[Any], Any] | None = None
    on_msg_received: Callable[[Any], Any] | None = None
    on_msg_sent: Callable[[Any], Any] | None = None
    on_history: Callable[[Any, list[Any]], Any] | None = None
    on_error: Callable[[str], Any] | None = None


def handler_for(listener: Any, kind: EventKind) -> Callable[..., Any] | None:
    """Return the listener's handler for an event kind, if it has one."""
    handler = getattr(listener, kind.handler_name, None)
    return handler if callable(handler) else None


# =============================================================================
# Dispatcher
# =============================================================================


class EventDispatcher:
    """Registry of listeners per dispatch key.

    One dispatcher is shared by a context and every feed it opens.
    Registration and unregistration are safe to repeat in any order.
    """

    def __init__(self) -> None:
        self._listeners: dict[DispatchKey, list[Any]] = {}
        self._object_keys: dict[int, DispatchKey] = {}
        # Objects that cannot be weakly referenced are pinned so their id stays unique
        self._pinned: dict[int, Any] = {}

    def get_object_key(self, obj: Any) -> DispatchKey:
        """Return the identity key of an object, assigning one on first use.

        The key is unique for the dispatcher's lifetime and does not depend
        on the object's state.
        """
        obj_id = id(obj)
        key = self._object_keys.get(obj_id)
        if key is not None:
            return key

        key = DispatchKey.identity(f"obj_{uuid.uuid4().hex[:12]}")
        self._object_keys[obj_id] = key
        try:
            weakref.finalize(obj, self._forget_object, obj_id, key)
        except TypeError:
            self._pinned[obj_id] = obj
        return key

    def _forget_object(self, obj_id: int, key: DispatchKey) -> None:
        if self._object_keys.get(obj_id) == key:
            del self._object_keys[obj_id]
        self._listeners.pop(key, None)

    def register(self, key: DispatchKey, listener: Any) -> None:
        """Append a listener under a key. Duplicates are kept."""
        self._listeners.setdefault(key, []).append(listener)

    def unregister(self, key: DispatchKey | None, listener: Any) -> None:
        """Remove every registration of `listener` (by identity) under a key.

        Unknown keys and listeners are ignored.
        """
        if key is None or key not in self._listeners:
            return
        remaining = [entry for entry in self._listeners[key] if entry is not listener]
        if remaining:
            self._listeners[key] = remaining
        else:
            del self._listeners[key]

    def is_registered(self, key: DispatchKey, listener: Any) -> bool:
        """Check whether a listener is registered under a key."""
        return any(entry is listener for entry in self._listeners.get(key, ()))

    def get_listeners(self, key: DispatchKey) -> list[Any]:
        """Listeners under a key, in registration order."""
        return list(self._listeners.get(key, ()))

    def has_handler(self, key: DispatchKey, kind: EventKind) -> bool:
        """Check whether any listener under a key handles an event kind."""
        return any(handler_for(listener, kind) for listener in self._listeners.get(key, ()))

    async def dispatch(self, event: DispatchEvent) -> None:
        """Deliver an event to every listener under its key, in order.

        A failing handler is logged and does not stop delivery to the others.
        """
        # Copy so handlers may (un)register during delivery
        listeners = list(self._listeners.get(event.target_key, ()))

        for listener in listeners:
            handler = handler_for(listener, event.kind)
            if handler is None:
                continue
            try:
                result = handler(*event.args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Error in {event.kind.handler_name} handler for {event.target_key}")

    def reset(self) -> None:
        """Drop all registrations (for testing)."""
        self._listeners = {}
