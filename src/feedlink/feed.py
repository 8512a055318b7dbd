"""Feed - a client handle to one real-time stream.

A feed is bound to a server-side processor. It is opened over a connection,
after which messages can be sent on it and pushes addressed to its feed key
are delivered to its listeners.

Events (handler names on listeners, or attributes set on the feed itself):
- on_open(feed): the feed is open and ready for use
- on_close(feed): the feed was closed, or lost its session
- on_msg_received(message): a message was pushed by the server
- on_msg_sent(message): a sent message was accepted by the server
- on_history(feed, messages): response to `history()`
- on_error(error): any command failed, or a message broke the contract

Usage:
    ctx = FeedContext(FeedClientConfig.from_env())
    feed = ctx.create_feed(42, listener=FeedListener(on_msg_received=print))

    await ctx.open_feed(feed)
    await feed.send({"hello": "feeds"})
    await feed.close()

Failures never raise to the caller; they arrive as `on_error` events.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from .contract import parse_message, rehydrate_dates, to_epoch_millis
from .dispatcher import DispatchEvent, DispatchKey, EventDispatcher, EventKind
from .handler import FeedHandler
from .protocol.commands import Command
from .types import FeedSettings, FeedState, FeedType

if TYPE_CHECKING:
    from .connection.base import Connection
    from .context import FeedContext
    from .registry import FeedRegistry

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10

HistoryCompletion = Callable[["Feed", list[Any]], Any]


class Feed:
    """A real-time stream of data bound to a processor.

    Args:
        proc_id: The processor id the feed is bound to
        filters: Runtime filter values (only for filtered processors)
        write_key: Unlocks sending on a write protected feed
        listener: Extra listener registered when the feed opens
        dispatcher: Event dispatcher shared with the owning context
    """

    INPUT_TYPE = FeedType.INPUT
    OUTPUT_TYPE = FeedType.OUTPUT
    UNPROCESSED_TYPE = FeedType.UNPROCESSED

    def __init__(
        self,
        proc_id: int | str,
        filters: dict[str, Any] | None = None,
        write_key: str | None = None,
        listener: Any = None,
        dispatcher: EventDispatcher | None = None,
    ):
        self.conn: Connection | None = None
        self.feed_handler: FeedHandler | None = None
        self.date_fields: list[str] | None = None
        self.feed_settings = FeedSettings(proc_id=proc_id, filters=filters)
        self.write_key = write_key or None
        self.dispatcher = dispatcher or EventDispatcher()
        self.context: FeedContext | None = None

        self._listener = listener
        self._registry: FeedRegistry | None = None
        self._open_settled = asyncio.Event()
        self._open_settled.set()

    def __repr__(self) -> str:
        return (
            f"Feed(proc_id={self.proc_id!r}, feed_key={self.get_feed_key()!r}, "
            f"state={self.feed_settings.state.value!r})"
        )

    # =========================================================================
    # Accessors
    # =========================================================================

    @property
    def proc_id(self) -> int | str:
        return self.feed_settings.proc_id

    @property
    def filters(self) -> dict[str, Any] | None:
        return self.feed_settings.filters

    @property
    def state(self) -> FeedState:
        return self.feed_settings.state

    @property
    def identity_key(self) -> DispatchKey:
        """Dispatch key for locally originated events."""
        return self.dispatcher.get_object_key(self)

    def get_feed_key(self) -> str | None:
        """Server-assigned feed key, None unless the feed holds a session."""
        return self.feed_settings.feed_key

    def get_feed_settings(self) -> FeedSettings:
        """Current feed settings (used by the registry to reload sibling feeds)."""
        return self.feed_settings

    def set_feed_handler(self, handler: FeedHandler | None) -> None:
        self.feed_handler = handler

    def set_write_key(self, write_key: str | None) -> None:
        """Unlock a write protected feed before calling `send`."""
        self.write_key = write_key or None

    def is_open(self) -> bool:
        return self.feed_settings.state == FeedState.OPEN

    def is_closed(self) -> bool:
        return self.feed_settings.state == FeedState.CLOSED

    def has_error(self) -> bool:
        return self.feed_settings.state == FeedState.ERROR

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: Any) -> None:
        """Add a listener. All listeners get events in the order they were added."""
        self.dispatcher.register(self.identity_key, listener)

    def remove_listener(self, listener: Any) -> None:
        """Remove a listener added with `add_listener`."""
        self.dispatcher.unregister(self.identity_key, listener)

    async def dispatch_event(self, kind: EventKind, *args: Any) -> None:
        """Deliver an event to the listeners of this feed."""
        await self.dispatcher.dispatch(DispatchEvent(kind, self.identity_key, args))

    def _register_once(self, key: DispatchKey, listener: Any) -> None:
        if not self.dispatcher.is_registered(key, listener):
            self.dispatcher.register(key, listener)

    def _register_identity(self) -> None:
        self._register_once(self.identity_key, self)
        if self._listener is not None:
            self._register_once(self.identity_key, self._listener)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def open(self, connection: Connection | None, feed_registry: FeedRegistry) -> None:
        """Open the feed over a connection and register it with the registry.

        Used by `FeedContext.open_feed()`.
        """
        if connection is None:
            logger.error(f"Invalid connection object, cannot open {self!r}")
            return

        self._bind(connection, feed_registry)
        logger.info(f"Opening feed: {self.proc_id}")

        self._register_identity()
        if self.feed_handler is None:
            self.feed_handler = FeedHandler()

        cmd = Command.session_create(self.feed_settings.to_wire(), self.write_key)

        async def on_response(data: Any) -> None:
            try:
                settings = FeedSettings.model_validate(data)
            except ValidationError as e:
                await on_error(f"Invalid feed settings from server: {e}")
                return
            if settings.feed_key is None:
                await on_error("Server did not assign a feed key")
                return

            self._adopt_settings(settings)
            logger.info(f"Feed opened with settings: {settings.to_wire()}")
            feed_registry.register_feed(self)
            self._register_once(DispatchKey.feed(settings.feed_key), self)
            # Listeners may close the feed from on_open
            self._open_settled.set()
            await self.dispatch_event(EventKind.OPEN, self)

        async def on_error(err: str) -> None:
            self.feed_settings.state = FeedState.ERROR
            self.feed_settings.feed_key = None
            self.conn = None
            logger.error(f"Error opening feed: {err}")
            self._open_settled.set()
            await self.dispatch_event(EventKind.ERROR, err)

        cmd.on_response = on_response
        cmd.on_error = on_error

        self._open_settled.clear()
        try:
            await cmd.send(connection)
        finally:
            self._open_settled.set()

    async def reopen(self, connection: Connection | None, feed_registry: FeedRegistry) -> None:
        """Reopen the feed over a new connection (reconnect path).

        Listeners stay registered and the settings are kept. If the server
        refuses, every feed sharing this feed key is sent a close event.
        """
        if connection is None:
            logger.error(f"Invalid connection object, cannot reopen {self!r}")
            return

        self._bind(connection, feed_registry)
        logger.info(f"Reopening feed: {self.proc_id}")

        cmd = Command.session_create(self.feed_settings.to_wire(), self.write_key)

        async def on_response(data: Any) -> None:
            logger.debug(f"Feed reopened successfully: {self.get_feed_key()}")

        async def on_error(err: str) -> None:
            self.feed_settings.state = FeedState.ERROR
            logger.error(f"Error reopening feed: {err}")
            siblings = feed_registry.get_all_feeds_for_key(self)
            if not any(f is self for f in siblings):
                siblings.append(self)
            for feed in siblings:
                feed._drop_session()
                await feed.dispatch_event(EventKind.CLOSE, feed)

        cmd.on_response = on_response
        cmd.on_error = on_error
        await cmd.send(connection)

    def _bind(self, connection: Connection, feed_registry: FeedRegistry) -> None:
        self.conn = connection
        self._registry = feed_registry

    def reload_feed_settings(self, feed_settings: FeedSettings) -> bool:
        """Adopt the settings of a sibling feed without a server round trip.

        Returns:
            False if the settings carry no feed key and were not adopted
        """
        if feed_settings.feed_key is None:
            logger.error(f"Cannot reuse settings without a feed key for {self!r}")
            return False
        self._register_identity()
        self._adopt_settings(feed_settings.model_copy(deep=True))
        self._register_once(DispatchKey.feed(feed_settings.feed_key), self)
        return True

    def _adopt_settings(self, settings: FeedSettings) -> None:
        settings.state = FeedState.OPEN
        self.feed_settings = settings
        self._extract_date_fields(settings)

    def _extract_date_fields(self, settings: FeedSettings) -> None:
        # Input feeds never receive messages
        if settings.feed_type in (FeedType.OUTPUT, FeedType.UNPROCESSED):
            self.date_fields = settings.date_field_names() or None

    def _drop_session(self) -> None:
        """Forget the server session after it was lost."""
        feed_key = self.get_feed_key()
        if self._registry is not None:
            self._registry.unregister_feed(self)
        if feed_key is not None:
            self.dispatcher.unregister(DispatchKey.feed(feed_key), self)
        self.feed_settings.state = FeedState.ERROR
        self.feed_settings.feed_key = None
        self.feed_handler = None
        self.conn = None

    async def close(self) -> None:
        """Close the feed.

        Once closed, no events are received on it and nothing can be sent.
        If this was the last open feed, the context also closes the
        connection.
        """
        if self.context is not None:
            await self.context.close_feed(self)
        else:
            await self._close()

    async def _close(self, connection: Connection | None = None) -> None:
        """Close the feed session with the server."""
        # An open still in flight settles first
        await self._open_settled.wait()

        feed_key = self.get_feed_key()
        cx = connection if connection is not None else self.conn
        if feed_key is None or cx is None:
            logger.warning(f"Feed is not open, nothing to close: {self!r}")
            return

        cmd = Command.session_delete(feed_key)

        async def on_response(data: Any) -> None:
            self.feed_settings.state = FeedState.CLOSED
            self.feed_handler = None
            self.conn = None
            await self.dispatch_event(EventKind.CLOSE, self)
            await self._tear_down(feed_key)

        async def on_error(err: str) -> None:
            self.feed_settings.state = FeedState.ERROR
            self.feed_handler = None
            self.conn = None
            logger.error(f"Error closing feed: {err}")
            await self.dispatch_event(EventKind.ERROR, err)
            await self._tear_down(feed_key)

        cmd.on_response = on_response
        cmd.on_error = on_error
        await cmd.send(cx)

    async def _tear_down(self, feed_key: str) -> None:
        self.dispatcher.unregister(self.identity_key, self)
        self.dispatcher.unregister(DispatchKey.feed(feed_key), self)
        await self._clean_up_feed()
        self.feed_settings.feed_key = None

    async def _clean_up_feed(self) -> None:
        """Drop the feed from the registry and release an idle connection."""
        if self.context is not None:
            await self.context._unregister_feed(self)
        elif self._registry is not None:
            self._registry.unregister_feed(self)

    # =========================================================================
    # Messages
    # =========================================================================

    async def send(self, msg: Any) -> None:
        """Send a message to the server for processing and broadcasting.

        Messages can only be sent on open feeds. With validation on, the
        message is checked against the feed's message contract first; a
        rejected message is reported through `on_error` and not sent.
        """
        if self.feed_handler is None or self.conn is None or not self.is_open():
            logger.error("Feed is closed. Cannot send message over the feed at this time.")
            return
        await self.feed_handler.send_msg(msg, self, self.conn)

    send_msg = send

    async def history(
        self,
        limit: int | None = None,
        ending: datetime | int | None = None,
        completion: HistoryCompletion | None = None,
    ) -> bool:
        """Fetch messages sent on the feed in the past.

        Args:
            limit: Maximum number of messages (default 10)
            ending: Latest message time to include, as a datetime or epoch ms
                (default now)
            completion: Called with (feed, messages) in addition to on_history

        Returns:
            True if the request was sent
        """
        if self.conn is None:
            logger.error("Feed is closed. Cannot fetch history at this time.")
            return False

        if ending is None:
            ending = datetime.now(UTC)
        since_ts = to_epoch_millis(ending) if isinstance(ending, datetime) else int(ending)

        cmd = Command.message_history(
            self.get_feed_key(), limit or DEFAULT_HISTORY_LIMIT, since_ts
        )

        async def on_response(data: Any) -> None:
            messages = list(data.get("messages", [])) if isinstance(data, dict) else []
            for message in messages:
                if isinstance(message, dict):
                    rehydrate_dates(message, self.date_fields)
            await self.dispatch_event(EventKind.HISTORY, self, messages)

            if completion is not None:
                result = completion(self, messages)
                if inspect.isawaitable(result):
                    await result

        async def on_error(err: str) -> None:
            logger.error(f"Error getting feed history: {err}")
            await self.dispatch_event(EventKind.ERROR, err)

        cmd.on_response = on_response
        cmd.on_error = on_error
        await cmd.send(self.conn)
        return True

    get_history = history

    async def on_feed_message(self, msg: Any) -> None:
        """Deliver a message pushed by the server for this feed's key."""
        if not self.dispatcher.has_handler(self.identity_key, EventKind.MSG_RECEIVED):
            return

        ok, message = parse_message(msg)
        if not ok:
            logger.warning(f"Dropping unparseable message on feed {self.get_feed_key()}")
            return
        if isinstance(message, dict):
            # Sibling feeds get the same payload
            message = rehydrate_dates(dict(message), self.date_fields)
        await self.dispatch_event(EventKind.MSG_RECEIVED, message)
