"""Feed context - owns the shared connection for a set of feeds.

The context holds one connection, the feed registry, the event dispatcher
and the validation toggle. It connects lazily on the first open, routes
server pushes to feeds by feed key and releases the connection once the
last feed closes.

Usage:
    async with FeedContext(FeedClientConfig.from_env()) as ctx:
        feed = ctx.create_feed(42, listener=FeedListener(on_msg_received=print))
        await ctx.open_feed(feed)
        ...
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from .config import FeedClientConfig
from .connection import create_connection
from .connection.base import BaseConnection, Connection
from .contract import MessageContractValidator
from .dispatcher import DispatchEvent, DispatchKey, EventDispatcher, EventKind
from .feed import Feed
from .handler import FeedHandler
from .registry import FeedRegistry

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[FeedClientConfig], Connection]


class FeedContext:
    """Shared connection, registry and dispatcher for the feeds of one client.

    Args:
        config: Client configuration (defaults to FEEDLINK_* environment)
        connection_factory: Builds the connection on first open
        connection: An already open connection to use instead
    """

    def __init__(
        self,
        config: FeedClientConfig | None = None,
        connection_factory: ConnectionFactory | None = None,
        connection: Connection | None = None,
    ):
        self.config = config or FeedClientConfig.from_env()
        self.connection_factory = connection_factory or create_connection
        self.conn: Connection | None = None
        self.dispatcher = EventDispatcher()
        self.registry = FeedRegistry()
        self.validator = MessageContractValidator(enabled=self.config.field_validation)
        self.feed_handler = FeedHandler(self.validator)

        if connection is not None:
            self._attach(connection)

    @classmethod
    def from_env(cls) -> FeedContext:
        """Create a context configured from environment variables."""
        return cls(FeedClientConfig.from_env())

    # =========================================================================
    # Feeds
    # =========================================================================

    def create_feed(
        self,
        proc_id: int | str,
        filters: dict[str, Any] | None = None,
        write_key: str | None = None,
        listener: Any = None,
    ) -> Feed:
        """Create a closed feed bound to this context."""
        feed = Feed(proc_id, filters, write_key, listener, dispatcher=self.dispatcher)
        feed.context = self
        return feed

    async def open_feed(self, feed: Feed) -> None:
        """Open a feed on the shared connection.

        If a feed for the same processor and filters is already open, its
        settings are reused without a server round trip.
        """
        feed.context = self
        feed.set_feed_handler(self.feed_handler)
        feed._register_identity()

        feed._open_settled.clear()
        try:
            try:
                connection = await self._ensure_connection()
            except ConnectionError as e:
                logger.error(f"Cannot open feed {feed.proc_id}: {e}")
                feed._open_settled.set()
                await feed.dispatch_event(EventKind.ERROR, str(e))
                return

            settings = self.registry.find_settings(feed.proc_id, feed.filters)
            if settings is not None:
                logger.debug(f"Reusing open feed settings for {settings.feed_key}")
                feed._bind(connection, self.registry)
                if feed.reload_feed_settings(settings):
                    self.registry.register_feed(feed)
                    feed._open_settled.set()
                    await feed.dispatch_event(EventKind.OPEN, feed)
                    return

            await feed.open(connection, self.registry)
        finally:
            feed._open_settled.set()

        if not feed.is_open():
            await self._release_connection_if_idle()

    async def close_feed(self, feed: Feed) -> None:
        """Close a feed, releasing the connection if it was the last one."""
        await feed._close(self.conn)
        await self._release_connection_if_idle()

    async def _unregister_feed(self, feed: Feed) -> None:
        """Drop a closed feed; called from the feed's own teardown."""
        self.registry.unregister_feed(feed)
        await self._release_connection_if_idle()

    def field_message_validation(self, enabled: bool) -> None:
        """Turn client-side message contract validation on or off."""
        self.validator.enabled = enabled
        logger.info(f"Message contract validation {'enabled' if enabled else 'disabled'}")

    # =========================================================================
    # Connection
    # =========================================================================

    def _attach(self, connection: Connection) -> None:
        self.conn = connection
        if isinstance(connection, BaseConnection):
            connection.set_push_handler(self.handle_push)
            connection.set_lost_handler(self.connection_lost)

    async def _ensure_connection(self) -> Connection:
        if self.conn is not None and self.conn.is_connected:
            return self.conn

        connection = self.conn or self.connection_factory(self.config)
        self._attach(connection)
        if isinstance(connection, BaseConnection):
            try:
                await connection.connect()
            except ConnectionError:
                self.conn = None
                raise
        return connection

    async def _release_connection_if_idle(self) -> None:
        if self.conn is None or not self.registry.is_empty():
            return
        # Detach first so a re-entrant release is a no-op
        connection, self.conn = self.conn, None
        logger.info("No open feeds left, closing connection")
        await connection.close()

    async def reconnect(self, connection: Connection) -> None:
        """Reopen every registered feed over a new connection."""
        previous = self.conn
        self._attach(connection)
        if previous is not None and previous is not connection:
            await previous.close()
        if isinstance(connection, BaseConnection) and not connection.is_connected:
            await connection.connect()

        for feed in self.registry.get_all_feeds():
            # A refused sibling already closed this one
            if not feed.is_open():
                continue
            await feed.reopen(connection, self.registry)

        await self._release_connection_if_idle()

    async def handle_push(self, feed_key: str, message: Any) -> None:
        """Deliver a server push to every feed sharing the feed key."""
        if not self.registry.get_feeds_for_key(feed_key):
            logger.debug(f"No open feed for key {feed_key}, dropping message")
            return
        await self.dispatcher.dispatch(
            DispatchEvent(EventKind.FEED_MESSAGE, DispatchKey.feed(feed_key), (message,))
        )

    async def connection_lost(self) -> None:
        """Forget every feed after the connection dropped for good."""
        feeds = self.registry.get_all_feeds()
        logger.warning(f"Connection lost, closing {len(feeds)} feed(s)")
        self.registry.clear()
        self.conn = None

        for feed in feeds:
            feed._drop_session()
            await feed.dispatch_event(EventKind.CLOSE, feed)

    async def shutdown(self) -> None:
        """Close every open feed and the connection."""
        for feed in self.registry.get_all_feeds():
            await feed._close(self.conn)

        if self.conn is not None:
            connection, self.conn = self.conn, None
            await connection.close()

    async def __aenter__(self) -> FeedContext:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.shutdown()
