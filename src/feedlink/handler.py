"""Feed handler - validates and transmits outbound feed messages."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .contract import CANNOT_PARSE, MessageContractValidator, encode_dates, parse_message
from .dispatcher import EventKind
from .protocol.commands import Command
from .types import FeedType

if TYPE_CHECKING:
    from .connection.base import Connection
    from .feed import Feed

logger = logging.getLogger(__name__)

OUTPUT_FEED_SEND = "Messages cannot be sent on an output feed"


class FeedHandler:
    """Sends messages on behalf of open feeds.

    Contract validation runs before anything goes on the wire; a rejected
    message is reported as a single error event on the feed and never sent.
    """

    def __init__(self, validator: MessageContractValidator | None = None):
        self.validator = validator or MessageContractValidator()

    async def send_msg(self, msg: Any, feed: Feed, connection: Connection) -> bool:
        """Validate and send one message.

        Returns:
            True if the message was handed to the connection
        """
        settings = feed.get_feed_settings()
        if settings.feed_type == FeedType.OUTPUT:
            logger.error(f"{OUTPUT_FEED_SEND} (feed {feed.get_feed_key()})")
            await feed.dispatch_event(EventKind.ERROR, OUTPUT_FEED_SEND)
            return False

        ok, parsed = parse_message(msg)
        if not ok:
            await feed.dispatch_event(EventKind.ERROR, CANNOT_PARSE)
            return False

        result = self.validator.validate(settings.msg_contract, parsed)
        if not result.ok:
            logger.debug(f"Message rejected on feed {feed.get_feed_key()}: {result.error}")
            await feed.dispatch_event(EventKind.ERROR, result.error)
            return False

        wire_msg = encode_dates(result.message)
        cmd = Command.message_create(feed.get_feed_key(), wire_msg, feed.write_key)

        async def on_response(data: Any) -> None:
            await feed.dispatch_event(EventKind.MSG_SENT, wire_msg)

        async def on_error(err: str) -> None:
            logger.error(f"Error sending message on feed {feed.get_feed_key()}: {err}")
            await feed.dispatch_event(EventKind.ERROR, err)

        cmd.on_response = on_response
        cmd.on_error = on_error
        await cmd.send(connection)
        return True
