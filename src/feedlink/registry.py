"""Feed registry - the feeds currently open on a connection.

Indexed by server feed key. Several local Feed objects may share one feed
key; the registry keeps all of them, plus the settings snapshot the server
returned for that key.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .types import FeedSettings

if TYPE_CHECKING:
    from .feed import Feed

logger = logging.getLogger(__name__)


class FeedRegistry:
    """Open feeds by feed key.

    Emptiness is the signal used to decide when the shared connection can
    be released.
    """

    def __init__(self) -> None:
        self._settings: dict[str, FeedSettings] = {}
        self._feeds: dict[str, list[Feed]] = {}

    def register_feed(self, feed: Feed) -> None:
        """Record an open feed and a snapshot of its settings under its feed key."""
        feed_key = feed.get_feed_key()
        if feed_key is None:
            logger.error(f"Cannot register feed without a feed key (procId={feed.proc_id})")
            return
        # Snapshot, the feed mutates its own settings on close
        self._settings[feed_key] = feed.get_feed_settings().model_copy(deep=True)
        feeds = self._feeds.setdefault(feed_key, [])
        if not any(f is feed for f in feeds):
            feeds.append(feed)

    def unregister_feed(self, feed: Feed) -> None:
        """Forget a feed. The key goes away with its last feed."""
        feed_key = feed.get_feed_key()
        if feed_key is None or feed_key not in self._feeds:
            return
        remaining = [f for f in self._feeds[feed_key] if f is not feed]
        if remaining:
            self._feeds[feed_key] = remaining
        else:
            del self._feeds[feed_key]
            self._settings.pop(feed_key, None)

    def get_feed_settings(self, feed_key: str) -> FeedSettings | None:
        """Settings snapshot registered for a feed key."""
        return self._settings.get(feed_key)

    def find_settings(self, proc_id: Any, filters: dict[str, Any] | None) -> FeedSettings | None:
        """Settings of an open feed bound to the same processor and filters."""
        for settings in self._settings.values():
            if settings.feed_key is None:
                continue
            if str(settings.proc_id) == str(proc_id) and (settings.filters or None) == (
                filters or None
            ):
                return settings
        return None

    def get_all_feeds_for_key(self, feed: Feed) -> list[Feed]:
        """Every registered feed sharing `feed`'s feed key."""
        feed_key = feed.get_feed_key()
        if feed_key is None:
            return []
        return self.get_feeds_for_key(feed_key)

    def get_feeds_for_key(self, feed_key: str) -> list[Feed]:
        """Every registered feed under a feed key, in registration order."""
        return list(self._feeds.get(feed_key, ()))

    def get_all_feeds(self) -> list[Feed]:
        """Every registered feed."""
        return [feed for feeds in self._feeds.values() for feed in feeds]

    def is_empty(self) -> bool:
        """True when no feed keys remain registered."""
        return not self._feeds

    def clear(self) -> None:
        """Drop everything (hard connection loss)."""
        self._settings.clear()
        self._feeds.clear()
