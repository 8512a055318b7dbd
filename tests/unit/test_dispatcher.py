"""Unit tests for the event dispatcher."""

from __future__ import annotations

import gc

import pytest

from feedlink.dispatcher import (
    CloseHandler,
    DispatchEvent,
    DispatchKey,
    ErrorHandler,
    EventDispatcher,
    EventKind,
    FeedListener,
    KeyKind,
    MessageHandler,
    OpenHandler,
    handler_for,
)


class Target:
    """Plain object used as a key holder."""


class TestDispatchKey:
    """Test tagged dispatch keys."""

    def test_identity_and_feed_keys_differ(self):
        """The same value under different kinds is a different key."""
        assert DispatchKey.identity("x") != DispatchKey.feed("x")
        assert DispatchKey.feed("x") == DispatchKey(KeyKind.FEED, "x")

    def test_str(self):
        assert str(DispatchKey.feed("fk_1")) == "feed:fk_1"


class TestObjectKeys:
    """Test identity key assignment."""

    def test_key_is_stable(self):
        """The same object always gets the same key."""
        dispatcher = EventDispatcher()
        target = Target()

        assert dispatcher.get_object_key(target) == dispatcher.get_object_key(target)

    def test_keys_are_unique(self):
        """Distinct objects get distinct keys."""
        dispatcher = EventDispatcher()
        targets = [Target() for _ in range(50)]

        keys = {dispatcher.get_object_key(t) for t in targets}

        assert len(keys) == 50
        assert all(k.kind == KeyKind.IDENTITY for k in keys)

    def test_key_ignores_object_state(self):
        """Mutating the object does not change its key."""
        dispatcher = EventDispatcher()
        target = Target()
        key = dispatcher.get_object_key(target)

        target.name = "changed"

        assert dispatcher.get_object_key(target) == key

    def test_dead_objects_release_registrations(self):
        """Listeners under a collected object's key are dropped."""
        dispatcher = EventDispatcher()
        target = Target()
        key = dispatcher.get_object_key(target)
        dispatcher.register(key, FeedListener())

        del target
        gc.collect()

        assert dispatcher.get_listeners(key) == []

    def test_objects_without_weakref_support(self):
        """Objects that cannot be weakly referenced still get a stable key."""
        dispatcher = EventDispatcher()
        values = {"a": 1}

        assert dispatcher.get_object_key(values) == dispatcher.get_object_key(values)


class TestRegistration:
    """Test register/unregister bookkeeping."""

    def test_duplicates_are_kept(self):
        """Registering twice means two deliveries."""
        dispatcher = EventDispatcher()
        key = DispatchKey.feed("fk_1")
        listener = FeedListener()

        dispatcher.register(key, listener)
        dispatcher.register(key, listener)

        assert dispatcher.get_listeners(key) == [listener, listener]

    def test_unregister_removes_by_identity(self):
        """Only the exact object is removed, not equal ones."""
        dispatcher = EventDispatcher()
        key = DispatchKey.feed("fk_1")
        first, second = FeedListener(), FeedListener()
        dispatcher.register(key, first)
        dispatcher.register(key, second)

        dispatcher.unregister(key, first)

        assert dispatcher.get_listeners(key) == [second]

    def test_unregister_unknown_is_noop(self):
        """Unregistering something never registered does nothing."""
        dispatcher = EventDispatcher()
        key = DispatchKey.feed("fk_1")
        listener = FeedListener()
        dispatcher.register(key, listener)

        dispatcher.unregister(key, FeedListener())
        dispatcher.unregister(DispatchKey.feed("other"), listener)
        dispatcher.unregister(None, listener)

        assert dispatcher.get_listeners(key) == [listener]

    def test_reset(self):
        """reset() drops every registration."""
        dispatcher = EventDispatcher()
        key = DispatchKey.feed("fk_1")
        dispatcher.register(key, FeedListener())

        dispatcher.reset()

        assert dispatcher.get_listeners(key) == []


class TestCapabilities:
    """Test handler discovery."""

    def test_feed_listener_only_exposes_set_callbacks(self):
        """Unset callbacks are not handlers."""
        listener = FeedListener(on_open=lambda feed: None)

        assert handler_for(listener, EventKind.OPEN) is not None
        assert handler_for(listener, EventKind.CLOSE) is None

    def test_protocols(self):
        """Objects with handler methods satisfy the capability protocols."""

        class OpenOnly:
            def on_open(self, feed):
                pass

        assert isinstance(OpenOnly(), OpenHandler)
        assert not isinstance(OpenOnly(), CloseHandler)
        assert not isinstance(OpenOnly(), MessageHandler)
        assert not isinstance(OpenOnly(), ErrorHandler)

    def test_has_handler(self):
        dispatcher = EventDispatcher()
        key = DispatchKey.feed("fk_1")
        dispatcher.register(key, FeedListener(on_error=print))

        assert dispatcher.has_handler(key, EventKind.ERROR)
        assert not dispatcher.has_handler(key, EventKind.MSG_RECEIVED)


class TestDispatch:
    """Test event delivery."""

    @pytest.mark.anyio
    async def test_delivery_in_registration_order(self, make_recorder):
        """Listeners see an event in the order they registered."""
        dispatcher = EventDispatcher()
        key = DispatchKey.feed("fk_1")
        log = []
        for name in ("first", "second", "third"):
            dispatcher.register(key, make_recorder(name, log))

        await dispatcher.dispatch(DispatchEvent(EventKind.ERROR, key, ("boom",)))

        assert log == [
            ("first", "error", "boom"),
            ("second", "error", "boom"),
            ("third", "error", "boom"),
        ]

    @pytest.mark.anyio
    async def test_listeners_without_handler_are_skipped(self):
        """Only listeners handling the event kind are called."""
        dispatcher = EventDispatcher()
        key = DispatchKey.feed("fk_1")
        seen = []
        dispatcher.register(key, FeedListener(on_open=seen.append))
        dispatcher.register(key, FeedListener(on_close=seen.append))

        await dispatcher.dispatch(DispatchEvent(EventKind.CLOSE, key, ("feed",)))

        assert seen == ["feed"]

    @pytest.mark.anyio
    async def test_only_target_key_receives(self):
        """Events go to the event's key and nowhere else."""
        dispatcher = EventDispatcher()
        seen = []
        dispatcher.register(DispatchKey.feed("a"), FeedListener(on_error=seen.append))
        dispatcher.register(DispatchKey.identity("a"), FeedListener(on_error=seen.append))

        await dispatcher.dispatch(DispatchEvent(EventKind.ERROR, DispatchKey.feed("a"), ("x",)))

        assert seen == ["x"]

    @pytest.mark.anyio
    async def test_async_handlers_are_awaited(self):
        """Coroutine handlers finish before dispatch returns."""
        dispatcher = EventDispatcher()
        key = DispatchKey.feed("fk_1")
        seen = []

        async def on_msg_received(message):
            seen.append(message)

        dispatcher.register(key, FeedListener(on_msg_received=on_msg_received))

        await dispatcher.dispatch(DispatchEvent(EventKind.MSG_RECEIVED, key, ({"a": 1},)))

        assert seen == [{"a": 1}]

    @pytest.mark.anyio
    async def test_failing_listener_does_not_stop_delivery(self, caplog):
        """A raising handler is logged and the next listener still runs."""
        dispatcher = EventDispatcher()
        key = DispatchKey.feed("fk_1")
        seen = []

        def broken(feed):
            raise RuntimeError("listener bug")

        dispatcher.register(key, FeedListener(on_open=broken))
        dispatcher.register(key, FeedListener(on_open=seen.append))

        await dispatcher.dispatch(DispatchEvent(EventKind.OPEN, key, ("feed",)))

        assert seen == ["feed"]
        assert "Error in on_open handler" in caplog.text

    @pytest.mark.anyio
    async def test_unregister_during_dispatch(self):
        """A listener removing itself mid-delivery does not disturb the rest."""
        dispatcher = EventDispatcher()
        key = DispatchKey.feed("fk_1")
        seen = []

        class OneShot:
            def on_close(self, feed):
                seen.append("one-shot")
                dispatcher.unregister(key, self)

        dispatcher.register(key, OneShot())
        dispatcher.register(key, FeedListener(on_close=lambda feed: seen.append("stays")))

        await dispatcher.dispatch(DispatchEvent(EventKind.CLOSE, key, ("feed",)))
        await dispatcher.dispatch(DispatchEvent(EventKind.CLOSE, key, ("feed",)))

        assert seen == ["one-shot", "stays", "stays"]

    @pytest.mark.anyio
    async def test_dispatch_to_unknown_key(self):
        """Dispatching to a key with no listeners is a no-op."""
        dispatcher = EventDispatcher()

        await dispatcher.dispatch(DispatchEvent(EventKind.OPEN, DispatchKey.feed("none")))
