"""Tests for CrossTabSync, the local broadcast hub, and the typed facades."""

from __future__ import annotations

import asyncio
import logging

import pytest

from codementor_sync.core.signals import SignalSource
from codementor_sync.sync import (
    CrossTabSync,
    EngagementSync,
    LocalBroadcastHub,
    ProgressSync,
    SessionSync,
    TabFocusSync,
    TransportUnavailable,
    unavailable_transport,
)
from codementor_sync.types import SyncEventType


class TestSubscribe:
    def test_delivers_to_other_tab(self, bus_pair):
        tab_a, tab_b = bus_pair
        received = []
        tab_b.subscribe(SyncEventType.PROGRESS_UPDATED, received.append)
        tab_a.broadcast(SyncEventType.PROGRESS_UPDATED, {"topic": 3, "percent": 40})
        assert received == [{"topic": 3, "percent": 40}]

    def test_sender_does_not_receive_own_message(self, bus_pair):
        tab_a, _ = bus_pair
        received = []
        tab_a.subscribe("progress_updated", received.append)
        tab_a.broadcast("progress_updated", {"x": 1})
        assert received == []

    def test_string_and_enum_keys_match(self, bus_pair):
        tab_a, tab_b = bus_pair
        received = []
        tab_b.subscribe("quiz_unlocked", received.append)
        tab_a.broadcast(SyncEventType.QUIZ_UNLOCKED, {"ok": True})
        assert received == [{"ok": True}]

    def test_multiple_subscribers(self, bus_pair):
        tab_a, tab_b = bus_pair
        first, second = [], []
        tab_b.subscribe("ui_state_updated", first.append)
        tab_b.subscribe("ui_state_updated", second.append)
        tab_a.broadcast("ui_state_updated", {"panel": "code"})
        assert first == second == [{"panel": "code"}]

    def test_listeners_run_in_subscription_order(self, bus_pair):
        tab_a, tab_b = bus_pair
        order = []
        for n in range(8):
            tab_b.subscribe("progress_updated", lambda d, n=n: order.append(n))
        tab_a.broadcast("progress_updated", {})
        assert order == list(range(8))

    def test_resubscribed_listener_moves_to_end(self, bus_pair):
        tab_a, tab_b = bus_pair
        order = []
        first = lambda d: order.append("first")
        unsubscribe = tab_b.subscribe("progress_updated", first)
        tab_b.subscribe("progress_updated", lambda d: order.append("second"))
        unsubscribe()
        tab_b.subscribe("progress_updated", first)
        tab_a.broadcast("progress_updated", {})
        assert order == ["second", "first"]

    def test_unsubscribe_removes_only_that_callback(self, bus_pair):
        tab_a, tab_b = bus_pair
        kept, dropped = [], []
        tab_b.subscribe("metadata_updated", kept.append)
        unsubscribe = tab_b.subscribe("metadata_updated", dropped.append)
        unsubscribe()
        tab_a.broadcast("metadata_updated", {"k": "v"})
        assert kept == [{"k": "v"}]
        assert dropped == []
        assert tab_b.listener_count("metadata_updated") == 1

    def test_empty_type_entry_removed(self, bus_pair):
        _, tab_b = bus_pair
        unsubscribe = tab_b.subscribe("tab_focused", lambda d: None)
        assert tab_b.has_listeners("tab_focused")
        unsubscribe()
        unsubscribe()
        assert not tab_b.has_listeners("tab_focused")
        assert tab_b.listener_count() == 0

    def test_payload_is_copied_per_receiver(self, hub):
        sender = CrossTabSync("c", transport_factory=hub.open)
        r1 = CrossTabSync("c", transport_factory=hub.open)
        r2 = CrossTabSync("c", transport_factory=hub.open)
        got = []
        r1.subscribe("progress_updated", lambda d: (d.__setitem__("mutated", True), got.append(d)))
        r2.subscribe("progress_updated", got.append)

        payload = {"items": [1, 2]}
        sender.broadcast("progress_updated", payload)

        assert payload == {"items": [1, 2]}
        assert got[1] == {"items": [1, 2]}

    def test_other_channel_isolated(self, hub):
        a = CrossTabSync("one", transport_factory=hub.open)
        b = CrossTabSync("two", transport_factory=hub.open)
        received = []
        b.subscribe("progress_updated", received.append)
        a.broadcast("progress_updated", {})
        assert received == []


class TestListenerIsolation:
    def test_throwing_listener_does_not_block_others(self, bus_pair, caplog):
        tab_a, tab_b = bus_pair
        received = []

        def broken(data):
            data["score"] = -1
            raise RuntimeError("listener bug")

        tab_b.subscribe("engagement_updated", broken)
        tab_b.subscribe("engagement_updated", received.append)

        payload = {"score": 3.5, "threshold": 10, "eventType": "message"}
        with caplog.at_level(logging.ERROR):
            tab_a.broadcast("engagement_updated", payload)

        assert received == [payload]
        assert payload["score"] == 3.5
        assert "listener" in caplog.text

    def test_malformed_envelope_dropped(self, bus_pair):
        _, tab_b = bus_pair
        received = []
        tab_b.subscribe("progress_updated", received.append)
        tab_b._handle_message({"data": {"no": "type"}})
        tab_b._handle_message("garbage")
        assert received == []


class TestUnsupported:
    def test_factory_failure_degrades(self):
        bus = CrossTabSync("c", transport_factory=unavailable_transport)
        assert bus.is_supported() is False
        unsubscribe = bus.subscribe("progress_updated", lambda d: None)
        bus.broadcast("progress_updated", {"x": 1})
        unsubscribe()
        bus.initialize(SignalSource())
        bus.dispose()
        bus.close()

    def test_unavailable_transport_raises(self):
        with pytest.raises(TransportUnavailable):
            unavailable_transport("c")

    def test_closed_bus_is_noop(self, bus_pair):
        tab_a, tab_b = bus_pair
        received = []
        tab_b.subscribe("progress_updated", received.append)
        tab_a.close()
        tab_a.broadcast("progress_updated", {"x": 1})
        assert received == []
        assert tab_a.is_supported() is False


class TestFocusLifecycle:
    def test_focus_and_blur_broadcast_after_initialize(self, bus_pair, window):
        tab_a, tab_b = bus_pair
        seen = []
        tab_b.subscribe(SyncEventType.TAB_FOCUSED, lambda d: seen.append(("focus", d)))
        tab_b.subscribe(SyncEventType.TAB_BLURRED, lambda d: seen.append(("blur", d)))

        window.emit("focus")
        assert seen == []

        tab_a.initialize(window)
        window.emit("focus")
        window.emit("blur")
        assert [kind for kind, _ in seen] == ["focus", "blur"]
        assert isinstance(seen[0][1]["timestamp"], int)

    def test_dispose_detaches(self, bus_pair, window):
        tab_a, tab_b = bus_pair
        seen = []
        tab_b.subscribe(SyncEventType.TAB_FOCUSED, seen.append)
        tab_a.initialize(window)
        tab_a.dispose()
        window.emit("focus")
        assert seen == []
        assert window.listener_count() == 0

    def test_initialize_twice_does_not_stack(self, bus_pair, window):
        tab_a, _ = bus_pair
        tab_a.initialize(window)
        tab_a.initialize(window)
        assert window.listener_count("focus") == 1


class TestAsyncDelivery:
    @pytest.mark.asyncio
    async def test_loop_delivery_is_deferred_and_fifo(self):
        hub = LocalBroadcastHub(loop=asyncio.get_running_loop())
        sender = CrossTabSync("c", transport_factory=hub.open)
        receiver = CrossTabSync("c", transport_factory=hub.open)
        received = []
        receiver.subscribe("progress_updated", lambda d: received.append(d["n"]))

        for n in range(5):
            sender.broadcast("progress_updated", {"n": n})
        assert received == []

        await asyncio.sleep(0)
        assert received == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_closed_receiver_skips_queued_messages(self):
        hub = LocalBroadcastHub(loop=asyncio.get_running_loop())
        sender = CrossTabSync("c", transport_factory=hub.open)
        receiver = CrossTabSync("c", transport_factory=hub.open)
        received = []
        receiver.subscribe("progress_updated", received.append)
        sender.broadcast("progress_updated", {"n": 1})
        receiver.close()
        await asyncio.sleep(0)
        assert received == []


class TestFacades:
    def test_session_sync(self, bus_pair):
        tab_a, tab_b = bus_pair
        seen = []
        SessionSync(tab_b).on_session_activated(seen.append)
        SessionSync(tab_b).on_session_deactivated(seen.append)
        SessionSync(tab_a).notify_session_activated("s1")
        SessionSync(tab_a).notify_session_deactivated("s1")
        assert seen == [{"sessionId": "s1"}, {"sessionId": "s1"}]

    def test_engagement_sync(self, bus_pair):
        tab_a, tab_b = bus_pair
        seen = []
        EngagementSync(tab_b).on_engagement_update(seen.append)
        EngagementSync(tab_a).notify_engagement_update(4.0, 10.0, "message")
        assert seen == [{"score": 4.0, "threshold": 10.0, "eventType": "message"}]

    def test_progress_sync(self, bus_pair):
        tab_a, tab_b = bus_pair
        seen = []
        facade_b = ProgressSync(tab_b)
        facade_b.on_quiz_unlocked(lambda d: seen.append(("quiz", d)))
        facade_b.on_practice_unlocked(lambda d: seen.append(("practice", d)))
        ProgressSync(tab_a).notify_quiz_unlocked()
        ProgressSync(tab_a).notify_practice_unlocked({"topic": 2})
        assert seen == [("quiz", {}), ("practice", {"topic": 2})]

    def test_tab_focus_sync(self, bus_pair, window):
        tab_a, tab_b = bus_pair
        seen = []
        TabFocusSync(tab_b).on_tab_blurred(seen.append)
        tab_a.initialize(window)
        window.emit("blur")
        assert len(seen) == 1
