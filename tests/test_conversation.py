"""Tests for ConversationStore: buckets, combined view, context window, persistence."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from codementor_sync.core.conversation import (
    STORAGE_KEY,
    ConversationStore,
    format_history,
    storage_key_for,
)
from codementor_sync.storage.memory import MemoryStore
from codementor_sync.types import Message, MessageMeta, SyncEventType


class TestAppend:
    def test_user_message_goes_to_target_bucket(self, conversation):
        msg = conversation.append_user_message("What is a class?", "gemini")
        assert msg is not None
        assert msg.sender == "user"
        assert msg.model_tag == "gemini"
        assert conversation.messages("gemini") == [msg]
        assert conversation.messages("together") == []

    def test_blank_user_message_is_noop(self, conversation, memory_store):
        conversation.append_user_message("hello", "gemini")
        before = len(conversation.messages("gemini"))
        assert conversation.append_user_message("   ", "gemini") is None
        assert conversation.append_user_message("", "gemini") is None
        assert len(conversation.messages("gemini")) == before

    def test_blank_send_does_not_persist(self, memory_store):
        store = ConversationStore(memory_store, session_id="s1")
        store.append_user_message("\n\t ", "gemini")
        assert memory_store.get_item("conversation_history_s1") is None

    def test_assistant_sender_is_model(self, conversation):
        meta = MessageMeta(chat_id=9, latency_ms=40.0, model_name="gemini-pro")
        msg = conversation.append_assistant_message("A class is a blueprint.", "gemini", meta=meta)
        assert msg.sender == "gemini"
        assert msg.meta.chat_id == 9
        assert msg.role == "assistant"

    def test_unknown_model_rejected(self, conversation):
        with pytest.raises(ValueError):
            conversation.append_user_message("hi", "gpt")
        with pytest.raises(ValueError):
            conversation.append_assistant_message("hi", "claude")

    def test_appends_keep_call_order(self, conversation):
        texts = [f"msg {i}" for i in range(20)]
        for text in texts:
            conversation.append_user_message(text, "together")
        assert [m.text for m in conversation.messages("together")] == texts

    def test_ids_strictly_increase(self, conversation):
        ids = [conversation.append_user_message(f"m{i}", "together").id for i in range(50)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 50

    def test_split_message_shared_in_both_buckets(self, conversation):
        msg = conversation.append_user_message_both("Compare loops")
        assert conversation.messages("together")[-1] is msg
        assert conversation.messages("gemini")[-1] is msg
        assert msg.model_tag is None

    def test_switch_active_model_keeps_buckets(self, conversation):
        conversation.append_user_message("a", "together")
        conversation.append_user_message("b", "gemini")
        conversation.switch_active_model("gemini")
        assert conversation.active_model == "gemini"
        assert [m.text for m in conversation.active_messages()] == ["b"]
        assert [m.text for m in conversation.messages("together")] == ["a"]


class TestCombinedView:
    def test_dedup_counts_split_sends_once(self, conversation):
        for i in range(5):
            conversation.append_user_message_both(f"question {i}")
        visible_users = [m for m in conversation.get_combined_view() if m.is_user]
        assert len(visible_users) == 5
        assert len(conversation.messages("together")) == 5
        assert len(conversation.messages("gemini")) == 5

    def test_split_fan_out_scenario(self, conversation):
        conversation.append_user_message_both("Explain recursion")
        stored = len(conversation)
        conversation.append_assistant_message("Together answer", "together")
        conversation.append_assistant_message("Gemini answer", "gemini")

        assert stored == 2
        combined = list(conversation.get_combined_view())
        assert len(combined) == 3
        assert combined[0].is_user
        assert {m.sender for m in combined[1:]} == {"together", "gemini"}

    def test_sorted_by_timestamp(self, conversation):
        base = datetime(2025, 1, 1, tzinfo=timezone.utc)
        conversation._buckets["together"].append(
            Message(id=3, text="late", sender="together", timestamp=base + timedelta(seconds=30))
        )
        conversation._buckets["gemini"].append(
            Message(id=1, text="early", sender="user", timestamp=base)
        )
        conversation._buckets["gemini"].append(
            Message(id=2, text="middle", sender="gemini", timestamp=base + timedelta(seconds=10))
        )
        assert [m.text for m in conversation.get_combined_view()] == ["early", "middle", "late"]

    def test_view_is_recomputed_each_call(self, conversation):
        conversation.append_user_message("one", "together")
        first = list(conversation.get_combined_view())
        conversation.append_user_message("two", "gemini")
        second = list(conversation.get_combined_view())
        assert len(first) == 1
        assert len(second) == 2

    def test_view_is_restartable(self, conversation):
        conversation.append_user_message_both("x")
        view_a = conversation.get_combined_view()
        view_b = conversation.get_combined_view()
        assert list(view_a) == list(view_b)

    def test_separate_single_sends_not_collapsed(self, conversation):
        conversation.append_user_message("same text", "together")
        conversation.append_user_message("same text", "gemini")
        users = [m for m in conversation.get_combined_view() if m.is_user]
        assert len(users) == 2


class TestContextWindow:
    def test_bound_is_ten_most_recent(self, conversation):
        for i in range(25):
            conversation.append_user_message(f"m{i}", "gemini")
        window = conversation.get_context_window("gemini", 10)
        assert len(window) == 10
        assert [w["content"] for w in window] == [f"m{i}" for i in range(15, 25)]

    def test_short_bucket_returned_whole(self, conversation):
        conversation.append_user_message("hi", "together")
        conversation.append_assistant_message("hello", "together")
        assert conversation.get_context_window("together") == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_zero_window(self, conversation):
        conversation.append_user_message("hi", "together")
        assert conversation.get_context_window("together", 0) == []

    def test_format_history_roles(self):
        msgs = [
            Message(id=1, text="q", sender="user"),
            Message(id=2, text="a", sender="ai"),
            Message(id=3, text="b", sender="gemini"),
        ]
        assert [h["role"] for h in format_history(msgs)] == ["user", "assistant", "assistant"]


class TestPersistence:
    def test_storage_key(self):
        assert storage_key_for(None) == STORAGE_KEY
        assert storage_key_for("42") == "conversation_history_42"

    def test_each_mutation_persists(self, conversation, memory_store):
        conversation.append_user_message("hi", "together")
        raw = json.loads(memory_store.get_item("conversation_history_sess-abc"))
        assert raw[0]["text"] == "hi"
        assert raw[0]["modelTag"] == "together"
        assert set(raw[0]) == {"id", "text", "sender", "timestamp", "modelTag"}

    def test_round_trip(self, memory_store):
        first = ConversationStore(memory_store, session_id="rt")
        first.append_user_message("single", "together")
        first.append_assistant_message("reply t", "together")
        first.append_user_message_both("split question")
        first.append_assistant_message("reply g", "gemini")
        first.append_assistant_message("reply t2", "together")

        restored = ConversationStore(memory_store)
        assert restored.hydrate("rt") is True
        for model in ("together", "gemini"):
            assert [(m.sender, m.text) for m in restored.messages(model)] == [
                (m.sender, m.text) for m in first.messages(model)
            ]
        assert len(list(restored.get_combined_view())) == len(list(first.get_combined_view()))

    def test_meta_not_persisted(self, memory_store):
        store = ConversationStore(memory_store, session_id="m")
        store.append_assistant_message("x", "gemini", meta=MessageMeta(chat_id=5))
        restored = ConversationStore(memory_store)
        restored.hydrate("m")
        assert restored.messages("gemini")[0].meta is None

    def test_hydrate_missing_is_empty(self, memory_store):
        store = ConversationStore(memory_store)
        assert store.hydrate("nobody") is False
        assert len(store) == 0

    @pytest.mark.parametrize("payload", [
        "not json",
        '{"a": 1}',
        '[{"id": 1}]',
        '[{"id": 1, "text": "x", "sender": "robot", "timestamp": "2025-01-01T00:00:00"}]',
    ])
    def test_hydrate_malformed_is_empty(self, payload):
        store = ConversationStore(MemoryStore({"conversation_history_bad": payload}))
        assert store.hydrate("bad") is False
        assert store.messages("together") == []
        assert store.messages("gemini") == []

    def test_hydrate_routes_untagged_entries(self):
        raw = json.dumps([
            {"id": 1, "text": "q", "sender": "user", "timestamp": "2025-01-01T00:00:00+00:00"},
            {"id": 2, "text": "a", "sender": "gemini", "timestamp": "2025-01-01T00:00:01+00:00"},
        ])
        store = ConversationStore(MemoryStore({STORAGE_KEY: raw}), active_model="together")
        assert store.hydrate() is True
        assert [m.text for m in store.messages("together")] == ["q"]
        assert [m.text for m in store.messages("gemini")] == ["a"]

    def test_quota_failure_keeps_memory_state(self):
        store = ConversationStore(MemoryStore(quota_bytes=10), session_id="q")
        msg = store.append_user_message("this will not fit in the quota", "together")
        assert msg is not None
        assert store.messages("together") == [msg]
        assert store.persist() is False

    def test_clear_persists_empty(self, conversation, memory_store):
        conversation.append_user_message_both("x")
        conversation.clear()
        assert len(conversation) == 0
        assert json.loads(memory_store.get_item(conversation.storage_key)) == []


class TestCrossTab:
    def test_mutation_broadcasts_history(self, memory_store, bus_pair):
        tab_a, tab_b = bus_pair
        received = []
        tab_b.subscribe(SyncEventType.CONVERSATION_UPDATED, received.append)

        store = ConversationStore(memory_store, session_id="s", sync=tab_a)
        store.append_user_message("hi", "together")

        assert len(received) == 1
        assert received[0]["sessionId"] == "s"
        assert received[0]["history"][0]["text"] == "hi"

    def test_remote_update_adopted(self, bus_pair):
        tab_a, tab_b = bus_pair
        a = ConversationStore(MemoryStore(), session_id="s", sync=tab_a)
        b = ConversationStore(MemoryStore(), session_id="s", sync=tab_b)
        b.attach_sync()

        a.append_user_message_both("shared")
        a.append_assistant_message("answer", "gemini")

        assert [m.text for m in b.messages("gemini")] == ["shared", "answer"]
        assert [m.text for m in b.messages("together")] == ["shared"]

    def test_remote_update_other_session_ignored(self, bus_pair):
        tab_a, tab_b = bus_pair
        a = ConversationStore(MemoryStore(), session_id="s1", sync=tab_a)
        b = ConversationStore(MemoryStore(), session_id="s2", sync=tab_b)
        b.attach_sync()
        a.append_user_message("hi", "together")
        assert len(b) == 0

    def test_detach_stops_updates(self, bus_pair):
        tab_a, tab_b = bus_pair
        a = ConversationStore(MemoryStore(), session_id="s", sync=tab_a)
        b = ConversationStore(MemoryStore(), session_id="s", sync=tab_b)
        b.attach_sync()
        b.detach_sync()
        a.append_user_message("hi", "together")
        assert len(b) == 0
        assert not tab_b.has_listeners(SyncEventType.CONVERSATION_UPDATED)
