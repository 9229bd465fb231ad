"""ConversationStore: per-model message histories with a deduplicated combined view."""

from __future__ import annotations

import json
import logging
from typing import Iterator

from ..types import MODELS, Message, MessageMeta, StorageError, SyncEventType, next_message_id
from .kv_store import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "conversation_history"
DEFAULT_CONTEXT_WINDOW = 10


def storage_key_for(session_id: str | None) -> str:
    """``conversation_history`` or ``conversation_history_<session_id>``."""
    if session_id:
        return f"{STORAGE_KEY}_{session_id}"
    return STORAGE_KEY


def format_history(messages: list[Message]) -> list[dict]:
    """Minimal (role, content) pairs for the backend."""
    return [{"role": m.role, "content": m.text} for m in messages]


def _check_model(model: str) -> str:
    if model not in MODELS:
        raise ValueError(f"Unknown model '{model}' (expected one of: {', '.join(MODELS)})")
    return model


class ConversationStore:
    """Two ordered message buckets, one per AI model, for the current session.

    Appends are strictly in call order. User messages sent in split-screen
    mode are stored in both buckets; ``get_combined_view`` collapses them
    back to one entry by (sender, timestamp, text). Every mutation
    persists to the key-value store; persistence failures are logged and
    the in-memory history stays authoritative.
    """

    def __init__(
        self,
        store: KeyValueStore,
        session_id: str | None = None,
        sync=None,
        active_model: str = "together",
    ) -> None:
        self.store = store
        self.session_id = session_id
        self.sync = sync
        self.active_model = _check_model(active_model)
        self._buckets: dict[str, list[Message]] = {m: [] for m in MODELS}
        self._unsubscribe = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def storage_key(self) -> str:
        return storage_key_for(self.session_id)

    def messages(self, model: str) -> list[Message]:
        return list(self._buckets[_check_model(model)])

    def active_messages(self) -> list[Message]:
        return self.messages(self.active_model)

    def __len__(self) -> int:
        return sum(len(b) for b in self._buckets.values())

    def get_combined_view(self) -> Iterator[Message]:
        """Both buckets merged by timestamp with shared user messages shown once.

        Returns a fresh generator on every call; nothing is cached.
        """
        merged = [m for model in MODELS for m in self._buckets[model]]
        merged.sort(key=lambda m: (m.timestamp, 0 if m.is_user else 1, m.id))
        seen: set[tuple] = set()
        for msg in merged:
            if msg.is_user:
                key = msg.dedup_key()
                if key in seen:
                    continue
                seen.add(key)
            yield msg

    def get_context_window(self, model: str, max_messages: int = DEFAULT_CONTEXT_WINDOW) -> list[dict]:
        """Most recent ``max_messages`` of ``model``'s bucket as role/content dicts."""
        bucket = self._buckets[_check_model(model)]
        if max_messages <= 0:
            return []
        return format_history(bucket[-max_messages:])

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append_user_message(self, text: str, target_model: str) -> Message | None:
        """Append a user message to one bucket. Blank text is ignored."""
        _check_model(target_model)
        if not text or not text.strip():
            return None
        msg = Message(id=next_message_id(), text=text, sender="user", model_tag=target_model)
        self._buckets[target_model].append(msg)
        self._after_mutation()
        return msg

    def append_user_message_both(self, text: str) -> Message | None:
        """Split-screen send: the same message object goes into every bucket."""
        if not text or not text.strip():
            return None
        msg = Message(id=next_message_id(), text=text, sender="user")
        for model in MODELS:
            self._buckets[model].append(msg)
        self._after_mutation()
        return msg

    def append_assistant_message(
        self,
        text: str,
        model: str,
        meta: MessageMeta | None = None,
    ) -> Message:
        _check_model(model)
        msg = Message(id=next_message_id(), text=text, sender=model, model_tag=model, meta=meta)
        self._buckets[model].append(msg)
        self._after_mutation()
        return msg

    def switch_active_model(self, model: str) -> None:
        self.active_model = _check_model(model)

    def clear(self) -> None:
        for bucket in self._buckets.values():
            bucket.clear()
        self._after_mutation()

    def _after_mutation(self) -> None:
        self.persist()
        if self.sync is not None:
            self.sync.broadcast(
                SyncEventType.CONVERSATION_UPDATED,
                {"sessionId": self.session_id, "history": self.serialize()},
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize(self) -> list[dict]:
        """Flat list of entries, each tagged with the bucket it lives in."""
        entries = []
        for model in MODELS:
            for msg in self._buckets[model]:
                entry = msg.to_dict()
                entry["modelTag"] = model
                entries.append(entry)
        return entries

    def _parse(self, raw: object) -> dict[str, list[Message]]:
        if not isinstance(raw, list):
            raise TypeError(f"expected a list, got {type(raw).__name__}")
        buckets: dict[str, list[Message]] = {m: [] for m in MODELS}
        for entry in raw:
            msg = Message.from_dict(entry)
            if msg.model_tag is None:
                msg.model_tag = msg.sender if msg.sender in MODELS else self.active_model
            buckets[msg.model_tag].append(msg)
        return buckets

    def persist(self) -> bool:
        """Write both buckets to the session's storage slot. Never raises."""
        try:
            self.store.set_item(self.storage_key, json.dumps(self.serialize()))
        except (StorageError, OSError, TypeError, ValueError) as e:
            logger.warning("Failed to persist conversation to %s: %s", self.storage_key, e)
            return False
        return True

    def hydrate(self, session_id: str | None = None) -> bool:
        """Replace state from storage. Missing or malformed data yields empty buckets.

        Returns True if prior history was loaded.
        """
        if session_id is not None:
            self.session_id = session_id
        self._buckets = {m: [] for m in MODELS}

        try:
            raw_text = self.store.get_item(self.storage_key)
        except (StorageError, OSError) as e:
            logger.warning("Failed to read conversation from %s: %s", self.storage_key, e)
            return False
        if raw_text is None:
            return False

        try:
            self._buckets = self._parse(json.loads(raw_text))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring malformed conversation history in %s: %s", self.storage_key, e)
            self._buckets = {m: [] for m in MODELS}
            return False

        logger.debug(
            "Hydrated %s: %s",
            self.storage_key,
            ", ".join(f"{m}={len(b)}" for m, b in self._buckets.items()),
        )
        return True

    # ------------------------------------------------------------------
    # Cross-tab
    # ------------------------------------------------------------------

    def apply_remote_update(self, payload: dict) -> bool:
        """Adopt history broadcast by another tab for the same session."""
        if not isinstance(payload, dict) or payload.get("sessionId") != self.session_id:
            return False
        try:
            buckets = self._parse(payload.get("history"))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring malformed remote conversation update: %s", e)
            return False
        self._buckets = buckets
        return True

    def attach_sync(self) -> None:
        """Follow conversation updates broadcast by sibling tabs."""
        if self.sync is None or self._unsubscribe is not None:
            return
        self._unsubscribe = self.sync.subscribe(
            SyncEventType.CONVERSATION_UPDATED, self.apply_remote_update
        )

    def detach_sync(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
