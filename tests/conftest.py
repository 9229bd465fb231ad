"""Shared fixtures for codementor-sync tests."""

from __future__ import annotations

import pytest

from codementor_sync.config import load_config
from codementor_sync.core.conversation import ConversationStore
from codementor_sync.core.signals import ManualScheduler, SignalSource
from codementor_sync.storage.memory import MemoryStore
from codementor_sync.sync.bus import CrossTabSync
from codementor_sync.sync.transport import LocalBroadcastHub
from codementor_sync.types import BackendError, ChatReply, CodementorConfig, ExecutionResult


class FakeBackend:
    """Stands in for TutorBackend. Replies echo the model and question."""

    def __init__(self, fail_models: set[str] | None = None, execution: ExecutionResult | None = None):
        self.fail_models = fail_models or set()
        self.execution = execution or ExecutionResult(stdout="Hello\n", exit_code=0, success=True)
        self.chat_calls: list[dict] = []
        self.exec_calls: list[dict] = []
        self.ratings: list[tuple[int, int]] = []
        self.sessions: dict[str, dict] = {}
        self.closed = False
        self._next_chat_id = 100

    async def get_tutor_response(self, question, conversation_history, **kwargs) -> ChatReply:
        model = kwargs.get("model")
        self.chat_calls.append({"question": question, "history": conversation_history, **kwargs})
        if model in self.fail_models:
            raise BackendError("HTTP 503: unavailable", endpoint="/tutor/chat", status_code=503)
        self._next_chat_id += 1
        return ChatReply(
            text=f"{model} says: {question}",
            chat_id=self._next_chat_id,
            latency_ms=12.5,
            model_name=f"{model}-test",
            session_id=7,
        )

    async def execute_java_code(self, code, **kwargs) -> ExecutionResult:
        self.exec_calls.append({"code": code, **kwargs})
        return self.execution

    async def rate_message(self, message_id, rating):
        self.ratings.append((message_id, rating))
        return {"status": "success"}

    async def get_active_preserved_session(self, user_id):
        return self.sessions.get(user_id)

    async def reactivate_preserved_session(self, session_id):
        for data in self.sessions.values():
            if data["session_identifier"] == session_id:
                return {**data, "is_active": True}
        raise BackendError("HTTP 404: not found", endpoint="/preserved-sessions", status_code=404)

    async def deactivate_preserved_session(self, session_id):
        return {"session_identifier": session_id, "is_active": False}

    async def aclose(self):
        self.closed = True


def session_data(user_id: str = "3", identifier: str = "sess-abc", **overrides) -> dict:
    data = {
        "id": 1,
        "user_id": user_id,
        "session_identifier": identifier,
        "topic_id": 4,
        "session_metadata": {"phase": "introduction"},
        "is_active": True,
        "session_type": "lesson",
    }
    data.update(overrides)
    return data


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def window() -> SignalSource:
    return SignalSource()


@pytest.fixture
def hub() -> LocalBroadcastHub:
    return LocalBroadcastHub()


@pytest.fixture
def bus_pair(hub):
    """Two buses on the same channel, as if opened by two tabs."""
    a = CrossTabSync("test-channel", transport_factory=hub.open)
    b = CrossTabSync("test-channel", transport_factory=hub.open)
    yield a, b
    a.close()
    b.close()


@pytest.fixture
def conversation(memory_store) -> ConversationStore:
    return ConversationStore(memory_store, session_id="sess-abc")


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def sample_config() -> CodementorConfig:
    return load_config(config_dict={
        "storage": {"backend": "memory"},
        "engagement": {"threshold": 5, "follow_up_policy": "quiz"},
        "chat": {"default_model": "gemini", "context_window": 6},
        "backend": {"base_url": "http://tutor.test/api", "token": "t0k"},
        "sync": {"channel_name": "test-channel"},
    })
