"""All dataclasses, enums, and type aliases for codementor-sync."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Literal, Protocol, runtime_checkable


# ---------------------------------------------------------------------------
# Models & senders
# ---------------------------------------------------------------------------

ModelName = Literal["together", "gemini"]
Sender = Literal["user", "ai", "bot", "gemini", "together"]

MODELS: tuple[str, ...] = ("together", "gemini")
SENDERS: tuple[str, ...] = ("user", "ai", "bot", "gemini", "together")

_id_lock = threading.Lock()
_last_id = 0


def next_message_id() -> int:
    """Millisecond-clock id, bumped so it is strictly greater than the last one issued."""
    global _last_id
    with _id_lock:
        candidate = int(time.time() * 1000)
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
        return candidate


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Message
# ---------------------------------------------------------------------------

@dataclass
class MessageMeta:
    """Correlation data for the backend chat turn. Never persisted."""
    chat_id: int | None = None
    latency_ms: float | None = None
    model_name: str = ""


@dataclass
class Message:
    id: int
    text: str
    sender: str  # "user", or the model tag that produced it
    timestamp: datetime = field(default_factory=_now)
    model_tag: str | None = None
    meta: MessageMeta | None = None

    @property
    def is_user(self) -> bool:
        return self.sender == "user"

    @property
    def role(self) -> str:
        return "user" if self.is_user else "assistant"

    def dedup_key(self) -> tuple[str, datetime, str]:
        return (self.sender, self.timestamp, self.text)

    def to_dict(self) -> dict:
        """Persisted JSON shape. ``meta`` is not included."""
        return {
            "id": self.id,
            "text": self.text,
            "sender": self.sender,
            "timestamp": self.timestamp.isoformat(),
            "modelTag": self.model_tag,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        """Inverse of ``to_dict``. Raises on malformed input."""
        if not isinstance(data, dict):
            raise TypeError(f"expected dict, got {type(data).__name__}")
        sender = data["sender"]
        if sender not in SENDERS:
            raise ValueError(f"unknown sender: {sender!r}")
        text = data["text"]
        if not isinstance(text, str):
            raise TypeError("message text must be a string")
        ts = datetime.fromisoformat(data["timestamp"])
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        model_tag = data.get("modelTag")
        if model_tag is not None and model_tag not in MODELS:
            raise ValueError(f"unknown model tag: {model_tag!r}")
        return cls(
            id=int(data["id"]),
            text=text,
            sender=sender,
            timestamp=ts,
            model_tag=model_tag,
        )


# ---------------------------------------------------------------------------
# Engagement
# ---------------------------------------------------------------------------

EngagementEventType = Literal[
    "message",
    "code_execution",
    "scroll",
    "interaction",
    "time",
    "quiz_completed",
    "practice_completed",
]

FollowUpActivity = Literal["quiz", "practice"]


@dataclass
class EngagementEvent:
    type: str
    points: float
    timestamp: datetime = field(default_factory=_now)


@dataclass
class EngagementAnalytics:
    """Read-only summary derived from tracker state."""
    score: float
    threshold: float
    is_threshold_reached: bool
    triggered_activity: str | None
    session_duration_s: int
    event_count: int
    events_by_type: dict[str, int] = field(default_factory=dict)
    average_points_per_minute: float = 0.0


# ---------------------------------------------------------------------------
# Cross-tab sync
# ---------------------------------------------------------------------------

class SyncEventType(str, Enum):
    SESSION_UPDATED = "session_updated"
    SESSION_ACTIVATED = "session_activated"
    SESSION_DEACTIVATED = "session_deactivated"
    CONVERSATION_UPDATED = "conversation_updated"
    METADATA_UPDATED = "metadata_updated"
    TAB_FOCUSED = "tab_focused"
    TAB_BLURRED = "tab_blurred"
    ENGAGEMENT_UPDATED = "engagement_updated"
    THRESHOLD_REACHED = "threshold_reached"
    PROGRESS_UPDATED = "progress_updated"
    QUIZ_UNLOCKED = "quiz_unlocked"
    PRACTICE_UNLOCKED = "practice_unlocked"
    UI_STATE_UPDATED = "ui_state_updated"


@dataclass
class SyncEvent:
    type: str
    payload: Any = None

    def to_envelope(self) -> dict:
        return {"type": self.type, "data": self.payload}

    @classmethod
    def from_envelope(cls, envelope: dict) -> SyncEvent:
        return cls(type=envelope["type"], payload=envelope.get("data"))


# ---------------------------------------------------------------------------
# Preserved session
# ---------------------------------------------------------------------------

@dataclass
class PreservedSession:
    """Server-side learning session mirrored into local storage."""
    id: int
    user_id: str
    session_identifier: str
    topic_id: int | None = None
    lesson_id: int | None = None
    conversation_history: list[dict] = field(default_factory=list)
    session_metadata: dict = field(default_factory=dict)
    is_active: bool = True
    last_activity: str = ""
    session_type: str = "lesson"
    ai_models_used: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_identifier": self.session_identifier,
            "topic_id": self.topic_id,
            "lesson_id": self.lesson_id,
            "conversation_history": list(self.conversation_history),
            "session_metadata": dict(self.session_metadata),
            "is_active": self.is_active,
            "last_activity": self.last_activity,
            "session_type": self.session_type,
            "ai_models_used": list(self.ai_models_used),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PreservedSession:
        return cls(
            id=int(data["id"]),
            user_id=str(data["user_id"]),
            session_identifier=str(data["session_identifier"]),
            topic_id=data.get("topic_id"),
            lesson_id=data.get("lesson_id"),
            conversation_history=list(data.get("conversation_history") or []),
            session_metadata=dict(data.get("session_metadata") or {}),
            is_active=bool(data.get("is_active", True)),
            last_activity=data.get("last_activity", ""),
            session_type=data.get("session_type", "lesson"),
            ai_models_used=list(data.get("ai_models_used") or []),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

@dataclass
class ChatReply:
    text: str
    chat_id: int | None = None
    latency_ms: float | None = None
    model_name: str = ""
    is_fallback: bool = False
    session_id: int | None = None


@dataclass
class ExecutionResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    duration_ms: float = 0.0
    success: bool = False


class BackendError(Exception):
    def __init__(self, message: str, endpoint: str, status_code: int | None = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class StorageError(Exception):
    """Raised by key-value backends on write/read failure (quota, I/O)."""


@runtime_checkable
class Scheduler(Protocol):
    """Timer primitive: one-shot callbacks that can be cancelled."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def now(self) -> float: ...


@runtime_checkable
class TimerHandle(Protocol):
    def cancel(self) -> None: ...


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class StorageConfig:
    backend: str = "filesystem"  # "memory", "filesystem", "sqlite"
    root: str = ".codementor/store"
    sqlite_path: str = ".codementor/store.db"


@dataclass
class EngagementConfig:
    threshold: float = 10.0
    scroll_debounce_s: float = 3.0
    interaction_debounce_s: float = 2.0
    time_bonus_interval_s: float = 300.0
    preference_poll_delay_s: float = 1.0
    auto_trigger: bool = True
    follow_up_policy: str = "session_type"  # "session_type", "coin_flip", "quiz", "practice"


@dataclass
class SyncConfig:
    enabled: bool = True
    channel_name: str = "codementor-sync"


@dataclass
class ChatConfig:
    default_model: str = "together"
    context_window: int = 10
    split_screen: bool = False


@dataclass
class BackendConfig:
    base_url: str = "http://localhost:8000/api"
    timeout: float = 60.0
    token: str = ""
    max_retries: int = 3


@dataclass
class CodementorConfig:
    version: str = "0.1"
    storage: StorageConfig = field(default_factory=StorageConfig)
    engagement: EngagementConfig = field(default_factory=EngagementConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    session_id: str = ""
