"""TutorChat: send turns to the tutoring backend and record them per model."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass

import httpx

from ..types import MODELS, BackendError, ChatReply, ExecutionResult, Message, MessageMeta
from .conversation import DEFAULT_CONTEXT_WINDOW, ConversationStore

logger = logging.getLogger(__name__)

ERROR_REPLY = "Sorry, I encountered an error while processing your request. Please try again later."
FALLBACK_REPLY = "I apologize, but I couldn't generate a response."


@dataclass
class TutorPreferences:
    response_length: str = "medium"  # "short", "medium", "detailed"
    code_examples: bool = True
    explanation_detail: str = "detailed"  # "brief", "detailed", "comprehensive"
    challenge_difficulty: str = "medium"  # "beginner", "medium", "advanced"
    ai_model: str = "together"

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload["model"] = self.ai_model
        return payload


@dataclass
class Topic:
    id: int
    title: str


@dataclass
class SendResult:
    success: bool
    message: Message | None
    session_id: int | None = None
    error: Exception | None = None


class TutorChat:
    """Conversation turns against the backend, single-model or split-screen.

    Network failures never propagate: they become an assistant-style error
    message in the bucket of the model that failed, so the history stays
    a complete log of the session.
    """

    def __init__(
        self,
        conversation: ConversationStore,
        backend,
        tracker=None,
        preferences: TutorPreferences | None = None,
        topic: Topic | None = None,
        context_window: int = DEFAULT_CONTEXT_WINDOW,
    ) -> None:
        self.conversation = conversation
        self.backend = backend
        self.tracker = tracker
        self.preferences = preferences or TutorPreferences(ai_model=conversation.active_model)
        self.topic = topic
        self.context_window = context_window
        self.backend_session_id: int | None = None
        self.is_loading = False

    def update_preferences(self, **changes) -> TutorPreferences:
        for key, value in changes.items():
            if not hasattr(self.preferences, key):
                raise AttributeError(f"Unknown preference: {key}")
            setattr(self.preferences, key, value)
        if "ai_model" in changes:
            self.conversation.switch_active_model(changes["ai_model"])
        return self.preferences

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def _ask(self, text: str, model: str) -> SendResult:
        """Call the backend for ``model`` and append the reply or an error bubble."""
        history = self.conversation.get_context_window(model, self.context_window)
        try:
            reply: ChatReply = await self.backend.get_tutor_response(
                question=text,
                conversation_history=history,
                model=model,
                preferences=self.preferences.to_payload(),
                topic=self.topic.title if self.topic else None,
                topic_id=self.topic.id if self.topic else None,
                session_id=self.backend_session_id,
            )
        except (BackendError, httpx.HTTPError) as e:
            logger.error("Error sending message to %s tutor: %s", model, e)
            message = self.conversation.append_assistant_message(ERROR_REPLY, model)
            return SendResult(success=False, message=message, error=e)

        meta = MessageMeta(chat_id=reply.chat_id, latency_ms=reply.latency_ms, model_name=reply.model_name)
        message = self.conversation.append_assistant_message(reply.text or FALLBACK_REPLY, model, meta=meta)
        if not reply.is_fallback and reply.session_id:
            self.backend_session_id = reply.session_id
        return SendResult(success=not reply.is_fallback, message=message, session_id=reply.session_id)

    async def send_message(self, text: str, model: str | None = None) -> SendResult | None:
        """Single-model turn. Blank input returns None without touching history."""
        model = model or self.conversation.active_model
        user_message = self.conversation.append_user_message(text, model)
        if user_message is None:
            return None
        if self.tracker is not None:
            self.tracker.track_message()

        self.is_loading = True
        try:
            return await self._ask(text, model)
        finally:
            self.is_loading = False

    async def send_split_message(self, text: str) -> dict[str, SendResult] | None:
        """Split-screen turn: one shared user message, one reply per model."""
        user_message = self.conversation.append_user_message_both(text)
        if user_message is None:
            return None
        if self.tracker is not None:
            self.tracker.track_message()

        self.is_loading = True
        try:
            results = await asyncio.gather(*(self._ask(text, model) for model in MODELS))
        finally:
            self.is_loading = False
        return dict(zip(MODELS, results))

    async def start_topic_session(self, topic: Topic, model: str | None = None) -> SendResult:
        """Open a topic with a welcome message from the tutor."""
        self.topic = topic
        model = model or self.conversation.active_model
        question = f"I'd like to learn about {topic.title}. Please provide a brief introduction."
        try:
            reply: ChatReply = await self.backend.get_tutor_response(
                question=question,
                conversation_history=[],
                model=model,
                preferences=self.preferences.to_payload(),
                topic=topic.title,
                topic_id=topic.id,
            )
        except (BackendError, httpx.HTTPError) as e:
            logger.error("Error starting topic session: %s", e)
            text = (
                f"Welcome to the {topic.title} topic! I'm experiencing some technical "
                "difficulties right now, but feel free to ask questions."
            )
            message = self.conversation.append_assistant_message(text, model)
            return SendResult(success=False, message=message, error=e)

        if reply.is_fallback:
            text = reply.text or (
                f"Welcome to the {topic.title} topic! "
                "(Note: AI services are currently experiencing issues.)"
            )
        else:
            text = reply.text or f"Welcome to the {topic.title} topic!"
            if reply.session_id:
                self.backend_session_id = reply.session_id
        meta = MessageMeta(chat_id=reply.chat_id, latency_ms=reply.latency_ms, model_name=reply.model_name)
        message = self.conversation.append_assistant_message(text, model, meta=meta)
        return SendResult(success=not reply.is_fallback, message=message, session_id=reply.session_id)

    async def rate_message(self, message: Message, rating: int) -> bool:
        """Forward a rating for an assistant reply. Needs the backend chat id."""
        if message.meta is None or message.meta.chat_id is None:
            logger.warning("Message %s has no backend chat id; rating not sent", message.id)
            return False
        try:
            await self.backend.rate_message(message.meta.chat_id, rating)
        except (BackendError, httpx.HTTPError) as e:
            logger.warning("Failed to rate message %s: %s", message.id, e)
            return False
        return True

    # ------------------------------------------------------------------
    # Code execution
    # ------------------------------------------------------------------

    async def run_code(self, code: str, stdin: str | None = None) -> ExecutionResult | None:
        """Execute Java code remotely. Failures come back as an unsuccessful result."""
        if not code.strip():
            logger.warning("No code to execute")
            return None
        if self.tracker is not None:
            self.tracker.track_code_execution()
        model = self.conversation.active_model
        try:
            return await self.backend.execute_java_code(
                code,
                stdin=stdin,
                session_id=self.backend_session_id,
                topic_id=self.topic.id if self.topic else None,
                conversation_history=self.conversation.get_context_window(model, self.context_window),
            )
        except (BackendError, httpx.HTTPError) as e:
            logger.error("Code execution failed: %s", e)
            return ExecutionResult(
                stderr=f"Failed to execute code: {e}",
                success=False,
            )