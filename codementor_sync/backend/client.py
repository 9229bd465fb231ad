"""TutorBackend: the remote tutoring API (chat, code execution, sessions, progress)."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from ..types import BackendError, ChatReply, ExecutionResult
from .base import BaseBackend

logger = logging.getLogger(__name__)

FALLBACK_MARKERS = ("temporarily unavailable", "having trouble", "connectivity issues")


def _unwrap(body: Any, endpoint: str) -> Any:
    """Return ``data`` from a ``{status, data, message}`` envelope."""
    if not isinstance(body, dict):
        raise BackendError("Empty response from API", endpoint=endpoint)
    if body.get("status") == "error":
        raise BackendError(body.get("message") or "Error response from API", endpoint=endpoint)
    return body.get("data", body)


def _unwrap_object(body: Any, endpoint: str) -> dict:
    """Like ``_unwrap`` but the payload must be a JSON object (``null`` reads as ``{}``)."""
    data = _unwrap(body, endpoint)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise BackendError(
            f"Unexpected response from {endpoint}: expected an object, got {type(data).__name__}",
            endpoint=endpoint,
        )
    return data


def _normalize_role(role: Any) -> str:
    if role in ("user", "assistant"):
        return role
    if role in ("ai", "bot"):
        return "assistant"
    return "user"


class TutorBackend(BaseBackend):
    """Async client for the tutoring backend."""

    # -- chat --

    async def get_tutor_response(
        self,
        question: str,
        conversation_history: list[dict],
        *,
        model: str | None = None,
        preferences: dict | None = None,
        topic: str | None = None,
        topic_id: int | None = None,
        session_id: int | str | None = None,
        lesson_context: str | None = None,
    ) -> ChatReply:
        endpoint = "/tutor/chat"
        payload: dict[str, Any] = {
            "question": question if question and isinstance(question, str) else "Hello",
            "conversation_history": [
                {"role": _normalize_role(item.get("role")), "content": str(item.get("content") or "")}
                for item in conversation_history
            ],
            "preferences": preferences or {},
        }
        if topic is not None:
            payload["topic"] = topic
        if topic_id is not None:
            payload["topic_id"] = int(topic_id)
        if session_id is not None:
            payload["session_id"] = session_id
        if lesson_context:
            payload["lesson_context"] = lesson_context
        if model in ("together", "gemini"):
            payload["model"] = model

        logger.debug(
            "POST %s model=%s history=%d", endpoint, model or "together", len(payload["conversation_history"])
        )
        started = time.monotonic()
        response = await self.request("POST", endpoint, json=payload)
        latency_ms = round((time.monotonic() - started) * 1000, 1)

        try:
            body = response.json()
        except ValueError as e:
            raise BackendError(f"Invalid JSON from {endpoint}: {e}", endpoint=endpoint) from e

        # 206 Partial Content carries a fallback answer
        partial = response.status_code == 206 or (isinstance(body, dict) and body.get("status") == "partial")
        data = _unwrap_object(body, endpoint)
        text = str(data.get("response") or "")
        is_fallback = partial or bool(data.get("is_fallback") or data.get("fallback"))
        if not is_fallback and any(marker in text for marker in FALLBACK_MARKERS):
            is_fallback = True

        return ChatReply(
            text=text,
            chat_id=data.get("message_id") or data.get("id"),
            latency_ms=data.get("latency_ms", latency_ms),
            model_name=data.get("model") or model or "",
            is_fallback=is_fallback,
            session_id=data.get("session_id"),
        )

    async def rate_message(self, message_id: int, rating: int) -> dict:
        return await self.request_json("POST", f"/messages/{message_id}/rate", json={"rating": rating})

    # -- code execution --

    async def execute_java_code(
        self,
        code: str,
        *,
        stdin: str | None = None,
        session_id: int | str | None = None,
        topic_id: int | None = None,
        conversation_history: list[dict] | None = None,
    ) -> ExecutionResult:
        endpoint = "/tutor/execute-code"
        payload: dict[str, Any] = {"code": code}
        if stdin is not None:
            payload["input"] = stdin
        if session_id is not None:
            payload["session_id"] = session_id
        if topic_id is not None:
            payload["topic_id"] = topic_id
        if conversation_history is not None:
            payload["conversation_history"] = conversation_history

        data = _unwrap_object(await self.request_json("POST", endpoint, json=payload), endpoint)
        execution = data.get("execution", data)
        if not isinstance(execution, dict):
            raise BackendError("Unexpected execution result from API", endpoint=endpoint)
        return ExecutionResult(
            stdout=execution.get("stdout", ""),
            stderr=execution.get("stderr", ""),
            exit_code=execution.get("exit_code"),
            duration_ms=float(execution.get("executionTime", execution.get("duration_ms", 0)) or 0),
            success=bool(execution.get("success", False)),
        )

    # -- progress --

    async def update_progress(
        self,
        topic_id: int,
        *,
        status: str = "in_progress",
        time_spent_minutes: int = 0,
        exercises_completed: int = 0,
        exercises_total: int = 0,
        completed_subtopics: list[str] | None = None,
        progress_data: dict[str, float] | None = None,
    ) -> dict:
        endpoint = "/tutor/update-progress"
        payload: dict[str, Any] = {
            "topic_id": int(topic_id),
            "status": status,
            "time_spent_minutes": int(time_spent_minutes),
            "exercises_completed": int(exercises_completed),
            "exercises_total": int(exercises_total),
            "completed_subtopics": json.dumps(completed_subtopics or []),
        }
        if progress_data:
            payload["progress_data"] = json.dumps(progress_data)
        return _unwrap_object(await self.request_json("POST", endpoint, json=payload), endpoint)

    # -- preserved sessions --

    async def get_active_preserved_session(self, user_id: str) -> dict | None:
        endpoint = f"/preserved-sessions/active/{user_id}"
        try:
            body = await self.request_json("GET", endpoint)
        except BackendError as e:
            if e.status_code == 404:
                return None
            raise
        return _unwrap_object(body, endpoint) or None

    async def reactivate_preserved_session(self, session_id: str) -> dict:
        endpoint = f"/preserved-sessions/reactivate/{session_id}"
        return _unwrap_object(await self.request_json("POST", endpoint), endpoint)

    async def deactivate_preserved_session(self, session_id: str) -> dict:
        endpoint = f"/preserved-sessions/deactivate/{session_id}"
        return _unwrap_object(await self.request_json("POST", endpoint), endpoint)

    async def update_conversation_history(self, session_id: str, history: list[dict]) -> dict:
        endpoint = f"/preserved-sessions/{session_id}/conversation"
        return _unwrap_object(
            await self.request_json("PUT", endpoint, json={"conversation_history": history}),
            endpoint,
        )

    async def update_session_metadata(self, session_id: str, metadata: dict) -> dict:
        endpoint = f"/preserved-sessions/{session_id}/metadata"
        return _unwrap_object(await self.request_json("PUT", endpoint, json=metadata), endpoint)
