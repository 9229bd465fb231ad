"""CrossTabSync: typed publish/subscribe over a broadcast transport."""

from __future__ import annotations

import copy
import logging
import time
from typing import Any, Callable

from ..core.signals import SignalSource
from ..types import SyncEvent, SyncEventType
from .transport import BroadcastTransport, default_hub

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "codementor-sync"

Callback = Callable[[Any], None]
TransportFactory = Callable[[str], BroadcastTransport]


def _event_key(event_type: str | SyncEventType) -> str:
    if isinstance(event_type, SyncEventType):
        return event_type.value
    return event_type


class CrossTabSync:
    """Best-effort fan-out of state changes to sibling tabs.

    Construction never raises: if the transport factory fails the bus is
    unsupported and every public method is a no-op. Listener exceptions
    are logged per listener and never reach the broadcaster.
    """

    def __init__(
        self,
        channel_name: str = DEFAULT_CHANNEL,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self.channel_name = channel_name
        self._listeners: dict[str, dict[Callback, None]] = {}
        self._window: SignalSource | None = None
        self._channel: BroadcastTransport | None = None

        factory = transport_factory or default_hub.open
        try:
            self._channel = factory(channel_name)
        except Exception as e:
            logger.warning("Cross-tab sync unavailable (%s); running single-tab", e)
            self._channel = None
        if self._channel is not None:
            self._channel.on_message = self._handle_message

    # -- receive --

    def _handle_message(self, envelope: dict) -> None:
        try:
            event = SyncEvent.from_envelope(envelope)
        except (KeyError, TypeError, AttributeError):
            logger.warning("Dropping malformed cross-tab message: %r", envelope)
            return

        for listener in list(self._listeners.get(event.type, ())):
            try:
                listener(copy.deepcopy(event.payload))
            except Exception:
                logger.error("Error in cross-tab sync listener for %s", event.type, exc_info=True)

    # -- public API --

    def subscribe(self, event_type: str | SyncEventType, callback: Callback) -> Callable[[], None]:
        """Register ``callback`` for ``event_type``. Returns an unsubscribe function."""
        key = _event_key(event_type)
        if self._channel is None:
            return lambda: None

        self._listeners.setdefault(key, {})[callback] = None

        def unsubscribe() -> None:
            listeners = self._listeners.get(key)
            if listeners is None:
                return
            listeners.pop(callback, None)
            if not listeners:
                del self._listeners[key]

        return unsubscribe

    def broadcast(self, event_type: str | SyncEventType, payload: Any = None) -> None:
        """Send ``{type, data}`` to other tabs. No ack, no retry."""
        if self._channel is None:
            return
        envelope = SyncEvent(type=_event_key(event_type), payload=payload).to_envelope()
        try:
            self._channel.post_message(envelope)
        except Exception as e:
            logger.warning("Cross-tab broadcast of %s failed: %s", envelope["type"], e)

    def is_supported(self) -> bool:
        return self._channel is not None

    def listener_count(self, event_type: str | SyncEventType | None = None) -> int:
        if event_type is None:
            return sum(len(v) for v in self._listeners.values())
        return len(self._listeners.get(_event_key(event_type), ()))

    def has_listeners(self, event_type: str | SyncEventType) -> bool:
        return _event_key(event_type) in self._listeners

    # -- lifecycle --

    def initialize(self, window: SignalSource) -> None:
        """Attach focus/blur broadcasting to a window signal source."""
        if self._window is window:
            return
        self.dispose()
        self._window = window
        window.add_listener("focus", self._on_focus)
        window.add_listener("blur", self._on_blur)

    def dispose(self) -> None:
        """Detach from the window signal source, if attached."""
        if self._window is None:
            return
        self._window.remove_listener("focus", self._on_focus)
        self._window.remove_listener("blur", self._on_blur)
        self._window = None

    def close(self) -> None:
        """Close the channel and drop all listeners."""
        self.dispose()
        if self._channel is not None:
            self._channel.close()
            self._channel = None
        self._listeners.clear()

    def _on_focus(self) -> None:
        self.broadcast(SyncEventType.TAB_FOCUSED, {"timestamp": int(time.time() * 1000)})

    def _on_blur(self) -> None:
        self.broadcast(SyncEventType.TAB_BLURRED, {"timestamp": int(time.time() * 1000)})


# ---------------------------------------------------------------------------
# Typed facades
# ---------------------------------------------------------------------------

class SessionSync:
    """Session and conversation events."""

    def __init__(self, bus: CrossTabSync) -> None:
        self.bus = bus

    def notify_session_update(self, session_data: dict) -> None:
        self.bus.broadcast(SyncEventType.SESSION_UPDATED, session_data)

    def notify_session_activated(self, session_id: str) -> None:
        self.bus.broadcast(SyncEventType.SESSION_ACTIVATED, {"sessionId": session_id})

    def notify_session_deactivated(self, session_id: str) -> None:
        self.bus.broadcast(SyncEventType.SESSION_DEACTIVATED, {"sessionId": session_id})

    def notify_conversation_update(self, conversation_data: dict) -> None:
        self.bus.broadcast(SyncEventType.CONVERSATION_UPDATED, conversation_data)

    def notify_metadata_update(self, metadata: dict) -> None:
        self.bus.broadcast(SyncEventType.METADATA_UPDATED, metadata)

    def on_session_update(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.SESSION_UPDATED, callback)

    def on_session_activated(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.SESSION_ACTIVATED, callback)

    def on_session_deactivated(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.SESSION_DEACTIVATED, callback)

    def on_conversation_update(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.CONVERSATION_UPDATED, callback)

    def on_metadata_update(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.METADATA_UPDATED, callback)


class TabFocusSync:
    def __init__(self, bus: CrossTabSync) -> None:
        self.bus = bus

    def on_tab_focused(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.TAB_FOCUSED, callback)

    def on_tab_blurred(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.TAB_BLURRED, callback)


class EngagementSync:
    def __init__(self, bus: CrossTabSync) -> None:
        self.bus = bus

    def notify_engagement_update(self, score: float, threshold: float, event_type: str) -> None:
        self.bus.broadcast(
            SyncEventType.ENGAGEMENT_UPDATED,
            {"score": score, "threshold": threshold, "eventType": event_type},
        )

    def notify_threshold_reached(self, score: float, threshold: float) -> None:
        self.bus.broadcast(SyncEventType.THRESHOLD_REACHED, {"score": score, "threshold": threshold})

    def on_engagement_update(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.ENGAGEMENT_UPDATED, callback)

    def on_threshold_reached(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.THRESHOLD_REACHED, callback)


class ProgressSync:
    """Progress, unlock, and UI-state events."""

    def __init__(self, bus: CrossTabSync) -> None:
        self.bus = bus

    def notify_progress_update(self, progress: dict) -> None:
        self.bus.broadcast(SyncEventType.PROGRESS_UPDATED, progress)

    def notify_quiz_unlocked(self, data: dict | None = None) -> None:
        self.bus.broadcast(SyncEventType.QUIZ_UNLOCKED, data or {})

    def notify_practice_unlocked(self, data: dict | None = None) -> None:
        self.bus.broadcast(SyncEventType.PRACTICE_UNLOCKED, data or {})

    def notify_ui_state_update(self, state: dict) -> None:
        self.bus.broadcast(SyncEventType.UI_STATE_UPDATED, state)

    def on_progress_update(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.PROGRESS_UPDATED, callback)

    def on_quiz_unlocked(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.QUIZ_UNLOCKED, callback)

    def on_practice_unlocked(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.PRACTICE_UNLOCKED, callback)

    def on_ui_state_update(self, callback: Callback) -> Callable[[], None]:
        return self.bus.subscribe(SyncEventType.UI_STATE_UPDATED, callback)
