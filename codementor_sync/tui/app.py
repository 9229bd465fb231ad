"""SplitChatApp: Textual application wiring storage, tracker, bus, and backend together."""

from __future__ import annotations

import logging

from textual import events, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.widgets import Footer

from ..backend.client import TutorBackend
from ..config import load_config, validate_config
from ..core.chat import TutorChat, TutorPreferences
from ..core.conversation import ConversationStore
from ..core.engagement import EngagementTracker, policy_from_name
from ..core.signals import AsyncioScheduler, SignalSource
from ..storage import open_store
from ..sync.bus import CrossTabSync
from ..types import MODELS, SyncEventType
from .widgets.chat_view import ChatView
from .widgets.engagement_bar import EngagementBar
from .widgets.input_box import InputBox

logger = logging.getLogger(__name__)


class SplitChatApp(App):
    """Side-by-side tutor chat with both models and a live engagement bar."""

    CSS_PATH = "chat.tcss"
    TITLE = "codementor"

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit"),
        Binding("ctrl+t", "toggle_split", "Split Mode", priority=True),
        Binding("ctrl+g", "switch_model", "Switch Model", priority=True),
        Binding("ctrl+l", "clear_history", "Clear", priority=True),
    ]

    def __init__(
        self,
        config_path: str | None = None,
        session_id: str | None = None,
        split_screen: bool | None = None,
        model: str | None = None,
        session_type: str = "lesson",
        config_dict: dict | None = None,
        backend=None,
        store=None,
        transport_factory=None,
    ) -> None:
        super().__init__()
        self.config = load_config(config_path, config_dict=config_dict)
        errors = validate_config(self.config)
        if errors:
            raise ValueError("Invalid config: " + "; ".join(errors))
        self.split_screen = self.config.chat.split_screen if split_screen is None else split_screen
        self._session_id = session_id or self.config.session_id or None
        self._model = model or self.config.chat.default_model
        self._session_type = session_type
        self._backend = backend
        self._store = store
        self._transport_factory = transport_factory
        self._busy = False

        # Raw host signals; the tracker and bus subscribe to these
        self.activity = SignalSource()
        self.window = SignalSource()

    def compose(self) -> ComposeResult:
        with Horizontal(id="panels"):
            for model in MODELS:
                view = ChatView(model, id=f"{model}-view", classes="model-panel")
                view.border_title = model.title()
                yield view
        yield InputBox(id="input-box")
        yield EngagementBar(id="engagement-bar")
        yield Footer()

    def on_mount(self) -> None:
        config = self.config
        self.store = self._store or open_store(config.storage)

        self.bus: CrossTabSync | None = None
        if config.sync.enabled:
            self.bus = CrossTabSync(config.sync.channel_name, transport_factory=self._transport_factory)
            self.bus.initialize(self.window)

        self.conversation = ConversationStore(
            self.store, session_id=self._session_id, sync=self.bus, active_model=self._model
        )
        restored = self.conversation.hydrate()
        self.conversation.attach_sync()
        if self.bus is not None:
            # redraw listener runs after apply_remote_update
            self.bus.subscribe(SyncEventType.CONVERSATION_UPDATED, self._on_remote_conversation)

        self.tracker = EngagementTracker(
            AsyncioScheduler(),
            session_type=self._session_type,
            on_quiz_trigger=self._on_quiz_trigger,
            on_practice_trigger=self._on_practice_trigger,
            on_preference_poll=self._on_preference_poll,
            follow_up_policy=policy_from_name(config.engagement.follow_up_policy),
            activity_source=self.activity,
            sync=self.bus,
            config=config.engagement,
        )
        self.tracker.start_tracking()

        self.backend = self._backend or TutorBackend(config.backend)
        self.chat = TutorChat(
            self.conversation,
            self.backend,
            tracker=self.tracker,
            preferences=TutorPreferences(ai_model=self._model),
            context_window=config.chat.context_window,
        )

        self._render_history()
        self._mark_active_panel()
        self._system_message(
            f"Session {self.conversation.storage_key}: "
            + ("history restored." if restored else "new conversation.")
        )
        self._system_message(
            "Split mode: both models answer." if self.split_screen
            else f"Single mode: {self._model} answers. Ctrl+G switches model."
        )
        self.set_interval(1.0, self._refresh_engagement)
        self._refresh_engagement()
        self.query_one("#input-box", InputBox).focus()

    async def on_unmount(self) -> None:
        self.tracker.stop_tracking()
        self.conversation.detach_sync()
        if self.bus is not None:
            self.bus.close()
        aclose = getattr(self.backend, "aclose", None)
        if aclose is not None:
            await aclose()
        self.store.close()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def _view(self, model: str) -> ChatView:
        return self.query_one(f"#{model}-view", ChatView)

    @property
    def _engagement_bar(self) -> EngagementBar:
        return self.query_one("#engagement-bar", EngagementBar)

    def _render_history(self) -> None:
        for model in MODELS:
            self._view(model).show_messages(self.conversation.messages(model))

    @property
    def _targets(self) -> tuple[str, ...]:
        return MODELS if self.split_screen else (self.conversation.active_model,)

    def _mark_active_panel(self) -> None:
        for model in MODELS:
            self._view(model).set_class(model in self._targets, "active")
        self.query_one("#input-box", InputBox).set_targets(self._targets)

    def _system_message(self, text: str) -> None:
        for model in MODELS:
            self._view(model).add_system_message(text)

    def _refresh_engagement(self, status: str | None = None) -> None:
        self._engagement_bar.update_analytics(self.tracker.get_engagement_analytics(), status)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def on_input_box_message_submitted(self, event: InputBox.MessageSubmitted) -> None:
        if self._busy:
            return
        self._send(event.text)

    @work(exclusive=True)
    async def _send(self, text: str) -> None:
        self._busy = True
        targets = self._targets
        for model in targets:
            self._view(model).set_pending(True)
        try:
            if self.split_screen:
                await self.chat.send_split_message(text)
            else:
                await self.chat.send_message(text)
        finally:
            for model in targets:
                self._view(model).set_pending(False)
            self._busy = False
            self._render_history()
            self._refresh_engagement()

    # ------------------------------------------------------------------
    # Activity and focus signals
    # ------------------------------------------------------------------

    def on_key(self, event: events.Key) -> None:
        self.activity.emit("keydown")

    def on_click(self, event: events.Click) -> None:
        self.activity.emit("click")

    def on_mouse_move(self, event: events.MouseMove) -> None:
        self.activity.emit("mousemove")

    def on_mouse_scroll_down(self, event: events.MouseScrollDown) -> None:
        self.activity.emit("scroll")

    def on_mouse_scroll_up(self, event: events.MouseScrollUp) -> None:
        self.activity.emit("scroll")

    def on_app_focus(self, event: events.AppFocus) -> None:
        self.window.emit("focus")

    def on_app_blur(self, event: events.AppBlur) -> None:
        self.window.emit("blur")

    # ------------------------------------------------------------------
    # Tracker and bus callbacks
    # ------------------------------------------------------------------

    def _on_quiz_trigger(self) -> None:
        self._system_message("Great engagement! A quick quiz is ready when you are.")
        self._refresh_engagement("quiz unlocked")

    def _on_practice_trigger(self) -> None:
        self._system_message("Great engagement! Try a practice exercise next.")
        self._refresh_engagement("practice unlocked")

    def _on_preference_poll(self) -> None:
        self._system_message("How is the tutoring going? Ctrl+G switches the answering model.")

    def _on_remote_conversation(self, payload: dict) -> None:
        if payload.get("sessionId") == self.conversation.session_id:
            self._render_history()

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def action_toggle_split(self) -> None:
        self.split_screen = not self.split_screen
        self._mark_active_panel()
        self._system_message("Split mode on." if self.split_screen else "Split mode off.")

    def action_switch_model(self) -> None:
        current = self.conversation.active_model
        target = MODELS[(MODELS.index(current) + 1) % len(MODELS)]
        self.chat.update_preferences(ai_model=target)
        self._mark_active_panel()
        self._system_message(f"Now chatting with {target}.")

    def action_clear_history(self) -> None:
        self.conversation.clear()
        self._render_history()
        self._system_message("History cleared.")


def run_chat(
    config_path: str | None = None,
    session_id: str | None = None,
    split_screen: bool | None = None,
    model: str | None = None,
    session_type: str = "lesson",
) -> None:
    """Entry point for the TUI chat."""
    app = SplitChatApp(
        config_path=config_path,
        session_id=session_id,
        split_screen=split_screen,
        model=model,
        session_type=session_type,
    )
    app.run()
