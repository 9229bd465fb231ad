"""Prompt input: Enter sends, Ctrl+N inserts a newline, Ctrl+Up recalls."""

from __future__ import annotations

from textual.binding import Binding
from textual.events import Key
from textual.message import Message
from textual.widgets import TextArea


class InputBox(TextArea):
    """Multi-line prompt with a recall history of sent messages."""

    class MessageSubmitted(Message):
        """Posted when the user sends a prompt."""

        def __init__(self, text: str) -> None:
            super().__init__()
            self.text = text

    BINDINGS = [
        Binding("ctrl+n", "newline", "New Line"),
        Binding("ctrl+up", "recall", "Recall"),
    ]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._sent: list[str] = []
        self._recall_index: int | None = None

    def set_targets(self, models: tuple[str, ...] | list[str]) -> None:
        """Show which model buckets the next prompt goes to."""
        self.border_title = "to " + " + ".join(models)

    def _on_key(self, event: Key) -> None:
        if event.key == "enter":
            event.prevent_default()
            event.stop()
            text = self.text.strip()
            if text:
                self._sent.append(text)
                self._recall_index = None
                self.post_message(self.MessageSubmitted(text))
                self.clear()

    def action_newline(self) -> None:
        self.insert("\n")

    def action_recall(self) -> None:
        """Step back through previously sent prompts."""
        if not self._sent:
            return
        if self._recall_index is None:
            self._recall_index = len(self._sent) - 1
        elif self._recall_index > 0:
            self._recall_index -= 1
        self.load_text(self._sent[self._recall_index])
