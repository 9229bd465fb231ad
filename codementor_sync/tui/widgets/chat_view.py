"""Scrollable per-model chat panel."""

from __future__ import annotations

from rich.markup import escape
from rich.syntax import Syntax
from textual.widgets import RichLog

from ...core.code_blocks import parse_message_with_code_blocks, split_language
from ...types import Message

MODEL_COLORS = {"together": "green", "gemini": "blue"}


class ChatView(RichLog):
    """Renders one model's bucket. Fenced code is syntax-highlighted."""

    def __init__(self, model: str, **kwargs) -> None:
        super().__init__(markup=True, wrap=True, auto_scroll=True, **kwargs)
        self.model = model
        self._pending = False

    def add_message(self, msg: Message) -> None:
        if msg.is_user:
            self.write(f"[bold cyan]You:[/bold cyan] {escape(msg.text)}")
            self.write("")
            return

        color = MODEL_COLORS.get(msg.sender, "magenta")
        header = f"[bold {color}]{msg.sender.title()}:[/bold {color}]"
        if msg.meta is not None and msg.meta.latency_ms is not None:
            header += f" [dim]({msg.meta.latency_ms:.0f} ms)[/dim]"
        self.write(header)
        for part in parse_message_with_code_blocks(msg.text):
            if part.type == "code":
                language, code = split_language(part.content)
                self.write(Syntax(code, language or "java", theme="monokai", word_wrap=True))
            elif part.content.strip():
                self.write(escape(part.content.strip()))
        self.write("")

    def add_system_message(self, text: str) -> None:
        self.write(f"[dim italic]{escape(text)}[/dim italic]")
        self.write("")

    def show_messages(self, messages: list[Message]) -> None:
        """Redraw the panel from scratch."""
        self.clear()
        for msg in messages:
            self.add_message(msg)
        if self._pending:
            self.write("[dim]Thinking...[/dim]")

    def set_pending(self, pending: bool) -> None:
        if pending and not self._pending:
            self.write("[dim]Thinking...[/dim]")
        self._pending = pending
