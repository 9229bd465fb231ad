"""Split assistant text into prose and fenced code segments for rendering."""

from __future__ import annotations

import re
from typing import NamedTuple

CODE_FENCE = re.compile(r"```([\s\S]*?)```")


class MessagePart(NamedTuple):
    type: str  # "text" or "code"
    content: str


def parse_message_with_code_blocks(text: str) -> list[MessagePart]:
    """Return the text/code parts of ``text`` in order.

    Code content is stripped; a leading language tag on the fence line is
    left in place for the renderer to handle.
    """
    if not text:
        return [MessagePart("text", "")]

    parts: list[MessagePart] = []
    last = 0
    for match in CODE_FENCE.finditer(text):
        if match.start() > last:
            parts.append(MessagePart("text", text[last:match.start()]))
        parts.append(MessagePart("code", match.group(1).strip()))
        last = match.end()
    if last < len(text):
        parts.append(MessagePart("text", text[last:]))
    return parts


def split_language(code: str) -> tuple[str | None, str]:
    """Separate a ``java\\n...`` style language tag from fenced code."""
    first, sep, rest = code.partition("\n")
    if sep and first and re.fullmatch(r"[A-Za-z0-9_+#-]+", first):
        return first.lower(), rest
    return None, code
