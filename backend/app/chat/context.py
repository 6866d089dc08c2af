"""Bounded conversation context window."""

from __future__ import annotations

from typing import Any

Message = dict[str, Any]


def refresh_context(messages: list[Message], max_context: int) -> list[Message]:
    """Trim ``messages`` to at most ``max_context`` entries.

    When the history is too long, the window keeps the first ``max_context // 2``
    user messages followed by the last ``max_context // 2`` messages overall,
    both in their original order. Middle history and early assistant turns are
    dropped first.

    Args:
        messages: Ordered ``{"role", "content"}`` dicts.
        max_context: Upper bound on the returned length.

    Returns:
        A new list; the input is not modified.
    """
    if len(messages) <= max_context:
        return list(messages)

    half = max_context // 2
    if half <= 0:
        return []
    head = [msg for msg in messages if msg.get("role") == "user"][:half]
    tail = messages[-half:]
    return head + tail


def has_structured_content(messages: list[Message]) -> bool:
    """True if any message carries a list of content parts (attachments)."""
    return any(isinstance(msg.get("content"), list) for msg in messages)


def content_text(content: Any) -> str:
    """Flatten message content to plain text (attachments become placeholders)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for item in content:
            if not isinstance(item, dict):
                parts.append(str(item))
            elif item.get("type") == "text":
                parts.append(str(item.get("value", "")))
            else:
                parts.append(f"[{item.get('type', 'attachment')}]")
        return "\n".join(parts)
    return str(content)
