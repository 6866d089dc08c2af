"""Prompt construction for chat turns and title derivation."""

from typing import Any

from app.chat.context import Message, content_text
from app.personality.loader import get_system_prompt

TITLE_SYSTEM_PROMPT = (
    "You are an AI assistant. Generate a concise, engaging title under 6 words "
    "that reflects the core intent of the user's first message, from their "
    "perspective. The title should summarize the query clearly to aid in future "
    "searchability. Respond *only* with the title, no explanations."
)


def build_system_prompt() -> str:
    """Return the persona system prompt."""
    return get_system_prompt().strip()


def format_prompt(messages: list[Message]) -> str:
    """Flatten a message list into ``role: content`` lines."""
    return "\n".join(f"{msg['role']}: {content_text(msg['content'])}" for msg in messages)


def build_title_prompt(user_content: Any) -> str:
    """Build the single-shot prompt asking the model for a conversation title."""
    user_prompt = f"Generate a title for this message: '{content_text(user_content)}'."
    return f"{TITLE_SYSTEM_PROMPT}\n\nUser: {user_prompt}\nAssistant:"


def to_structured_items(messages: list[Message]) -> list[Message]:
    """Convert messages to discrete content-part items for ``Session.append``.

    System messages are skipped; plain-string contents are wrapped as a single
    text part.
    """
    items: list[Message] = []
    for msg in messages:
        content = msg.get("content")
        if isinstance(content, list):
            items.append({"role": msg["role"], "content": content})
        elif msg.get("role") != "system":
            items.append(
                {"role": msg["role"], "content": [{"type": "text", "value": content or ""}]}
            )
    return items
