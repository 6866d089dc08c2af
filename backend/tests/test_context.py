"""Tests for context window truncation and prompt building."""

from app.chat.context import content_text, has_structured_content, refresh_context
from app.chat.prompts import build_title_prompt, format_prompt, to_structured_items


def _msg(role: str, content: str) -> dict:
    return {"role": role, "content": content}


def test_refresh_keeps_early_user_turns_and_recent_tail() -> None:
    u1, u2, u3, u4 = (_msg("user", f"u{i}") for i in range(1, 5))
    a1, a2, a3, a4 = (_msg("assistant", f"a{i}") for i in range(1, 5))

    window = refresh_context([u1, u2, u3, a1, a2, a3, u4, a4], max_context=4)

    assert window == [u1, u2, u4, a4]


def test_refresh_within_bound_returns_copy() -> None:
    messages = [_msg("user", "hi"), _msg("assistant", "hello")]

    window = refresh_context(messages, max_context=20)

    assert window == messages
    assert window is not messages


def test_refresh_exactly_at_bound_is_unchanged() -> None:
    messages = [_msg("user" if i % 2 == 0 else "assistant", str(i)) for i in range(4)]
    assert refresh_context(messages, max_context=4) == messages


def test_refresh_never_exceeds_bound() -> None:
    messages = [_msg("user" if i % 2 == 0 else "assistant", str(i)) for i in range(41)]
    for max_context in range(0, 12):
        assert len(refresh_context(messages, max_context)) <= max_context


def test_refresh_odd_bound_uses_floor_half() -> None:
    messages = [_msg("user" if i % 2 == 0 else "assistant", str(i)) for i in range(10)]

    window = refresh_context(messages, max_context=5)

    assert [m["content"] for m in window] == ["0", "2", "8", "9"]


def test_refresh_zero_half_drops_everything() -> None:
    messages = [_msg("user", "a"), _msg("assistant", "b")]
    assert refresh_context(messages, max_context=1) == []


def test_refresh_with_few_user_turns() -> None:
    messages = [_msg("user", "q")] + [_msg("assistant", str(i)) for i in range(9)]

    window = refresh_context(messages, max_context=6)

    assert [m["content"] for m in window] == ["q", "6", "7", "8"]


def test_format_prompt_flattens_roles() -> None:
    prompt = format_prompt([_msg("system", "be brief"), _msg("user", "hi")])
    assert prompt == "system: be brief\nuser: hi"


def test_structured_items_skip_system_and_wrap_text() -> None:
    parts = [{"type": "text", "value": "look"}, {"type": "image", "value": "data:image/png;base64,AA=="}]
    messages = [_msg("system", "sys"), _msg("assistant", "earlier"), {"role": "user", "content": parts}]

    assert has_structured_content(messages)
    assert to_structured_items(messages) == [
        {"role": "assistant", "content": [{"type": "text", "value": "earlier"}]},
        {"role": "user", "content": parts},
    ]


def test_content_text_replaces_non_text_parts() -> None:
    parts = [{"type": "text", "value": "see"}, {"type": "image", "value": b"\x00"}]
    assert content_text(parts) == "see\n[image]"


def test_title_prompt_quotes_user_message() -> None:
    prompt = build_title_prompt("plan a trip")
    assert "Generate a title for this message: 'plan a trip'." in prompt
    assert prompt.endswith("Assistant:")
