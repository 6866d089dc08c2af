"""Tests for the LangChain-backed inference engine."""

import pytest
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from pydantic import Field

from app.chat.cancellation import CancellationHub, CancellationToken
from app.chat.coordinator import ConversationCoordinator
from app.chat.pool import SessionPool
from app.engine.base import Availability
from app.engine.langchain_engine import LangChainEngine


class RecordingChatModel(GenericFakeChatModel):
    """Fake chat model that keeps the input of every call."""

    seen: list = Field(default_factory=list)

    def _generate(self, messages, stop=None, run_manager=None, **kwargs):
        self.seen.append(list(messages))
        return super()._generate(messages, stop=stop, run_manager=run_manager, **kwargs)


def _fake_model(*responses: str) -> RecordingChatModel:
    return RecordingChatModel(messages=iter([AIMessage(content=r) for r in responses]))


@pytest.mark.asyncio
async def test_stream_yields_text_without_keeping_reply() -> None:
    model = _fake_model("hello there world")
    engine = LangChainEngine(lambda: model, model_name="fake")
    session = await engine.create_session({"system_prompt": "be nice"})

    chunks = [chunk async for chunk in session.stream("hi")]

    assert "".join(chunks) == "hello there world"
    assert len(chunks) > 1
    assert model.seen == [[HumanMessage(content="hi")]]
    assert session.messages == [SystemMessage(content="be nice")]


@pytest.mark.asyncio
async def test_stream_stops_when_token_cancelled() -> None:
    engine = LangChainEngine(lambda: _fake_model("one two three four"), model_name="fake")
    session = await engine.create_session()
    token = CancellationToken()

    received = []
    async for chunk in session.stream("go", cancel_token=token):
        received.append(chunk)
        token.cancel()

    assert received == ["one"]


@pytest.mark.asyncio
async def test_clone_shares_base_messages_only() -> None:
    model = _fake_model("first", "second")
    engine = LangChainEngine(lambda: model, model_name="fake")
    base = await engine.create_session({"system_prompt": "sys"})
    clone = await base.clone()

    await clone.append([{"role": "user", "content": [{"type": "text", "value": "q"}]}])
    reply = await clone.prompt("")

    assert reply == "first"
    assert model.seen[-1][0] == SystemMessage(content="sys")
    assert len(model.seen[-1]) == 2
    assert base.messages == clone.messages == [SystemMessage(content="sys")]


@pytest.mark.asyncio
async def test_model_input_stays_within_context_window() -> None:
    model = _fake_model(*[f"reply {i}" for i in range(20)])
    engine = LangChainEngine(lambda: model, model_name="fake")
    pool = SessionPool()
    await pool.initialize(engine, {"system_prompt": "persona"})
    coordinator = ConversationCoordinator(
        pool, CancellationHub(), system_prompt="persona", max_context=4
    )
    try:
        for i in range(10):
            await coordinator.run_turn("c", f"u{i}")
            (message,) = model.seen[-1]
            lines = message.content.split("\n")
            assert len(lines) <= 4 + 2
            assert lines[0] == "system: persona"
            assert message.content.count("persona") == 1

        parts = [{"type": "text", "value": "look"}, {"type": "image", "value": "data:,"}]
        await coordinator.run_turn("c", parts)
        structured = model.seen[-1]
        assert len(structured) <= 4 + 2
        assert sum(isinstance(m, SystemMessage) for m in structured) == 1

        coordinator.load_history("c", [{"role": "user", "content": "u0"}])
        await coordinator.run_turn("c", "again")
        assert model.seen[-1][0].content == "system: persona\nuser: u0\nuser: again"

        title = await coordinator.derive_title("c", "u0")
        assert title == "reply 12"
        assert len(model.seen[-1]) == 1
    finally:
        await pool.shutdown()


@pytest.mark.asyncio
async def test_append_converts_attachment_parts() -> None:
    engine = LangChainEngine(lambda: _fake_model("ok"), model_name="fake")
    session = await engine.create_session()

    await session.append(
        [
            {
                "role": "user",
                "content": [
                    {"type": "text", "value": "what is this"},
                    {"type": "image", "value": b"\x89PNG"},
                ],
            }
        ]
    )

    content = session.messages[-1].content
    assert content[0] == {"type": "text", "text": "what is this"}
    assert content[1]["type"] == "image_url"
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")


@pytest.mark.asyncio
async def test_destroy_is_idempotent_and_blocks_use() -> None:
    engine = LangChainEngine(lambda: _fake_model("ok"), model_name="fake")
    session = await engine.create_session()

    await session.destroy()
    await session.destroy()

    with pytest.raises(RuntimeError):
        await session.clone()


@pytest.mark.asyncio
async def test_failing_factory_reports_unavailable() -> None:
    def factory():
        raise RuntimeError("GOOGLE_API_KEY is not configured")

    engine = LangChainEngine(factory, model_name="gemini", family="gemini")

    assert await engine.availability() is Availability.UNAVAILABLE
    with pytest.raises(RuntimeError):
        await engine.create_session()
    assert engine.list_models() == [{"name": "gemini", "family": "gemini"}]
