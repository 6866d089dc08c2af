"""Tests for the in-memory chat history store."""

import asyncio

import pytest

from app.memory.chat_store import InMemoryChatHistoryStore


@pytest.fixture
def store() -> InMemoryChatHistoryStore:
    return InMemoryChatHistoryStore()


@pytest.mark.asyncio
async def test_create_session_uses_default_title(store: InMemoryChatHistoryStore) -> None:
    session_id = await store.create_session()

    assert await store.exists(session_id)
    assert await store.get_title(session_id) == f"New Chat {session_id[:8]}"
    assert await store.get_messages(session_id) == []


@pytest.mark.asyncio
async def test_add_and_get_messages(store: InMemoryChatHistoryStore) -> None:
    session_id = await store.create_session("Trip")
    await store.add_message(session_id, {"role": "user", "content": "hi", "extra": 1})
    await store.add_message(
        session_id, {"role": "assistant", "content": "hel", "cancelled": True}
    )

    messages = await store.get_messages(session_id)

    assert [m["content"] for m in messages] == ["hi", "hel"]
    assert "extra" not in messages[0]
    assert "timestamp" in messages[0]
    assert "cancelled" not in messages[0]
    assert messages[1]["cancelled"] is True


@pytest.mark.asyncio
async def test_returned_messages_are_copies(store: InMemoryChatHistoryStore) -> None:
    session_id = await store.create_session()
    await store.add_message(session_id, {"role": "user", "content": "hi"})

    messages = await store.get_messages(session_id)
    messages[0]["content"] = "changed"

    assert (await store.get_messages(session_id))[0]["content"] == "hi"


@pytest.mark.asyncio
async def test_missing_session(store: InMemoryChatHistoryStore) -> None:
    assert await store.get_messages("nope") is None
    assert await store.get_title("nope") is None
    assert await store.set_title("nope", "x") is False
    assert await store.truncate("nope", 0) is False
    assert await store.delete("nope") is False


@pytest.mark.asyncio
async def test_truncate_keeps_prefix(store: InMemoryChatHistoryStore) -> None:
    session_id = await store.create_session()
    for text in ["a", "b", "c", "d"]:
        await store.add_message(session_id, {"role": "user", "content": text})

    assert await store.truncate(session_id, 2) is True

    assert [m["content"] for m in await store.get_messages(session_id)] == ["a", "b"]


@pytest.mark.asyncio
async def test_list_sessions_newest_first(store: InMemoryChatHistoryStore) -> None:
    older = await store.create_session("older")
    await asyncio.sleep(0.01)
    newer = await store.create_session("newer")
    await store.add_message(newer, {"role": "user", "content": "hi"})

    sessions = await store.list_sessions()

    assert [s["session_id"] for s in sessions] == [newer, older]
    assert sessions[0]["message_count"] == 1
    assert len(await store.list_sessions(limit=1)) == 1


@pytest.mark.asyncio
async def test_rename_and_delete(store: InMemoryChatHistoryStore) -> None:
    session_id = await store.create_session()

    assert await store.set_title(session_id, "Renamed") is True
    assert await store.get_title(session_id) == "Renamed"
    assert await store.delete(session_id) is True
    assert not await store.exists(session_id)
