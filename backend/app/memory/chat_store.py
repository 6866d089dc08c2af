"""Conversation history stores, one document per session.

Document schema::

    {
        "session_id": "3f2a...",
        "title": "Planning a trip to Lisbon",
        "created_at": "2026-02-08T10:30:00Z",
        "updated_at": "2026-02-08T11:00:00Z",
        "messages": [
            {
                "role": "user",
                "content": "Hello!",
                "timestamp": "2026-02-08T10:30:00Z"
            },
            {
                "role": "user",
                "content": [
                    {"type": "text", "value": "What is in this picture?"},
                    {"type": "image", "value": "data:image/png;base64,..."}
                ],
                "timestamp": "2026-02-08T10:31:00Z"
            }
        ]
    }

``MongoChatHistoryStore`` persists documents with motor; ``InMemoryChatHistoryStore``
keeps the same documents in a dict for development and tests.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection

logger = logging.getLogger(__name__)

COLLECTION_NAME = "chat_sessions"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean_message(message: dict[str, Any]) -> dict[str, Any]:
    """Normalise a message dict to the stored schema."""
    entry: dict[str, Any] = {
        "role": message.get("role", "user"),
        "content": message.get("content", ""),
        "timestamp": message.get("timestamp") or _now_iso(),
    }
    if message.get("cancelled"):
        entry["cancelled"] = True
    return entry


def _default_title(session_id: str) -> str:
    return f"New Chat {session_id[:8]}"


class ChatHistoryStore(Protocol):
    """Persistence collaborator for per-conversation message lists."""

    async def create_session(self, title: str | None = None) -> str:
        ...

    async def exists(self, session_id: str) -> bool:
        ...

    async def add_message(self, session_id: str, message: dict[str, Any]) -> None:
        ...

    async def get_messages(self, session_id: str) -> list[dict[str, Any]] | None:
        ...

    async def truncate(self, session_id: str, length: int) -> bool:
        ...

    async def get_title(self, session_id: str) -> str | None:
        ...

    async def set_title(self, session_id: str, title: str) -> bool:
        ...

    async def list_sessions(self, limit: int = 50) -> list[dict[str, Any]]:
        ...

    async def delete(self, session_id: str) -> bool:
        ...

    async def close(self) -> None:
        ...


class InMemoryChatHistoryStore:
    """Process-local history store. Not durable."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}

    async def create_session(self, title: str | None = None) -> str:
        session_id = uuid4().hex
        now = _now_iso()
        self._docs[session_id] = {
            "session_id": session_id,
            "title": title or _default_title(session_id),
            "created_at": now,
            "updated_at": now,
            "messages": [],
        }
        return session_id

    async def exists(self, session_id: str) -> bool:
        return session_id in self._docs

    async def add_message(self, session_id: str, message: dict[str, Any]) -> None:
        now = _now_iso()
        doc = self._docs.setdefault(
            session_id,
            {
                "session_id": session_id,
                "title": _default_title(session_id),
                "created_at": now,
                "messages": [],
            },
        )
        doc["messages"].append(_clean_message(message))
        doc["updated_at"] = now

    async def get_messages(self, session_id: str) -> list[dict[str, Any]] | None:
        doc = self._docs.get(session_id)
        if doc is None:
            return None
        return copy.deepcopy(doc["messages"])

    async def truncate(self, session_id: str, length: int) -> bool:
        doc = self._docs.get(session_id)
        if doc is None:
            return False
        doc["messages"] = doc["messages"][: max(0, length)]
        doc["updated_at"] = _now_iso()
        return True

    async def get_title(self, session_id: str) -> str | None:
        doc = self._docs.get(session_id)
        return doc["title"] if doc else None

    async def set_title(self, session_id: str, title: str) -> bool:
        doc = self._docs.get(session_id)
        if doc is None:
            return False
        doc["title"] = title
        doc["updated_at"] = _now_iso()
        return True

    async def list_sessions(self, limit: int = 50) -> list[dict[str, Any]]:
        docs = sorted(self._docs.values(), key=lambda d: d["updated_at"], reverse=True)
        return [
            {
                "session_id": doc["session_id"],
                "title": doc["title"],
                "message_count": len(doc["messages"]),
                "updated_at": doc["updated_at"],
            }
            for doc in docs[:limit]
        ]

    async def delete(self, session_id: str) -> bool:
        return self._docs.pop(session_id, None) is not None

    async def close(self) -> None:
        self._docs.clear()


class MongoChatHistoryStore:
    """MongoDB history store with one document per session and an embedded message array."""

    def __init__(
        self,
        connection_string: str,
        database_name: str,
        collection_name: str = COLLECTION_NAME,
    ) -> None:
        self._client: AsyncIOMotorClient = AsyncIOMotorClient(
            connection_string,
            serverSelectionTimeoutMS=5_000,
        )
        self._collection: AsyncIOMotorCollection = self._client[database_name][collection_name]

    async def initialize(self) -> None:
        """Ping the server and ensure the session_id index exists."""
        await self._client.admin.command("ping")
        await self._collection.create_index("session_id", unique=True, sparse=True)
        logger.info("MongoDB history store ready (%s)", self._collection.full_name)

    async def create_session(self, title: str | None = None) -> str:
        session_id = uuid4().hex
        now = _now_iso()
        await self._collection.insert_one(
            {
                "session_id": session_id,
                "title": title or _default_title(session_id),
                "created_at": now,
                "updated_at": now,
                "messages": [],
            }
        )
        return session_id

    async def exists(self, session_id: str) -> bool:
        return await self._collection.count_documents({"session_id": session_id}, limit=1) > 0

    async def add_message(self, session_id: str, message: dict[str, Any]) -> None:
        """Append a message to the session's document (upsert)."""
        now = _now_iso()
        await self._collection.update_one(
            {"session_id": session_id},
            {
                "$push": {"messages": _clean_message(message)},
                "$set": {"updated_at": now},
                "$setOnInsert": {
                    "session_id": session_id,
                    "title": _default_title(session_id),
                    "created_at": now,
                },
            },
            upsert=True,
        )

    async def get_messages(self, session_id: str) -> list[dict[str, Any]] | None:
        doc = await self._collection.find_one(
            {"session_id": session_id},
            {"messages": 1, "_id": 0},
        )
        if doc is None:
            return None
        return doc.get("messages", [])

    async def truncate(self, session_id: str, length: int) -> bool:
        """Keep only the first ``length`` messages."""
        length = max(0, length)
        update: dict[str, Any] = {"$set": {"updated_at": _now_iso()}}
        if length == 0:
            update["$set"]["messages"] = []
        else:
            update["$push"] = {"messages": {"$each": [], "$slice": length}}
        result = await self._collection.update_one({"session_id": session_id}, update)
        return result.matched_count > 0

    async def get_title(self, session_id: str) -> str | None:
        doc = await self._collection.find_one(
            {"session_id": session_id},
            {"title": 1, "_id": 0},
        )
        return doc.get("title") if doc else None

    async def set_title(self, session_id: str, title: str) -> bool:
        result = await self._collection.update_one(
            {"session_id": session_id},
            {"$set": {"title": title, "updated_at": _now_iso()}},
        )
        return result.matched_count > 0

    async def list_sessions(self, limit: int = 50) -> list[dict[str, Any]]:
        cursor = (
            self._collection.find(
                {},
                {
                    "session_id": 1,
                    "title": 1,
                    "messages": 1,
                    "updated_at": 1,
                    "_id": 0,
                },
            )
            .sort("updated_at", -1)
            .limit(limit)
        )

        sessions = []
        async for doc in cursor:
            sessions.append(
                {
                    "session_id": doc["session_id"],
                    "title": doc.get("title"),
                    "message_count": len(doc.get("messages", [])),
                    "updated_at": doc.get("updated_at"),
                }
            )
        return sessions

    async def delete(self, session_id: str) -> bool:
        result = await self._collection.delete_one({"session_id": session_id})
        return result.deleted_count > 0

    async def close(self) -> None:
        self._client.close()
        logger.info("MongoDB connection closed")
