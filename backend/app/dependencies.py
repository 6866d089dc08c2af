"""Application composition and dependency providers for FastAPI.

The chat services live on ``app.state.services`` for the lifetime of the
application; there are no module-level singletons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from starlette.requests import HTTPConnection

from app.chat.cancellation import CancellationHub
from app.chat.coordinator import ConversationCoordinator
from app.chat.pool import SessionPool
from app.chat.prompts import build_system_prompt
from app.config import Settings
from app.engine.base import InferenceEngine
from app.engine.factory import create_engine
from app.memory.chat_store import (
    ChatHistoryStore,
    InMemoryChatHistoryStore,
    MongoChatHistoryStore,
)

logger = logging.getLogger(__name__)


@dataclass
class ChatServices:
    """Everything a request needs to run chat turns."""

    engine: InferenceEngine
    pool: SessionPool
    hub: CancellationHub
    coordinator: ConversationCoordinator
    history: ChatHistoryStore
    history_backend: str


async def create_history_store(settings: Settings) -> tuple[ChatHistoryStore, str]:
    """Connect the configured history store, falling back to memory on failure."""
    if settings.history_backend.lower() != "mongodb":
        return InMemoryChatHistoryStore(), "memory"

    logger.info("Connecting to MongoDB at %s", settings.mongodb_uri)
    store = MongoChatHistoryStore(settings.mongodb_uri, settings.mongodb_database)
    try:
        await store.initialize()
    except Exception:
        logger.exception("MongoDB unavailable - history will not survive restarts")
        await store.close()
        return InMemoryChatHistoryStore(), "memory"
    return store, "mongodb"


async def create_services(
    settings: Settings,
    *,
    engine: InferenceEngine | None = None,
    history: ChatHistoryStore | None = None,
) -> ChatServices:
    """Build and initialize the chat services.

    Engine or storage failures are logged and leave the services degraded;
    they never abort startup.
    """
    engine = engine or create_engine(settings)
    if history is not None:
        backend = type(history).__name__
    else:
        history, backend = await create_history_store(settings)

    system_prompt = build_system_prompt()
    pool = SessionPool(idle_timeout_seconds=settings.idle_timeout_seconds)
    ready = await pool.initialize(engine, {"system_prompt": system_prompt})
    if ready:
        logger.info("Session pool initialized successfully")
    else:
        logger.warning("Inference engine not available - chat turns will fail fast")

    hub = CancellationHub()
    coordinator = ConversationCoordinator(
        pool,
        hub,
        system_prompt=system_prompt,
        max_context=settings.max_context,
        temperature=settings.temperature,
    )
    return ChatServices(
        engine=engine,
        pool=pool,
        hub=hub,
        coordinator=coordinator,
        history=history,
        history_backend=backend,
    )


async def close_services(services: ChatServices) -> None:
    """Release pooled sessions and storage connections."""
    await services.coordinator.shutdown()
    await services.history.close()


def get_services(conn: HTTPConnection) -> ChatServices:
    """Return the services attached to the running application."""
    return conn.app.state.services


def get_history(conn: HTTPConnection) -> ChatHistoryStore:
    return get_services(conn).history
