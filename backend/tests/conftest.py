"""Shared test fixtures for the chat backend."""

from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from app.chat.cancellation import CancellationHub
from app.chat.coordinator import ConversationCoordinator
from app.chat.pool import SessionPool
from app.config import Settings
from app.dependencies import ChatServices, close_services, create_services
from app.engine.mock import ScriptedEngine
from app.main import create_app
from app.memory.chat_store import InMemoryChatHistoryStore


@pytest.fixture
def test_settings() -> Settings:
    """Settings pinned to the in-process engine and store."""
    return Settings(
        engine_provider="mock",
        history_backend="memory",
        idle_timeout_seconds=300,
        max_context=20,
        log_level="info",
    )


@pytest.fixture
def engine() -> ScriptedEngine:
    return ScriptedEngine()


@pytest_asyncio.fixture
async def pool(engine: ScriptedEngine) -> AsyncGenerator[SessionPool, None]:
    """Initialized pool with a five-minute idle timeout."""
    session_pool = SessionPool(idle_timeout_seconds=300)
    await session_pool.initialize(engine)
    yield session_pool
    await session_pool.shutdown()


@pytest.fixture
def hub() -> CancellationHub:
    return CancellationHub()


@pytest.fixture
def coordinator(pool: SessionPool, hub: CancellationHub) -> ConversationCoordinator:
    return ConversationCoordinator(pool, hub, system_prompt="You are a test assistant.")


@pytest_asyncio.fixture
async def services(
    test_settings: Settings, engine: ScriptedEngine
) -> AsyncGenerator[ChatServices, None]:
    chat_services = await create_services(
        test_settings, engine=engine, history=InMemoryChatHistoryStore()
    )
    yield chat_services
    await close_services(chat_services)


@pytest_asyncio.fixture
async def client(
    test_settings: Settings, services: ChatServices
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    app = create_app(test_settings)
    app.state.services = services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def ws_client(test_settings: Settings, engine: ScriptedEngine) -> Generator[TestClient, None, None]:
    """Sync client running the full lifespan, for WebSocket flows."""
    app = create_app(test_settings, engine=engine, history=InMemoryChatHistoryStore())
    with TestClient(app) as tc:
        yield tc
