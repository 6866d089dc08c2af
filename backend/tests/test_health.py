"""Tests for health check and model catalog endpoints."""

import pytest
from httpx import ASGITransport, AsyncClient

from app.config import Settings
from app.dependencies import close_services, create_services
from app.engine.base import Availability
from app.engine.mock import ScriptedEngine
from app.main import create_app
from app.memory.chat_store import InMemoryChatHistoryStore


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Health endpoint returns 200 with service status."""
    response = await client.get("/api/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert "services" in data
    assert data["services"]["engine"]["availability"] == "available"
    assert data["services"]["session_pool"]["state"] == "ready"
    assert data["services"]["session_pool"]["active_sessions"] == 0


@pytest.mark.asyncio
async def test_health_degraded_when_engine_unavailable(test_settings: Settings) -> None:
    engine = ScriptedEngine(availability=Availability.NEEDS_DOWNLOAD)
    services = await create_services(
        test_settings, engine=engine, history=InMemoryChatHistoryStore()
    )
    app = create_app(test_settings)
    app.state.services = services
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/api/health")
    finally:
        await close_services(services)

    data = response.json()
    assert data["status"] == "degraded"
    assert data["services"]["engine"]["availability"] == "needs-download"
    assert data["services"]["session_pool"]["state"] == "degraded"


@pytest.mark.asyncio
async def test_list_models(client: AsyncClient) -> None:
    response = await client.get("/api/models")
    assert response.status_code == 200
    assert response.json() == {"models": [{"name": "mock-model", "family": "mock"}]}
