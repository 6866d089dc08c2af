"""Health check endpoint for infrastructure monitoring."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends

from app.dependencies import ChatServices, get_services
from app.engine.base import Availability

logger = logging.getLogger(__name__)
router = APIRouter()


async def _check_engine(services: ChatServices) -> dict[str, Any]:
    """Probe the inference engine and return status."""
    try:
        availability = Availability(await services.engine.availability())
    except Exception as exc:
        logger.warning("Engine health check failed: %s", exc)
        return {"status": "unhealthy", "error": str(exc)}
    status = "healthy" if availability is Availability.AVAILABLE else "unhealthy"
    return {"status": status, "availability": availability.value}


def _check_pool(services: ChatServices) -> dict[str, Any]:
    stats = services.pool.stats()
    status = "healthy" if stats["state"] == "ready" else "unhealthy"
    return {"status": status, **stats}


@router.get("")
async def health_check(
    services: ChatServices = Depends(get_services),
) -> dict[str, Any]:
    """Return aggregate health of the chat services."""
    components = {
        "engine": await _check_engine(services),
        "session_pool": _check_pool(services),
        "history": {"status": "healthy", "backend": services.history_backend},
    }

    overall = (
        "healthy"
        if all(c["status"] == "healthy" for c in components.values())
        else "degraded"
    )

    return {
        "status": overall,
        "services": components,
    }
