"""Model catalog endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from app.dependencies import ChatServices, get_services

router = APIRouter()


@router.get("")
async def list_models(
    services: ChatServices = Depends(get_services),
) -> dict[str, Any]:
    """Return the models exposed by the configured engine."""
    return {"models": services.engine.list_models()}
