"""Session management endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import ChatServices, get_history, get_services
from app.memory.chat_store import ChatHistoryStore
from app.models.sessions import RenameRequest, SessionHistory, SessionSummary

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=list[SessionSummary])
async def list_sessions(
    history: ChatHistoryStore = Depends(get_history),
) -> list[dict[str, Any]]:
    """Return recent chat sessions, newest first."""
    return await history.list_sessions(limit=50)


@router.get("/{session_id}/history", response_model=SessionHistory)
async def get_session_history(
    session_id: str,
    history: ChatHistoryStore = Depends(get_history),
) -> dict[str, Any]:
    """Return the full message history for a session."""
    messages = await history.get_messages(session_id)
    if messages is None:
        raise HTTPException(status_code=404, detail="Session not found")

    return {
        "session_id": session_id,
        "title": await history.get_title(session_id),
        "messages": messages,
    }


@router.patch("/{session_id}")
async def rename_session(
    session_id: str,
    body: RenameRequest,
    history: ChatHistoryStore = Depends(get_history),
) -> dict[str, str]:
    """Rename a chat session."""
    if not await history.set_title(session_id, body.title.strip()):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"status": "renamed", "session_id": session_id, "title": body.title.strip()}


@router.delete("/{session_id}")
async def delete_session(
    session_id: str,
    services: ChatServices = Depends(get_services),
) -> dict[str, str]:
    """Delete a chat session, its history and its pooled model session."""
    if not await services.history.delete(session_id):
        raise HTTPException(status_code=404, detail="Session not found")

    await services.pool.discard(session_id)
    services.coordinator.reset(session_id)
    logger.info("Deleted session %s", session_id)
    return {"status": "deleted", "session_id": session_id}
