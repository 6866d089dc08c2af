"""WebSocket endpoint for real-time chat with the assistant."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import suppress
from dataclasses import dataclass
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.dependencies import ChatServices, get_services
from app.engine.errors import (
    ChatServiceError,
    EngineUnavailable,
    GenerationFailure,
    PoolUnavailable,
)
from app.models.messages import IncomingMessage, IncomingType, OutgoingMessage, OutgoingType

logger = logging.getLogger(__name__)

ENGINE_UNAVAILABLE_NOTICE = (
    "The language model is not available. Check the engine configuration and restart the server."
)


@dataclass
class _Connection:
    """Per-socket state: the attached conversation and the running turn."""

    slot: str
    session_id: str | None = None
    turn: asyncio.Task | None = None

    @property
    def busy(self) -> bool:
        return self.turn is not None and not self.turn.done()


async def websocket_chat(websocket: WebSocket) -> None:
    """Handle WebSocket connections for real-time chat.

    Protocol:
        Client sends JSON: {"type": "text", "content": "...", "attachments": [...]}
        Client sends JSON: {"type": "cancel"} to stop the running answer
        Client sends JSON: {"type": "new"} to start a new conversation
        Client sends JSON: {"type": "edit", "index": n, "content": "..."}
        Client sends JSON: {"type": "regenerate", "index": n}
        Server sends JSON: {"type": "status"|"stream"|"text"|"title"|"error",
                            "content": "...", "session_id": "...", "timestamp": "..."}
    """
    services = get_services(websocket)
    conn = _Connection(slot=f"ws:{uuid.uuid4().hex}")
    await websocket.accept()

    requested = websocket.query_params.get("session_id")
    if requested:
        await _attach_session(websocket, services, conn, requested)
    logger.info("WebSocket connected: slot=%s session_id=%s", conn.slot, conn.session_id)
    await _send_message(websocket, OutgoingType.STATUS, "Connected", conn.session_id)

    try:
        while True:
            raw = await websocket.receive_text()

            try:
                incoming = IncomingMessage.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError):
                await _send_message(websocket, OutgoingType.ERROR, "Invalid message", conn.session_id)
                continue

            if incoming.type is IncomingType.CANCEL:
                services.coordinator.cancel(conn.slot)
                continue

            if conn.busy:
                await _send_message(
                    websocket,
                    OutgoingType.ERROR,
                    "A response is already being generated",
                    conn.session_id,
                )
                continue

            if incoming.type is IncomingType.NEW:
                conn.session_id = None
                await _send_message(websocket, OutgoingType.STATUS, "New conversation", None)
            elif incoming.type is IncomingType.TEXT:
                content = incoming.user_content()
                if not content:
                    await _send_message(
                        websocket, OutgoingType.ERROR, "Empty message", conn.session_id
                    )
                    continue
                _start_turn(websocket, services, conn, content, incoming.temperature)
            elif incoming.type is IncomingType.EDIT:
                await _handle_edit(websocket, services, conn, incoming)
            elif incoming.type is IncomingType.REGENERATE:
                await _handle_regenerate(websocket, services, conn, incoming)

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected: slot=%s", conn.slot)
    finally:
        services.hub.discard(conn.slot)
        if conn.busy:
            conn.turn.cancel()
            with suppress(asyncio.CancelledError):
                await conn.turn


async def _attach_session(
    websocket: WebSocket,
    services: ChatServices,
    conn: _Connection,
    session_id: str,
) -> None:
    """Resume a stored conversation: rebuild its context window from history."""
    messages = await services.history.get_messages(session_id)
    if messages is None:
        await _send_message(websocket, OutgoingType.ERROR, "Session not found", None)
        return
    conn.session_id = session_id
    services.coordinator.load_history(session_id, _context_messages(messages))


async def _handle_edit(
    websocket: WebSocket,
    services: ChatServices,
    conn: _Connection,
    incoming: IncomingMessage,
) -> None:
    """Replace the user message at ``index`` and answer again from there."""
    messages = await _current_messages(services, conn)
    index = incoming.index
    if (
        messages is None
        or index is None
        or not 0 <= index < len(messages)
        or messages[index]["role"] != "user"
    ):
        await _send_message(websocket, OutgoingType.ERROR, "Invalid edit", conn.session_id)
        return

    content = incoming.user_content()
    if not content:
        await _send_message(websocket, OutgoingType.ERROR, "Empty message", conn.session_id)
        return

    await services.history.truncate(conn.session_id, index)
    services.coordinator.load_history(conn.session_id, _context_messages(messages[:index]))
    _start_turn(websocket, services, conn, content, incoming.temperature)


async def _handle_regenerate(
    websocket: WebSocket,
    services: ChatServices,
    conn: _Connection,
    incoming: IncomingMessage,
) -> None:
    """Drop the assistant answer at ``index`` (and everything after) and re-ask."""
    messages = await _current_messages(services, conn)
    index = incoming.index
    if (
        messages is None
        or index is None
        or not 1 <= index < len(messages)
        or messages[index - 1]["role"] != "user"
    ):
        await _send_message(websocket, OutgoingType.ERROR, "Invalid regenerate", conn.session_id)
        return

    user_content = messages[index - 1]["content"]
    await services.history.truncate(conn.session_id, index - 1)
    services.coordinator.load_history(conn.session_id, _context_messages(messages[: index - 1]))
    _start_turn(websocket, services, conn, user_content, incoming.temperature)


def _start_turn(
    websocket: WebSocket,
    services: ChatServices,
    conn: _Connection,
    content: Any,
    temperature: float | None,
) -> None:
    conn.turn = asyncio.create_task(
        _process_turn(websocket, services, conn, content, temperature)
    )


async def _process_turn(
    websocket: WebSocket,
    services: ChatServices,
    conn: _Connection,
    content: Any,
    temperature: float | None,
) -> None:
    """Run one turn, streaming chunks back over the socket."""
    try:
        is_new_session = conn.session_id is None
        if is_new_session:
            conn.session_id = await services.history.create_session()
        session_id = conn.session_id

        await services.history.add_message(session_id, {"role": "user", "content": content})
        await _send_message(websocket, OutgoingType.STATUS, "Thinking...", session_id)

        async def sink(chunk: str) -> None:
            await _send_message(websocket, OutgoingType.STREAM, chunk, session_id)

        options = {"temperature": temperature} if temperature is not None else {}
        try:
            result = await services.coordinator.run_turn(
                session_id,
                content,
                options=options,
                sink=sink,
                slot=conn.slot,
            )
        except (EngineUnavailable, PoolUnavailable) as exc:
            logger.warning("Turn rejected for session %s: %s", session_id, exc)
            await _send_message(websocket, OutgoingType.ERROR, ENGINE_UNAVAILABLE_NOTICE, session_id)
            return
        except GenerationFailure as exc:
            cause = exc.__cause__ or exc
            await _send_message(
                websocket, OutgoingType.ERROR, f"Generation failed: {cause}", session_id
            )
            return

        await services.history.add_message(
            session_id,
            {"role": "assistant", "content": result.text, "cancelled": result.cancelled},
        )
        await _send_message(
            websocket, OutgoingType.TEXT, result.text, session_id, cancelled=result.cancelled
        )

        if is_new_session:
            await _update_title(websocket, services, session_id, content)

    except WebSocketDisconnect:
        logger.info("Client left during turn for session %s", conn.session_id)
    except Exception:
        logger.exception("Error processing turn in session %s", conn.session_id)
        try:
            await _send_message(websocket, OutgoingType.ERROR, "Processing error", conn.session_id)
        except Exception:
            logger.debug("Could not report error to client", exc_info=True)


async def _update_title(
    websocket: WebSocket,
    services: ChatServices,
    session_id: str,
    first_user_message: Any,
) -> None:
    """Derive and store a title for a freshly created conversation."""
    try:
        title = await services.coordinator.derive_title(session_id, first_user_message)
    except ChatServiceError as exc:
        logger.warning("Title derivation failed for session %s: %s", session_id, exc)
        return
    if not title:
        return
    await services.history.set_title(session_id, title)
    await _send_message(websocket, OutgoingType.TITLE, title, session_id)


async def _current_messages(
    services: ChatServices, conn: _Connection
) -> list[dict[str, Any]] | None:
    if conn.session_id is None:
        return None
    return await services.history.get_messages(conn.session_id)


def _context_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Strip stored metadata, keeping only role and content."""
    return [{"role": m["role"], "content": m["content"]} for m in messages]


async def _send_message(
    websocket: WebSocket,
    msg_type: OutgoingType,
    content: str,
    session_id: str | None,
    *,
    cancelled: bool | None = None,
) -> None:
    """Send a structured JSON message over the WebSocket."""
    payload = OutgoingMessage(
        type=msg_type,
        content=content,
        session_id=session_id,
        cancelled=cancelled,
    )
    await websocket.send_json(payload.model_dump(mode="json", exclude_none=True))
