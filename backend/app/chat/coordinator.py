"""Runs chat turns against pooled sessions and keeps per-conversation context."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from app.chat.cancellation import DEFAULT_SLOT, CancellationHub
from app.chat.context import Message, has_structured_content, refresh_context
from app.chat.pool import SessionPool
from app.chat.prompts import build_title_prompt, format_prompt, to_structured_items
from app.engine.errors import GenerationFailure

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTEXT = 20

Sink = Callable[[str], Awaitable[None]]


@dataclass
class TurnResult:
    """Outcome of a chat turn. ``cancelled`` marks a user-stopped partial answer."""

    text: str
    cancelled: bool = False


class ConversationCoordinator:
    """Streams turns through the session pool and maintains context windows.

    Turns for the same conversation are serialized; different conversations
    run independently.
    """

    def __init__(
        self,
        pool: SessionPool,
        hub: CancellationHub,
        *,
        system_prompt: str = "",
        max_context: int = DEFAULT_MAX_CONTEXT,
        temperature: float | None = None,
    ) -> None:
        self._pool = pool
        self._hub = hub
        self._system_prompt = system_prompt
        self._max_context = max_context
        self._temperature = temperature
        self._contexts: dict[str, list[Message]] = {}
        self._turn_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @property
    def pool(self) -> SessionPool:
        return self._pool

    @property
    def max_context(self) -> int:
        return self._max_context

    # ------------------------------------------------------------------
    # Context window
    # ------------------------------------------------------------------

    def context(self, conversation_id: str) -> list[Message]:
        """Return a copy of the conversation's current context window."""
        return list(self._contexts.get(conversation_id, []))

    def load_history(self, conversation_id: str, messages: list[Message]) -> list[Message]:
        """Replace the context window from stored history (reload, edit, regenerate)."""
        window = refresh_context(messages, self._max_context)
        self._contexts[conversation_id] = window
        return list(window)

    def reset(self, conversation_id: str) -> None:
        """Forget the context window ("new conversation")."""
        self._contexts.pop(conversation_id, None)
        if not self._lock_users.get(conversation_id):
            self._turn_locks.pop(conversation_id, None)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def run_turn(
        self,
        conversation_id: str,
        new_user_content: Any,
        *,
        system_prompt: str | None = None,
        context: list[Message] | None = None,
        options: dict[str, Any] | None = None,
        sink: Sink | None = None,
        slot: str = DEFAULT_SLOT,
    ) -> TurnResult:
        """Generate the assistant reply for one user message.

        Every chunk is forwarded to ``sink`` as it arrives. If the slot is
        cancelled mid-stream, forwarding stops and the partial text is
        returned with ``cancelled=True``.

        Args:
            conversation_id: Conversation whose pooled session is used.
            new_user_content: A string, or a list of ``{"type", "value"}``
                parts when the message carries attachments.
            system_prompt: Overrides the coordinator's system prompt.
            context: Replaces the stored context window before the turn.
            options: Generation options (``temperature``).
            sink: Async callback receiving each chunk.
            slot: Cancellation slot this turn can be stopped through.

        Raises:
            EngineUnavailable, PoolUnavailable: No session can be provided.
            GenerationFailure: The engine failed mid-stream.
        """
        token = self._hub.new_token(slot)
        options = options or {}
        temperature = options.get("temperature", self._temperature)

        async with self._conversation_lock(conversation_id):
            if context is not None:
                self._contexts[conversation_id] = list(context)
            window = self._contexts.setdefault(conversation_id, [])
            window.append({"role": "user", "content": new_user_content})
            messages = [
                {"role": "system", "content": system_prompt or self._system_prompt},
                *window,
            ]

            chunks: list[str] = []
            cancelled = False
            async with self._pool.lease(conversation_id) as session:
                try:
                    if has_structured_content(messages):
                        await session.append(to_structured_items(messages))
                        prompt = ""
                    else:
                        prompt = format_prompt(messages)
                    stream = session.stream(prompt, temperature=temperature, cancel_token=token)
                except Exception as exc:
                    raise GenerationFailure(conversation_id) from exc

                iterator = stream.__aiter__()
                try:
                    while True:
                        if token.cancelled:
                            cancelled = True
                            break
                        try:
                            chunk = await iterator.__anext__()
                        except StopAsyncIteration:
                            break
                        except Exception as exc:
                            logger.exception("Generation failed for conversation %s", conversation_id)
                            raise GenerationFailure(conversation_id, "".join(chunks)) from exc
                        if token.cancelled:
                            cancelled = True
                            break
                        chunks.append(chunk)
                        if sink is not None:
                            await sink(chunk)
                finally:
                    await _close_stream(stream)

            final_text = "".join(chunks)
            window = self._contexts.setdefault(conversation_id, [])
            window.append({"role": "assistant", "content": final_text})
            if len(window) >= self._max_context:
                self._contexts[conversation_id] = refresh_context(window, self._max_context)

        if cancelled:
            logger.info(
                "Turn cancelled for conversation %s after %d chunks",
                conversation_id,
                len(chunks),
            )
        return TurnResult(text=final_text, cancelled=cancelled)

    async def derive_title(self, conversation_id: str, first_user_message: Any) -> str | None:
        """Ask the conversation's own session for a short title.

        Returns:
            The trimmed title, or None if the engine produced nothing.
        """
        async with self._conversation_lock(conversation_id):
            async with self._pool.lease(conversation_id) as session:
                try:
                    response = await session.prompt(
                        build_title_prompt(first_user_message),
                        temperature=self._temperature,
                    )
                except Exception as exc:
                    raise GenerationFailure(conversation_id) from exc

        title = (response or "").strip()
        return title or None

    def cancel(self, slot: str = DEFAULT_SLOT) -> bool:
        """Stop the turn running in ``slot``, if any."""
        return self._hub.cancel(slot)

    async def shutdown(self) -> None:
        """Release every pooled session and drop all context windows."""
        await self._pool.shutdown()
        self._contexts.clear()
        self._turn_locks.clear()
        self._lock_users.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _conversation_lock(self, conversation_id: str) -> AsyncIterator[None]:
        lock = self._turn_locks.setdefault(conversation_id, asyncio.Lock())
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users.get(conversation_id, 1) - 1
            if remaining:
                self._lock_users[conversation_id] = remaining
            else:
                # No holder or waiter left.
                self._lock_users.pop(conversation_id, None)
                if self._turn_locks.get(conversation_id) is lock:
                    del self._turn_locks[conversation_id]


async def _close_stream(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception:
        logger.warning("Error while closing generation stream", exc_info=True)
