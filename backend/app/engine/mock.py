"""Scripted inference engine for offline development and testing."""

from __future__ import annotations

import asyncio
from collections import deque
from itertools import count
from typing import TYPE_CHECKING, Any, AsyncIterator

from app.engine.base import Availability

if TYPE_CHECKING:
    from app.chat.cancellation import CancellationToken

Script = list["str | BaseException"]


class ScriptedEngine:
    """Engine whose sessions replay queued chunk scripts.

    Each generation call (streaming or not) pops the next script from the
    queue; when the queue is empty the default response is streamed in
    ``stream_chunk_size`` pieces. A script item that is an exception is
    raised at that point of the stream.
    """

    def __init__(
        self,
        default_response: str = "Mock response",
        *,
        model_name: str = "mock-model",
        stream_chunk_size: int = 10,
        chunk_delay: float = 0.0,
        availability: Availability = Availability.AVAILABLE,
        fail_destroy: bool = False,
    ) -> None:
        self._default_response = default_response
        self._model_name = model_name
        self._stream_chunk_size = stream_chunk_size
        self._chunk_delay = chunk_delay
        self._availability = availability
        self._scripts: deque[Script] = deque()
        self._ids = count(0)
        self.fail_destroy = fail_destroy
        self.sessions: list[ScriptedSession] = []
        self.call_history: list[dict[str, Any]] = []

    # ------------------------------------------------------------------
    # Scripting helpers
    # ------------------------------------------------------------------

    def queue(self, *chunks: "str | BaseException") -> None:
        """Queue the chunks for the next generation call."""
        self._scripts.append(list(chunks))

    def next_script(self) -> Script:
        if self._scripts:
            return self._scripts.popleft()
        text = self._default_response
        size = max(1, self._stream_chunk_size)
        return [text[i : i + size] for i in range(0, len(text), size)]

    @property
    def clone_count(self) -> int:
        return sum(1 for s in self.sessions if s.parent is not None)

    @property
    def live_sessions(self) -> list["ScriptedSession"]:
        return [s for s in self.sessions if s.alive]

    # ------------------------------------------------------------------
    # InferenceEngine
    # ------------------------------------------------------------------

    async def availability(self) -> Availability:
        return self._availability

    async def create_session(self, options: dict[str, Any] | None = None) -> "ScriptedSession":
        return self._new_session(parent=None, options=options or {})

    def list_models(self) -> list[dict[str, str]]:
        return [{"name": self._model_name, "family": "mock"}]

    def _new_session(self, parent: "ScriptedSession | None", options: dict[str, Any]) -> "ScriptedSession":
        session = ScriptedSession(self, next(self._ids), parent=parent, options=options)
        self.sessions.append(session)
        return session


class ScriptedSession:
    """Session handed out by ``ScriptedEngine``."""

    def __init__(
        self,
        engine: ScriptedEngine,
        session_id: int,
        *,
        parent: "ScriptedSession | None" = None,
        options: dict[str, Any] | None = None,
    ) -> None:
        self._engine = engine
        self.session_id = session_id
        self.parent = parent
        self.options = options or {}
        self.alive = True
        self.destroy_calls = 0
        self.appended: list[dict[str, Any]] = []
        self.prompts: list[str] = []

    async def clone(self) -> "ScriptedSession":
        self._check_alive()
        await asyncio.sleep(0)
        return self._engine._new_session(parent=self, options=dict(self.options))

    async def append(self, messages: list[dict[str, Any]]) -> None:
        self._check_alive()
        self.appended.extend(messages)

    async def stream(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        cancel_token: "CancellationToken | None" = None,
    ) -> AsyncIterator[str]:
        self._check_alive()
        self._record("stream", prompt, temperature)
        for item in self._engine.next_script():
            if cancel_token is not None and cancel_token.cancelled:
                return
            await asyncio.sleep(self._engine._chunk_delay)
            if isinstance(item, BaseException):
                raise item
            yield item

    async def prompt(self, prompt: str, *, temperature: float | None = None) -> str:
        self._check_alive()
        self._record("prompt", prompt, temperature)
        parts = []
        for item in self._engine.next_script():
            if isinstance(item, BaseException):
                raise item
            parts.append(item)
        return "".join(parts)

    async def destroy(self) -> None:
        self.destroy_calls += 1
        if not self.alive:
            raise RuntimeError(f"Session {self.session_id} destroyed twice")
        self.alive = False
        if self._engine.fail_destroy:
            raise RuntimeError(f"Session {self.session_id} failed to release resources")

    def _check_alive(self) -> None:
        if not self.alive:
            raise RuntimeError(f"Session {self.session_id} has been destroyed")

    def _record(self, kind: str, prompt: str, temperature: float | None) -> None:
        self.prompts.append(prompt)
        self._engine.call_history.append(
            {
                "kind": kind,
                "session_id": self.session_id,
                "prompt": prompt,
                "temperature": temperature,
            }
        )

    def __repr__(self) -> str:
        return f"<ScriptedSession #{self.session_id} alive={self.alive}>"
