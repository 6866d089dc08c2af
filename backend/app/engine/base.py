"""Inference engine and session protocols."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Protocol

if TYPE_CHECKING:
    from app.chat.cancellation import CancellationToken


class Availability(str, Enum):
    """Result of probing the engine."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    NEEDS_DOWNLOAD = "needs-download"


class Session(Protocol):
    """Opaque stateful inference context.

    Each clone holds its own conversational state while sharing the model.
    A session must be destroyed exactly once by its owner.
    """

    async def clone(self) -> "Session":
        ...

    async def append(self, messages: list[dict[str, Any]]) -> None:
        ...

    def stream(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        cancel_token: "CancellationToken | None" = None,
    ) -> AsyncIterator[str]:
        ...

    async def prompt(self, prompt: str, *, temperature: float | None = None) -> str:
        ...

    async def destroy(self) -> None:
        ...


class InferenceEngine(Protocol):
    """Factory for base sessions."""

    async def availability(self) -> Availability:
        ...

    async def create_session(self, options: dict[str, Any] | None = None) -> Session:
        ...

    def list_models(self) -> list[dict[str, str]]:
        ...
