"""Inference engine backed by a LangChain chat model.

A session holds the messages it was created with (the persona system message)
and the structured items appended for the next generation. Generated replies
are not kept: every turn supplies its own context, so the model only ever sees
what the caller passed in. Clones share the chat model and the base messages.
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from app.engine.base import Availability

if TYPE_CHECKING:
    from app.chat.cancellation import CancellationToken

logger = logging.getLogger(__name__)


def _content_to_text(content: Any) -> str:
    """Extract text from a message/chunk ``content`` (string or list of parts)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                parts.append(part.get("text", ""))
        return "".join(parts)
    return ""


def _part_to_langchain(part: dict[str, Any]) -> dict[str, Any]:
    """Convert a ``{"type", "value"}`` content part to LangChain's multimodal format."""
    kind = part.get("type")
    value = part.get("value")
    if kind == "image":
        if isinstance(value, (bytes, bytearray)):
            mime = part.get("mime_type", "image/png")
            encoded = base64.b64encode(value).decode("ascii")
            value = f"data:{mime};base64,{encoded}"
        return {"type": "image_url", "image_url": {"url": value}}
    return {"type": "text", "text": str(value or "")}


def _to_langchain_message(item: dict[str, Any]) -> BaseMessage:
    role = item.get("role", "user")
    content = item.get("content", "")
    if isinstance(content, list):
        content = [_part_to_langchain(part) for part in content]
    if role == "assistant":
        return AIMessage(content=content)
    if role == "system":
        return SystemMessage(content=content)
    return HumanMessage(content=content)


class LangChainSession:
    """Conversation context bound to a shared chat model."""

    def __init__(self, llm: BaseChatModel, messages: list[BaseMessage] | None = None) -> None:
        self._llm = llm
        self._base: list[BaseMessage] = list(messages or [])
        self._pending: list[BaseMessage] = []
        self._destroyed = False

    @property
    def messages(self) -> list[BaseMessage]:
        """Base messages plus items queued for the next generation."""
        return self._base + self._pending

    async def clone(self) -> "LangChainSession":
        self._check_alive()
        return LangChainSession(self._llm, self._base)

    async def append(self, messages: list[dict[str, Any]]) -> None:
        """Queue structured items as the input of the next generation."""
        self._check_alive()
        self._pending.extend(_to_langchain_message(item) for item in messages)

    async def stream(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        cancel_token: "CancellationToken | None" = None,
    ) -> AsyncIterator[str]:
        self._check_alive()
        llm = self._with_temperature(temperature)
        async for chunk in llm.astream(self._take_input(prompt)):
            if cancel_token is not None and cancel_token.cancelled:
                break
            text = _content_to_text(chunk.content)
            if text:
                yield text

    async def prompt(self, prompt: str, *, temperature: float | None = None) -> str:
        self._check_alive()
        result = await self._with_temperature(temperature).ainvoke(self._take_input(prompt))
        return _content_to_text(result.content)

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self._base.clear()
        self._pending.clear()

    def _take_input(self, prompt: str) -> list[BaseMessage]:
        """Build the model input for one generation and clear the queue.

        Structured turns go out after the base messages. A plain prompt is
        already a complete flattened conversation (system line included) and
        goes out on its own.
        """
        pending, self._pending = self._pending, []
        if pending:
            tail = [HumanMessage(content=prompt)] if prompt else []
            return self._base + pending + tail
        return [HumanMessage(content=prompt)]

    def _with_temperature(self, temperature: float | None) -> BaseChatModel:
        if temperature is None or "temperature" not in type(self._llm).model_fields:
            return self._llm
        return self._llm.model_copy(update={"temperature": temperature})

    def _check_alive(self) -> None:
        if self._destroyed:
            raise RuntimeError("Session has been destroyed")


class LangChainEngine:
    """Engine that creates sessions over a lazily built LangChain chat model.

    Availability is probed by building the model: a factory that raises
    (missing credentials, missing package) makes the engine unavailable.
    """

    def __init__(
        self,
        llm_factory: Callable[[], BaseChatModel],
        *,
        model_name: str,
        family: str = "",
    ) -> None:
        self._llm_factory = llm_factory
        self._model_name = model_name
        self._family = family
        self._llm: BaseChatModel | None = None

    async def availability(self) -> Availability:
        if self._llm is not None:
            return Availability.AVAILABLE
        try:
            self._llm = self._llm_factory()
        except Exception as exc:
            logger.warning("Chat model %s unavailable: %s", self._model_name, exc)
            return Availability.UNAVAILABLE
        logger.info("Chat model loaded: %s", self._model_name)
        return Availability.AVAILABLE

    async def create_session(self, options: dict[str, Any] | None = None) -> LangChainSession:
        if self._llm is None and await self.availability() is not Availability.AVAILABLE:
            raise RuntimeError(f"Chat model {self._model_name} is not available")
        options = options or {}
        messages: list[BaseMessage] = []
        if options.get("system_prompt"):
            messages.append(SystemMessage(content=options["system_prompt"]))
        return LangChainSession(self._llm, messages)

    def list_models(self) -> list[dict[str, str]]:
        return [{"name": self._model_name, "family": self._family}]
