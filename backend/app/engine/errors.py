"""Error taxonomy for the inference engine and the session pool.

A cancelled generation is not represented here: cancellation is a normal
outcome and is reported through ``TurnResult.cancelled``.
"""

from __future__ import annotations


class ChatServiceError(Exception):
    """Base class for errors surfaced by the chat core."""


class EngineUnavailable(ChatServiceError):
    """The engine reported it cannot serve requests, so no base session exists."""

    def __init__(self, availability: str = "unavailable") -> None:
        self.availability = availability
        super().__init__(f"Inference engine is not available ({availability})")


class PoolUnavailable(ChatServiceError):
    """The session pool was used before ``initialize()`` or after ``shutdown()``."""

    def __init__(self, state: str) -> None:
        self.state = state
        super().__init__(f"Session pool is not ready (state={state})")


class GenerationFailure(ChatServiceError):
    """The engine raised while a turn was streaming."""

    def __init__(self, conversation_id: str, partial_text: str = "") -> None:
        self.conversation_id = conversation_id
        self.partial_text = partial_text
        super().__init__(f"Generation failed for conversation {conversation_id}")


class EvictionFailure(ChatServiceError):
    """Destroying an idle session failed. Logged by the pool, never raised to callers."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Failed to destroy idle session for conversation {conversation_id}")
