"""Session models for conversation management."""

from typing import Optional

from pydantic import BaseModel, Field

from app.models.messages import ChatMessage


class SessionSummary(BaseModel):
    """Summary of a session for list views."""

    session_id: str
    title: Optional[str] = None
    message_count: int = 0
    updated_at: Optional[str] = None


class SessionHistory(BaseModel):
    """Full message history of a session."""

    session_id: str
    title: Optional[str] = None
    messages: list[ChatMessage]


class RenameRequest(BaseModel):
    """Body of a rename request."""

    title: str = Field(min_length=1, max_length=200)
