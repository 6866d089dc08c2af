"""Message models for WebSocket and API communication."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Message sender role."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class IncomingType(str, Enum):
    """Client frame type discriminator."""

    TEXT = "text"
    CANCEL = "cancel"
    NEW = "new"
    EDIT = "edit"
    REGENERATE = "regenerate"


class OutgoingType(str, Enum):
    """Server frame type discriminator."""

    STATUS = "status"
    STREAM = "stream"
    TEXT = "text"
    TITLE = "title"
    ERROR = "error"


class ContentPart(BaseModel):
    """One item of a structured (attachment-bearing) message."""

    type: str = "text"
    value: Any = ""
    name: Optional[str] = None


class Attachment(BaseModel):
    """File sent alongside a user message."""

    name: str
    kind: str = Field(default="text", description="'text' or 'image'")
    content: str = Field(description="Text content, or a data URL for images")

    def to_part(self) -> ContentPart:
        if self.kind == "image":
            return ContentPart(type="image", value=self.content, name=self.name)
        return ContentPart(
            type="text",
            value=(
                f"FILE ATTACHED: {self.name}\n"
                "---FILE CONTENT START---\n"
                f"{self.content}\n"
                "---FILE CONTENT END---"
            ),
            name=self.name,
        )


class IncomingMessage(BaseModel):
    """Frame received from the client via WebSocket."""

    type: IncomingType = IncomingType.TEXT
    content: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    index: Optional[int] = None
    temperature: Optional[float] = None

    def user_content(self) -> Union[str, list[dict[str, Any]]]:
        """Plain text, or a list of content parts when files are attached."""
        if not self.attachments:
            return self.content
        parts: list[dict[str, Any]] = []
        if self.content:
            parts.append({"type": "text", "value": self.content})
        for attachment in self.attachments:
            parts.append(attachment.to_part().model_dump(exclude_none=True))
        return parts


class OutgoingMessage(BaseModel):
    """Frame sent to the client via WebSocket."""

    type: OutgoingType
    content: str = ""
    session_id: Optional[str] = None
    cancelled: Optional[bool] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class ChatMessage(BaseModel):
    """Persisted chat message for history."""

    role: MessageRole
    content: Union[str, list[ContentPart]]
    timestamp: Optional[str] = None
    cancelled: Optional[bool] = None
