"""
Pydantic schemas for message endpoints and realtime frames.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from chatrelay.models.message import MessageType
from chatrelay.schemas.common import CamelModel


class SendMessageRequest(CamelModel):
    """Request schema for POST /messages."""

    conversation_id: str = Field(..., min_length=1, max_length=36)
    content: str = Field(..., min_length=1, max_length=10000)
    type: MessageType = Field(default=MessageType.TEXT)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        """Accept ``text``, ``call-log`` and friends as well as the canonical tags."""
        if v is None:
            return MessageType.TEXT
        if isinstance(v, str):
            return v.strip().upper().replace("-", "_")
        return v


class MessageOut(CamelModel):
    id: str
    conversation_id: str
    sender_id: str
    sender_name: str = ""
    content: str
    type: str
    status: str
    timestamp: int


class MessageData(CamelModel):
    message: MessageOut


class MessagePage(CamelModel):
    """Response data for GET /messages/{conversationId}."""
    messages: List[MessageOut]
    has_more: bool
    page: int


class InboundFrame(BaseModel):
    """
    Client to server realtime frame.

    A client-supplied ``from`` is ignored; the sender is always the
    authenticated user of the connection.
    """

    type: str
    to: Optional[str] = None
    payload: Any = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    is_typing: Optional[bool] = Field(default=None, alias="isTyping")

    model_config = {
        "populate_by_name": True,
        "extra": "ignore",
    }
