"""
Pydantic schemas for conversation endpoints.
"""
from typing import List, Optional

from pydantic import Field

from chatrelay.schemas.common import CamelModel


class CreateConversationRequest(CamelModel):
    """Request schema for POST /conversations."""
    participant_id: str = Field(..., min_length=1, max_length=36)


class ConversationOut(CamelModel):
    """A conversation as seen by one participant."""
    id: str
    participant_id: str
    participant_name: str
    participant_avatar: Optional[str] = None
    last_message: str = ""
    last_message_time: int = 0
    unread_count: int = 0
    is_online: bool = False


class ConversationData(CamelModel):
    conversation: ConversationOut


class ConversationsData(CamelModel):
    conversations: List[ConversationOut]
