"""
Message database model.
"""
import enum

from sqlalchemy import BigInteger, Column, ForeignKey, Index, String, Text

from chatrelay.core.database import Base
from chatrelay.models.user import new_id


class MessageType(str, enum.Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    FILE = "FILE"
    CALL_LOG = "CALL_LOG"


class MessageStatus(str, enum.Enum):
    SENDING = "SENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    FAILED = "FAILED"


class Message(Base):
    """A message inside a conversation; only ``status`` changes after insert."""

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    content = Column(Text, nullable=False)
    type = Column(String(16), nullable=False, default=MessageType.TEXT.value)
    status = Column(String(16), nullable=False, default=MessageStatus.SENT.value)

    # Epoch ms, strictly increasing within a conversation
    timestamp = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_messages_conversation_timestamp", "conversation_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, conversation_id={self.conversation_id}, sender_id={self.sender_id})>"
