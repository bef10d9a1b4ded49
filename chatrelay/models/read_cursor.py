"""
Read cursor database model.
"""
from sqlalchemy import BigInteger, Column, ForeignKey, String

from chatrelay.core.database import Base


class ReadCursor(Base):
    """Last point up to which a user has seen a conversation."""

    __tablename__ = "read_cursors"

    conversation_id = Column(String(36), ForeignKey("conversations.id"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    last_read_time = Column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<ReadCursor(conversation_id={self.conversation_id}, user_id={self.user_id})>"
