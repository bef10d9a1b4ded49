"""
Conversation database model.
"""
from typing import Tuple

from sqlalchemy import BigInteger, CheckConstraint, Column, ForeignKey, Index, String, Text, UniqueConstraint

from chatrelay.core.database import Base
from chatrelay.models.user import new_id, now_ms


def canonical_pair(user_a: str, user_b: str) -> Tuple[str, str]:
    """Order a participant pair so either argument order maps to one row."""
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


class Conversation(Base):
    """Two-party conversation with a denormalized last-message summary."""

    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=new_id)

    # participant_a_id < participant_b_id, always
    participant_a_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    participant_b_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    last_message = Column(Text, nullable=False, default="")
    last_message_time = Column(BigInteger, nullable=False, default=0)

    created_at = Column(BigInteger, default=now_ms, nullable=False)

    __table_args__ = (
        UniqueConstraint("participant_a_id", "participant_b_id", name="uq_conversations_pair"),
        CheckConstraint("participant_a_id < participant_b_id", name="ck_conversations_pair_order"),
        Index("ix_conversations_last_message_time", "last_message_time"),
    )

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_a_id, self.participant_b_id)

    def other_participant(self, user_id: str) -> str:
        return self.participant_b_id if user_id == self.participant_a_id else self.participant_a_id

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, pair=({self.participant_a_id}, {self.participant_b_id}))>"
