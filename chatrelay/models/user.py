"""
User database model.
"""
import time
import uuid

from sqlalchemy import BigInteger, Column, String

from chatrelay.core.database import Base


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Registered account."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)

    # Stored lower-cased; the unique index makes lookups case-insensitive
    username = Column(String(64), unique=True, nullable=False, index=True)

    password_hash = Column(String(255), nullable=False)
    display_name = Column(String(128), nullable=False)
    avatar = Column(String(512), nullable=True)

    created_at = Column(BigInteger, default=now_ms, nullable=False)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username={self.username})>"
