"""
Pydantic schemas for auth and user endpoints.
"""
from typing import List, Optional

from pydantic import Field, field_validator

from chatrelay.schemas.common import CamelModel


class RegisterRequest(CamelModel):
    """Request schema for POST /auth/register."""

    username: str = Field(..., min_length=3, max_length=64)
    password: str = Field(..., min_length=6, max_length=256)
    display_name: str = Field(..., min_length=1, max_length=128)

    model_config = {
        "json_schema_extra": {
            "example": {"username": "alice", "password": "secret123", "displayName": "Alice"}
        }
    }

    @field_validator("username", "display_name", mode="before")
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip() if isinstance(v, str) else v


class LoginRequest(CamelModel):
    """Request schema for POST /auth/login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserOut(CamelModel):
    id: str
    username: str
    display_name: str
    avatar: Optional[str] = None
    online: bool = False


class AuthData(CamelModel):
    token: str
    user: UserOut


class UserData(CamelModel):
    user: UserOut


class UsersData(CamelModel):
    users: List[UserOut]
