"""
Shared response envelope and camelCase base model.
"""
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }


class ApiResponse(BaseModel, Generic[T]):
    """Every REST response is wrapped as ``{success, data?, message?}``."""
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


class SuccessData(BaseModel):
    success: bool = True


class HealthResponse(BaseModel):
    """Response schema for health endpoints."""
    status: str
    checks: Optional[dict] = None
