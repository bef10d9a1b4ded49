"""
Application configuration using 12-factor environment variables.
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Chat Relay Service")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    api_prefix: str = Field(default="", description="Prefix for REST routes, e.g. /api")

    # Identity
    jwt_secret: Optional[str] = Field(default=None, description="HS256 signing secret for bearer tokens")
    jwt_algorithm: str = Field(default="HS256")
    jwt_expires_days: int = Field(default=30, ge=1)
    password_hash_iterations: int = Field(default=120_000, ge=1)

    # Database
    database_url: str = Field(default="sqlite:///./data/chatapp.db")
    database_timeout: float = Field(default=5.0, description="Seconds to wait on a locked database")

    # Realtime
    ws_outbound_queue_size: int = Field(default=256, ge=1)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
