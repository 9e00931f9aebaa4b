"""
Application configuration using 12-factor environment variables.
"""
from functools import lru_cache
from typing import List

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
    app_name: str = Field(default="Public Chat Room")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    cors_origins: List[str] = Field(default=["*"])

    # Storage
    store_backend: str = Field(default="memory", description="memory or sql")
    database_url: str = Field(default="sqlite:///./data/chat.db")
    message_retention: int = Field(default=1000, ge=1, description="Maximum number of retained messages")
    recent_default_limit: int = Field(default=50, ge=1)

    # Sending
    rate_limit_ms: int = Field(default=1000, ge=0, description="Cooldown between two accepted sends per sender")
    max_upload_bytes: int = Field(default=10 * 1024 * 1024)
    allowed_upload_types: str = Field(default=r"jpeg|jpg|png|gif|webp|pdf|txt|doc|docx|zip|mp4|mp3")

    # Realtime
    broadcast_send_timeout: float = Field(default=5.0, gt=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or text

    @property
    def is_sql_backend(self) -> bool:
        """Check if messages are kept in the SQL database."""
        return self.store_backend.lower() == "sql"

    @property
    def rate_limit_seconds(self) -> float:
        return self.rate_limit_ms / 1000.0


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
