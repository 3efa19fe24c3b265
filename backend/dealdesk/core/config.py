"""
Application configuration using pydantic-settings.

WHAT: Centralized config from environment variables
WHY: Type-safe, validated config with sensible defaults
HOW: Pydantic BaseSettings reads from .env and environment
"""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App metadata
    APP_NAME: str = "DealDesk Marketplace"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./data/dealdesk.db"

    # Stored listing images (only files under this directory are removed with a listing)
    MEDIA_DIR: str = "./data/media"

    # Deal Store client (used by the negotiation engine)
    DEAL_STORE_BASE_URL: str = "http://localhost:8000/api/v1"
    DEAL_STORE_TIMEOUT: int = 15  # seconds, transport-level only

    # Polling / subscriptions
    DEAL_POLL_INTERVAL: float = 10.0  # seconds between background deal reloads
    UNREAD_RETRY_DELAY: float = 5.0  # client reconnect delay for unread streams
    SSE_HEARTBEAT_INTERVAL: int = 15  # seconds between heartbeat events

    # CORS - accepts comma-separated string or list
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:19006"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, list):
            return ",".join(v)
        return v

    def get_cors_origins_list(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "./data/logs/dealdesk.log"

    class Config:
        # Look for .env in project root first, then backend/.env
        env_file = [
            str(Path(__file__).parent.parent.parent.parent / ".env"),
            str(Path(__file__).parent.parent.parent / ".env"),
        ]
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


# Singleton instance
settings = Settings()
