"""
Settings

Environment-driven configuration for the webhook service, worker components and CLI.
"""

import functools

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables (or .env).

    Environment variables take precedence over the .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Storage
    DATABASE_URL: str = "sqlite:///./whatsapp_flows.db"
    REDIS_URL: str = ""  # Empty disables per-conversation locking

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Provider
    WHATSAPP_PROVIDER: str = "meta"  # meta, stub
    WHATSAPP_ENCRYPTION_KEY: str | None = None  # Fernet key for stored tenant secrets
    GRAPH_API_TIMEOUT_SECONDS: float = 30.0
    MEDIA_FETCH_TIMEOUT_SECONDS: float = 20.0

    # Flow engine
    FLOW_MAX_CHAIN_DEPTH: int = 25

    # Conversation locking
    CONVERSATION_LOCK_TIMEOUT_SECONDS: float = 30.0
    CONVERSATION_LOCK_WAIT_SECONDS: float = 10.0


@functools.lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
