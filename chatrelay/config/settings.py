"""Application settings using Pydantic BaseSettings."""

import secrets
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process configuration loaded from environment variables.

    Provider bindings and chat limits live in the relay config file pointed to
    by ``providers_config_path``; see ``chatrelay.config.relay``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)
    cors_origins: str = Field(default="http://localhost:3000")
    max_request_bytes: int = Field(default=1048576)

    # Authentication
    secret_key: str = Field(default_factory=lambda: secrets.token_urlsafe(64))
    token_ttl_seconds: int = Field(default=86400)
    admin_identities: str = Field(default="")

    # Providers
    providers_config_path: str = Field(default="config/ai-providers.json")
    provider_timeout_seconds: int = Field(default=60)
    provider_max_retries: int = Field(default=0)

    # Background sweeps
    sweep_interval_seconds: float = Field(default=300.0)

    # Streaming
    sse_ping_interval_seconds: float = Field(default=15.0)
    stream_queue_size: int = Field(default=64)
    stream_complete_on_disconnect: bool = Field(default=True)

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if not self.cors_origins:
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def admin_identities_set(self) -> frozenset[str]:
        if not self.admin_identities:
            return frozenset()
        return frozenset(i.strip() for i in self.admin_identities.split(",") if i.strip())

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper

    @field_validator("stream_queue_size")
    @classmethod
    def validate_stream_queue_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("STREAM_QUEUE_SIZE must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
