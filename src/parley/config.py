"""
Parley Configuration Management

Centralized configuration using pydantic-settings with environment variable support.
"""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ══════════════════════════════════════════════════════════════
    # Application
    # ══════════════════════════════════════════════════════════════
    app_name: str = "Parley"
    app_env: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    api_version: str = "v1"
    host: str = "localhost"
    port: int = 3000
    cors_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "chrome-extension://*",
    ]

    # ══════════════════════════════════════════════════════════════
    # Relay
    # ══════════════════════════════════════════════════════════════
    heartbeat_interval_seconds: float = Field(default=30.0, gt=0)
    max_connections: int = Field(default=1000, ge=1)
    transcript_history_limit: int = Field(default=500, ge=1)
    max_pending_jobs: int = Field(default=32, ge=1)
    audio_format: Literal["webm", "mp3", "wav", "ogg"] = "webm"
    default_analysis_types: Annotated[list[str], NoDecode] = [
        "summary",
        "action_items",
        "sentiment",
        "jargon",
    ]

    # ══════════════════════════════════════════════════════════════
    # HTTP API
    # ══════════════════════════════════════════════════════════════
    rate_limit_enabled: bool = True
    rate_limit_default: str = "100/15minutes"
    rate_limit_upload: str = "10/minute"
    max_upload_bytes: int = Field(default=50 * 1024 * 1024, ge=1)

    # ══════════════════════════════════════════════════════════════
    # OpenAI
    # ══════════════════════════════════════════════════════════════
    openai_api_key: str = ""
    openai_model: str = "gpt-4"
    openai_whisper_model: str = "whisper-1"
    openai_max_tokens: int = 2000
    openai_temperature: float = Field(default=0.1, ge=0.0, le=2.0)

    # ══════════════════════════════════════════════════════════════
    # Client
    # ══════════════════════════════════════════════════════════════
    relay_url: str = "ws://localhost:3000/ws"
    client_reconnect_base_delay: float = Field(default=1.0, gt=0)
    client_max_reconnect_attempts: int = Field(default=5, ge=1)
    client_connect_timeout: float = Field(default=10.0, gt=0)
    client_heartbeat_interval: float = Field(default=30.0, gt=0)

    @field_validator("cors_origins", "default_analysis_types", mode="before")
    @classmethod
    def parse_comma_separated(cls, v: str | list[str]) -> list[str]:
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def openai_configured(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
