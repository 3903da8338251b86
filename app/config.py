"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


CompletionEngine = Literal["openrouter", "anthropic"]
CachePolicy = Literal["fifo", "lru"]


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Shelfmind", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=8080, alias="PORT")

    completion_engine: CompletionEngine = Field(
        default="openrouter", alias="COMPLETION_ENGINE"
    )

    openrouter_api_key: str | None = Field(
        default=None, alias="OPENROUTER_API_KEY"
    )
    openrouter_model: str = Field(
        default="anthropic/claude-sonnet-4.6", alias="OPENROUTER_MODEL"
    )
    openrouter_api_url: HttpUrl = Field(
        default="https://openrouter.ai/api/v1", alias="OPENROUTER_API_URL"
    )

    anthropic_api_key: str | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_model: str = Field(
        default="claude-sonnet-4-6", alias="ANTHROPIC_MODEL"
    )
    anthropic_api_url: HttpUrl = Field(
        default="https://api.anthropic.com", alias="ANTHROPIC_API_URL"
    )
    anthropic_version: str = Field(default="2023-06-01", alias="ANTHROPIC_VERSION")

    completion_max_tokens: int = Field(
        default=2_048, alias="COMPLETION_MAX_TOKENS", ge=1, le=64_000
    )
    stream_max_tokens: int = Field(
        default=4_096, alias="STREAM_MAX_TOKENS", ge=1, le=64_000
    )

    cache_max_entries: int = Field(
        default=100, alias="CACHE_MAX_ENTRIES", ge=1, le=100_000
    )
    cache_policy: CachePolicy = Field(default="fifo", alias="CACHE_POLICY")

    stream_queue_size: int = Field(
        default=32, alias="STREAM_QUEUE_SIZE", ge=1, le=4_096
    )
    stream_timeout_seconds: float = Field(
        default=300.0, alias="STREAM_TIMEOUT", gt=0
    )

    prompt_directory: Path | None = Field(default=None, alias="PROMPT_DIRECTORY")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./shelfmind.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("completion_engine", "cache_policy", mode="before")
    @classmethod
    def _normalise_choice(cls, value: object) -> object:
        """Accept engine and policy names regardless of case or padding."""

        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("prompt_directory", mode="before")
    @classmethod
    def _strip_blank_directory(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def active_api_key(self) -> str | None:
        """Return the API key for the configured completion engine."""

        if self.completion_engine == "anthropic":
            return self.anthropic_api_key
        return self.openrouter_api_key

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
