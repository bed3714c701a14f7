"""Application configuration."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    api_token: str
    provider: str = "anthropic"
    anthropic_api_key: str | None = None
    anthropic_model: str = "claude-opus-4-5-20251101"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    request_delay_seconds: float = Field(default=2.0, ge=1.0, le=5.0)
    batch_size: int = Field(default=15, ge=5, le=25)
    rate_limit_backoff_seconds: float = Field(default=30.0, ge=0.0)
    overload_backoff_base_seconds: float = Field(default=60.0, ge=0.0)
    max_retries: int = Field(default=3, ge=0)
    request_timeout_seconds: float = Field(default=60.0, gt=0.0)
    image_resolution: int = 1568
    prompt_path: Path | None = None
    artifact_root: Path | None = None
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)
