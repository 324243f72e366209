"""Configuration management using Pydantic Settings."""

from functools import lru_cache

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

    # Service Configuration
    service_host: str = Field(default="0.0.0.0", description="Service host")
    service_port: int = Field(default=8000, description="Service port")
    log_level: str = Field(default="INFO", description="Logging level")
    docs_enabled: bool = Field(
        default=True, description="Serve /docs, /redoc and /openapi.json"
    )
    cors_origins: str = Field(
        default="*", description="Comma-separated allowed origins, or '*'"
    )

    # Pine Script Runner
    pine_debug: bool = Field(
        default=False,
        description="Enable runner debug mode at startup (debug logs + info diagnostics)",
    )
    pine_max_bars: int = Field(
        default=100_000, ge=1, description="Maximum bars accepted by POST /pine/run"
    )
    pine_max_script_chars: int = Field(
        default=100_000, ge=1, description="Maximum script length in characters"
    )
    pine_mock_seed: int = Field(
        default=42, description="Seed for mock bars when a run supplies no bars"
    )
    pine_mock_bar_count: int = Field(
        default=200, ge=1, description="Mock bar count when a run supplies no bars"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
