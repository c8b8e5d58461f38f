"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/relay.db",
        description="SQLAlchemy connection string for the call log.",
    )

    # Migrations / schema
    auto_create_db_schema: bool = Field(
        default=True,
        description="If true, creates tables automatically on startup (useful for local/dev).",
    )

    # Reporting
    recent_calls_limit: int = Field(
        default=5,
        ge=1,
        description="Number of call records returned by GET /calls.",
    )
    call_stats_interval_seconds: int = Field(
        default=300,
        ge=0,
        description="Interval for logging the number of stored calls. 0 disables it.",
    )

    # Signaling
    call_start_policy: Literal["answer", "offer"] = Field(
        default="answer",
        description="Whether a call record opens when the answer is seen or when the offer is forwarded.",
    )
    broadcast_user_list_on_change: bool = Field(
        default=False,
        description="Push a fresh user list to every client after a connect or disconnect.",
    )
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Relay client
    relay_url: str = Field(
        default="ws://localhost:8000/ws",
        description="Signaling endpoint used by RelayClient when no URL is given.",
    )

    data_dir: Path = Field(default=Path("./data"))

    @field_validator("data_dir")
    @classmethod
    def ensure_data_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
