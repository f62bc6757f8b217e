from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration sourced from environment variables or .env files."""

    model_config = SettingsConfigDict(
        env_prefix="REVISION_",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["local", "test", "production"] = "local"
    app_name: str = "Revision API"
    api_version: str = "0.1.0"
    log_level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool = False
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
        ]
    )
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    process_type: Literal["api", "worker", "api-with-worker"] = "api"
    database_url: str = Field(..., description="SQLAlchemy-compatible database URL.")
    db_echo: bool = False
    db_pool_size: int = 10
    db_max_overflow: int = 20
    jwt_secret: str = Field(
        ...,
        min_length=16,
        description="Shared secret used to verify access tokens issued by the identity service.",
    )
    jwt_algorithm: str = "HS256"
    attempt_history_limit: int = Field(
        default=80,
        ge=1,
        le=500,
        description="Most recent attempts fetched per item type when ranking revision scopes.",
    )
    note_evidence_limit: int = Field(
        default=8,
        ge=0,
        le=50,
        description="Attempts per item type shared with the note generator as evidence.",
    )
    note_stale_after_days: int = Field(
        default=30,
        ge=1,
        description="Age after which the staleness sweep flags a generated note as stale.",
    )
    note_stale_score_shift: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Average score movement in a scope that makes its note stale.",
    )
    note_stale_attempt_growth: int = Field(
        default=5,
        ge=1,
        description="New attempts in a scope since generation that make its note stale.",
    )
    note_source_version: str = Field(
        default="v1-gemini",
        description="Version tag stored alongside every generated note.",
    )
    note_generation_timeout_seconds: float = Field(
        default=90.0,
        ge=1.0,
        description="Upper bound on a single note generation, including retries.",
    )
    ai_provider: Literal["gemini"] = "gemini"
    gemini_api_key: str | None = Field(
        default=None,
        description="API key for the Google Gemini platform.",
    )
    gemini_endpoint: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Base URL for the Gemini API.",
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash",
        description="Default Gemini model identifier used for note generation.",
    )
    gemini_request_timeout_seconds: float = Field(
        default=60.0,
        ge=1.0,
        description="Timeout for outbound requests to the Gemini API.",
    )
    ai_generation_default_temperature: float = Field(
        default=0.3,
        ge=0.0,
        le=2.0,
        description="Creativity level for generated revision notes.",
    )
    ai_generation_max_attempts: int = Field(
        default=3,
        ge=1,
        le=5,
        description="Maximum number of attempts when the AI output fails schema validation.",
    )
    celery_broker_url: str = Field(
        default="redis://localhost:6379/0",
        description="Celery broker URL.",
    )
    celery_result_backend: str = Field(
        default="redis://localhost:6379/1",
        description="Celery result backend URL.",
    )
    celery_task_always_eager: bool = Field(
        default=False,
        description="Run Celery tasks synchronously (useful for tests).",
    )
    celery_loglevel: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    stale_sweep_interval_minutes: int = Field(
        default=60 * 6,
        ge=1,
        description="How often the Celery beat schedule runs the note staleness sweep.",
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings"]
