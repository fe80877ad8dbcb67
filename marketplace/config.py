"""Application-wide settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """Settings for the HTTP application shell."""

    model_config = {"env_prefix": "APP_", "case_sensitive": False}

    environment: str = Field(
        default="development",
        description="Deployment environment name",
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level",
    )
    log_format: str = Field(
        default="json",
        description="Log renderer: json or console",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        description="Allowed CORS origins",
    )

    # Rate limiting
    rate_limit_per_minute: int = Field(
        default=60,
        description="Requests allowed per caller per path per minute",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL backing the rate limiter",
    )

    # Background jobs
    enable_scheduler: bool = Field(
        default=True,
        description="Run periodic jobs (auto-approve sweep) inside the app",
    )


@lru_cache
def get_app_settings() -> AppSettings:
    """Get cached application settings."""
    return AppSettings()
