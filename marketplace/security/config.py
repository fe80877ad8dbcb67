"""Configuration for authentication."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings

DEV_SECRET_KEY = "dev-secret-change-me"


class SecuritySettings(BaseSettings):
    """JWT and agent API key settings."""

    model_config = {"env_prefix": "AUTH_", "case_sensitive": False}

    jwt_secret_key: str = Field(
        default=DEV_SECRET_KEY,
        description="HMAC secret for access tokens",
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm",
    )
    access_token_expire_minutes: int = Field(
        default=60,
        description="Lifetime of issued access tokens",
    )
    agent_key_prefix: str = Field(
        default="mk_agent_",
        description="Prefix of generated agent API keys",
    )


@lru_cache
def get_security_settings() -> SecuritySettings:
    """Get cached security settings."""
    return SecuritySettings()
