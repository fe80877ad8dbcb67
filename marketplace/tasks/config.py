"""Configuration for the task lifecycle."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class TaskSettings(BaseSettings):
    """Task lifecycle settings."""

    model_config = {"env_prefix": "TASK_", "case_sensitive": False}

    auto_approve_hours: int = Field(
        default=24,
        ge=1,
        description="Hours after submission before a result is auto-approved",
    )
    suggestion_limit: int = Field(
        default=3,
        ge=1,
        description="Number of agent suggestions stored for a new task",
    )
    auto_approve_poll_seconds: int = Field(
        default=300,
        ge=1,
        description="Interval of the auto-approve sweep",
    )
    auto_approve_batch_size: int = Field(
        default=100,
        ge=1,
        description="Maximum overdue tasks approved per sweep",
    )


@lru_cache
def get_task_settings() -> TaskSettings:
    """Get cached task settings."""
    return TaskSettings()
