"""Runtime configuration for pipeaudit.

Every field can be set through a ``PIPEAUDIT_*`` environment variable
(e.g. ``PIPEAUDIT_PROCESSING_TIMEOUT_MINUTES=90``) or a ``.env`` file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuditSettings(BaseSettings):
    """Detection thresholds, query limits and logging options."""

    model_config = SettingsConfigDict(
        env_prefix="PIPEAUDIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(default="sqlite:///pipeaudit.db")

    processing_timeout_minutes: int = Field(default=60, gt=0)
    failure_rate_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    max_page_size: int = Field(default=1000, gt=0)
    default_period_days: int = Field(default=7, gt=0)

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"


@lru_cache(maxsize=1)
def get_settings() -> AuditSettings:
    """Return the process-wide settings, read once from the environment."""
    return AuditSettings()
