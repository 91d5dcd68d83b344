"""Environment-based settings for the storage backend connection and logging.

Uses pydantic-settings so values come from ``STORAGE_API_*`` and
``OUTPUT_MAPPING_LOG_*`` environment variables or a ``.env`` file.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

__all__ = ["StorageApiSettings", "LoggingSettings"]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class StorageApiSettings(BaseSettings):
    """Connection and polling settings for the Storage API.

    Example:
        >>> # STORAGE_API_URL=https://connection.keboola.com
        >>> # STORAGE_API_TOKEN=xxx-yyy
        >>> settings = StorageApiSettings()
        >>> settings.url
        'https://connection.keboola.com'
    """

    url: str = Field(..., min_length=1, description="Storage API base URL")
    token: str = Field(..., min_length=1, description="Storage API token")
    branch_id: Optional[str] = Field(default=None, description="Development branch ID")
    timeout: float = Field(default=120.0, gt=0, description="HTTP request timeout in seconds")
    max_retries: int = Field(default=5, ge=1, le=20, description="Max attempts for transient errors")
    backoff_factor: float = Field(default=0.5, ge=0.0, le=60.0, description="Retry back-off multiplier")
    job_poll_interval: float = Field(default=1.0, gt=0, description="Initial job poll delay in seconds")
    job_poll_max_interval: float = Field(default=20.0, gt=0, description="Maximum job poll delay")
    job_max_wait: Optional[float] = Field(
        default=None, gt=0, description="Give up waiting for a job after this many seconds"
    )

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("branch_id", mode="before")
    @classmethod
    def empty_branch_is_none(cls, v: object) -> object:
        if v == "" or v is None:
            return None
        return str(v)


class LoggingSettings(BaseSettings):
    """Log output of an output mapping run.

    Read from ``OUTPUT_MAPPING_LOG_*`` environment variables, e.g.
    ``OUTPUT_MAPPING_LOG_LEVEL=DEBUG`` or ``OUTPUT_MAPPING_LOG_JSON_FORMAT=true``.
    """

    level: str = Field(default="INFO", description="Root log level")
    json_format: bool = Field(default=False, description="One JSON object per log line")
    file: Optional[str] = Field(default=None, description="Also write logs to this file")
    exclude_fields: List[str] = Field(default_factory=list, description="Record fields left out of JSON logs")

    model_config = SettingsConfigDict(
        env_prefix="OUTPUT_MAPPING_LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str) -> str:
        v = v.upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"Unknown log level '{v}'. Use one of: {list(LOG_LEVELS)}")
        return v
