"""Application configuration using pydantic-settings.

Process-wide defaults for every key. All fields are overridable via
environment variables with the same names (case-insensitive). Per-key values
passed to ``RefetchClient.query`` take precedence over these.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Top-level settings.

    e.g. ``REFETCH_RETRY_LIMIT=3`` or ``LOG_JSON=true``.
    """

    # Retry scheduler
    REFETCH_RETRY_LIMIT: int = Field(default=1, ge=0)
    REFETCH_RETRY_TIME_SECONDS: float = Field(default=10.0, gt=0)

    # Revalidation scheduler
    REFETCH_REVALIDATE_TIME_SECONDS: float = Field(default=300.0, gt=0)  # 5 minutes

    # Persistence bridge; unset path keeps snapshots in memory for the session
    REFETCH_STORE_PATH: Optional[str] = None
    REFETCH_STORE_PREFIX: str = "refetch:"

    # HTTP operations
    HTTP_BASE_URL: Optional[str] = None
    HTTP_TIMEOUT_SECONDS: int = Field(default=10, ge=1)

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)


__all__ = ["Settings"]
