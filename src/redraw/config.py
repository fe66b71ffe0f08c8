"""Application settings."""

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PLACEHOLDER_API_KEY = "your_gemini_api_key_here"


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    gemini_api_key: str = ""
    gemini_analysis_api_key: str = ""
    gemini_base_url: str = "https://api.apiyi.com/v1beta"
    gemini_model: str = "gemini-3-pro-image-preview"
    request_timeout: Optional[float] = Field(default=None, gt=0)

    task_dir: str = "/tmp/ppt-tasks"

    concurrency: int = Field(default=10, ge=1)
    max_retries: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=1.0, ge=0.0)
    worker_count: int = Field(default=1, ge=1)

    retention_hours: float = Field(default=24.0, gt=0)
    sweep_cron: str = "0 * * * *"

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="REDRAW_",
        extra="ignore",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_api_key(self) -> str:
        return self.gemini_api_key or os.getenv("GEMINI_API_KEY", "")

    def resolved_analysis_api_key(self) -> str:
        return (
            self.gemini_analysis_api_key
            or os.getenv("GEMINI_ANALYSIS_API_KEY", "")
            or self.resolved_api_key()
        )

    def resolved_base_url(self) -> str:
        if "gemini_base_url" in self.model_fields_set:
            return self.gemini_base_url
        return os.getenv("GEMINI_BASE_URL", "") or self.gemini_base_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
