"""Application configuration via environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration for smartanno runs."""

    api_key: str = Field(default="", alias="API_KEY")
    api_url: str = Field(default="", alias="API_URL")
    model: str = Field(default="deepseek-r1-250120")
    api_format: str | None = Field(default=None)

    gene_number: int = Field(default=100)
    p_value_cutoff: float = Field(default=0.05)

    workers: int = Field(default=6)
    submission_delay: float = Field(default=0.3)
    max_retries: int = Field(default=3)
    time_out: float = Field(default=200.0)
    retry_delay: float = Field(default=1.0)

    temperature: float = Field(default=0.3)
    max_tokens: int = Field(default=8190)
    reasoning_effort: str = Field(default="low")
    verbosity: str = Field(default="medium")

    content_preview_chars: int = Field(default=1000)
    log_level: str = Field(default="INFO")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        populate_by_name = True
        extra = "ignore"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
