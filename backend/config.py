"""
Configuration and settings for the Listwell API.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Environment-backed settings for the FastAPI service and the worker.

    Each field reads the environment variable of the same name, case-insensitively.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    port: int = Field(default=4000)

    # Public URLs
    api_url: str = Field(default="http://localhost:4000")
    web_url: str = Field(default="http://localhost:3000")

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible storage (Cloudflare R2)
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: str = Field(default="auto")
    s3_bucket: Optional[str] = Field(default=None)
    s3_public_url: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Queue (Redis)
    redis_url: Optional[str] = Field(default=None)
    redis_queue_key: str = Field(default="listwell:events")
    jobs_signing_key: Optional[str] = Field(default=None)

    # LLM providers
    gemini_api_key: Optional[str] = Field(default=None)
    openai_api_key: Optional[str] = Field(default=None)
    agent_provider: str = Field(default="gemini")

    # Web push
    vapid_public_key: Optional[str] = Field(default=None)
    vapid_private_key: Optional[str] = Field(default=None)
    vapid_subject: Optional[str] = Field(default=None)

    # Auth
    session_ttl_seconds: int = Field(default=7 * 24 * 3600)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "LISTWELL_USE_IN_MEMORY_BACKENDS", "use_in_memory_backends"
        ),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
