from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING

import httpx
from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from .storage import StorageClient


class GenerationSettings(BaseSettings):
    """Configuration container for the generation orchestrator."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    provider_base_url: str = Field(
        "https://api.kie.ai/api/v1",
        validation_alias=AliasChoices("KIE_API_BASE_URL", "PROVIDER_BASE_URL"),
    )
    provider_api_key: SecretStr | None = Field(
        None,
        validation_alias=AliasChoices("KIE_API_KEY", "PROVIDER_API_KEY"),
    )
    provider_timeout_seconds: float = Field(30.0)
    provider_callback_url: str | None = Field(
        None,
        validation_alias=AliasChoices("KIE_CALLBACK_URL", "PROVIDER_CALLBACK_URL"),
    )

    poll_max_attempts: int = Field(60, ge=1)
    materialization_lease_seconds: int = Field(120, ge=1)

    database_url: str = Field(
        "sqlite+aiosqlite:///./generation.db",
        validation_alias=AliasChoices("GENERATION_DATABASE_URL", "DATABASE_URL"),
    )

    s3_bucket: str = Field(
        "generated-images",
        validation_alias=AliasChoices("GENERATION_S3_BUCKET", "S3_BUCKET"),
    )
    s3_region: str = Field(
        "us-east-1",
        validation_alias=AliasChoices("GENERATION_S3_REGION", "S3_REGION"),
    )
    s3_endpoint: str | None = Field(
        None,
        validation_alias=AliasChoices("GENERATION_S3_ENDPOINT", "S3_ENDPOINT"),
    )
    s3_access_key: str | None = Field(
        None,
        validation_alias=AliasChoices("GENERATION_S3_ACCESS_KEY", "S3_ACCESS_KEY"),
    )
    s3_secret_key: str | None = Field(
        None,
        validation_alias=AliasChoices("GENERATION_S3_SECRET_KEY", "S3_SECRET_KEY"),
    )
    s3_public_base_url: str | None = Field(
        None,
        validation_alias=AliasChoices(
            "GENERATION_S3_PUBLIC_BASE_URL", "S3_PUBLIC_BASE_URL"
        ),
    )
    result_prefix: str = Field("images")

    celery_broker_url: str = Field(
        "memory://",
        validation_alias=AliasChoices(
            "GENERATION_CELERY_BROKER_URL", "CELERY_BROKER_URL"
        ),
    )
    celery_result_backend: str = Field(
        "cache+memory://",
        validation_alias=AliasChoices(
            "GENERATION_CELERY_RESULT_BACKEND", "CELERY_RESULT_BACKEND"
        ),
    )

    log_level: str = Field(
        "INFO", validation_alias=AliasChoices("GENERATION_LOG_LEVEL", "LOG_LEVEL")
    )

    def default_api_key(self) -> str | None:
        if self.provider_api_key is None:
            return None
        value = self.provider_api_key.get_secret_value().strip()
        return value or None


@dataclass(slots=True)
class RuntimeOverrides:
    """Optional dependency overrides used primarily for tests."""

    settings: GenerationSettings | None = None
    session_factory: async_sessionmaker[AsyncSession] | None = None
    storage: StorageClient | None = None
    http_client: httpx.AsyncClient | None = None
    log_level: str | None = None


@lru_cache(maxsize=1)
def get_settings() -> GenerationSettings:
    return GenerationSettings()
