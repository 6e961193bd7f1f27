"""Application configuration utilities."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings derived from environment variables."""

    storage_endpoint: str = Field(
        default="https://storage.yandexcloud.net", alias="STORAGE_ENDPOINT"
    )
    storage_region: str = Field(default="ru-central1", alias="STORAGE_REGION")
    storage_bucket: str = Field(default="edumap-media", alias="STORAGE_BUCKET")
    storage_access_key_id: str | None = Field(
        default=None, alias="STORAGE_ACCESS_KEY_ID"
    )
    storage_secret_access_key: str | None = Field(
        default=None, alias="STORAGE_SECRET_ACCESS_KEY"
    )
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024, alias="MAX_UPLOAD_BYTES"
    )
    signed_url_ttl_seconds: int = Field(
        default=3600, alias="SIGNED_URL_TTL_SECONDS"
    )
    thumbnails_on_upload: bool = Field(default=True, alias="THUMBNAILS_ON_UPLOAD")
    upload_api_token: str | None = Field(default=None, alias="UPLOAD_API_TOKEN")
    public_base_url: str = Field(
        default="http://localhost:8000", alias="PUBLIC_BASE_URL"
    )
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    redis_enabled_flag: bool = Field(default=False, alias="REDIS_ENABLED")
    celery_broker_url: str | None = Field(
        default=None, alias="CELERY_BROKER_URL"
    )
    celery_result_backend: str | None = Field(
        default=None, alias="CELERY_RESULT_BACKEND"
    )

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def storage_credentials_configured(self) -> bool:
        """Return ``True`` when both halves of the static key pair are set."""

        return bool(self.storage_access_key_id and self.storage_secret_access_key)

    @property
    def broker_url(self) -> str:
        """Return the Celery broker URL, defaulting to Redis."""

        return self.celery_broker_url or self.redis_url

    @property
    def result_backend(self) -> str:
        """Return the Celery result backend, defaulting to the Redis URL."""

        if self.celery_result_backend:
            return self.celery_result_backend
        return self.redis_url

    @property
    def redis_enabled(self) -> bool:
        """Return ``True`` when Redis integrations should be used."""

        return self.redis_enabled_flag


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
