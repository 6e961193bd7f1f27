"""Pydantic schemas for media upload and URL endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_KEY_LENGTH = 500


class UploadResponse(BaseModel):
    """Payload returned after a successful upload."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    url: str
    size: int
    content_type: str = Field(alias="contentType")
    original_name: str = Field(alias="originalName")
    thumbnail_key: str | None = Field(default=None, alias="thumbnailKey")


class RefreshRequest(BaseModel):
    key: str | None = None


class RefreshResponse(BaseModel):
    url: str


class SignedUrlResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    key: str
    expires_in: int = Field(alias="expiresIn")


class BatchUrlRequest(BaseModel):
    """Keys to sign in one round trip."""

    model_config = ConfigDict(populate_by_name=True)

    keys: list[str] = Field(max_length=50)
    prefer_thumbnails: bool = Field(default=True, alias="preferThumbnails")

    @field_validator("keys")
    @classmethod
    def _limit_key_length(cls, value: list[str]) -> list[str]:
        if any(len(key) > MAX_KEY_LENGTH for key in value):
            raise ValueError(f"Keys must be at most {MAX_KEY_LENGTH} characters")
        return value


class BatchUrlResponse(BaseModel):
    urls: dict[str, str | None]


__all__ = [
    "BatchUrlRequest",
    "BatchUrlResponse",
    "RefreshRequest",
    "RefreshResponse",
    "SignedUrlResponse",
    "UploadResponse",
]
