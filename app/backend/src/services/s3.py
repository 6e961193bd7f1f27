"""S3-compatible object store gateway."""

from __future__ import annotations

import re
import urllib.parse
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Mapping

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
import structlog

from app.backend.src.core.config import Settings, get_settings
from app.backend.src.services.keys import derive_thumbnail_key

LOGGER = structlog.get_logger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class StorageErrorKind(str, Enum):
    """Outcome classes for a failed object store call."""

    NOT_FOUND = "not_found"
    TRANSPORT = "transport"


class StorageError(Exception):
    """Base class for object store failures."""

    kind: StorageErrorKind = StorageErrorKind.TRANSPORT

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class StorageNotFoundError(StorageError):
    kind = StorageErrorKind.NOT_FOUND


class StorageTransportError(StorageError):
    """Network, auth or any other non-404 failure."""

    kind = StorageErrorKind.TRANSPORT


class StorageConfigError(RuntimeError):
    """Raised when the gateway cannot be built from configuration."""


@dataclass(frozen=True)
class AssetInfo:
    key: str
    size: int
    content_type: str
    last_modified: datetime
    etag: str | None = None


def classify_error(exc: BaseException) -> StorageErrorKind:
    """Return whether ``exc`` means the object is absent or unreachable."""

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {}) or {}
        status = (exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode")
        if status == 404 or str(error.get("Code", "")) in _NOT_FOUND_CODES:
            return StorageErrorKind.NOT_FOUND
    return StorageErrorKind.TRANSPORT


def sanitize_object_key(key: str) -> str:
    """Minimal, safe normalization that preserves exact S3 key semantics."""

    if not key:
        return ""

    sanitized = str(key).strip().strip('"').strip("'")
    sanitized = urllib.parse.unquote(sanitized)
    sanitized = re.sub(r"/+", "/", sanitized)
    if sanitized.startswith("/"):
        sanitized = sanitized[1:]
    return sanitized


def build_s3_client(settings: Settings) -> BaseClient:
    """Return a SigV4, path-style S3 client for the configured endpoint."""

    if not settings.storage_credentials_configured:
        raise StorageConfigError(
            "Object storage credentials not configured. Set STORAGE_ACCESS_KEY_ID "
            "and STORAGE_SECRET_ACCESS_KEY."
        )

    return boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint,
        region_name=settings.storage_region,
        aws_access_key_id=settings.storage_access_key_id,
        aws_secret_access_key=settings.storage_secret_access_key,
        config=Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
        ),
    )


class StorageGateway:
    """Thin wrapper over one bucket of an S3-compatible store.

    Every method is a network round trip. ``exists`` and ``head_info`` turn a
    not-found response into ``False``/``None``; every other failure is raised
    as :class:`StorageTransportError`.
    """

    def __init__(self, client: BaseClient, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "StorageGateway":
        settings = settings or get_settings()
        client = build_s3_client(settings)
        LOGGER.info(
            "storage_gateway_ready",
            endpoint=settings.storage_endpoint,
            region=settings.storage_region,
            bucket=settings.storage_bucket,
        )
        return cls(client, settings.storage_bucket)

    def _transport_error(self, operation: str, key: str | None, exc: Exception) -> StorageTransportError:
        LOGGER.error(
            "storage_transport_error",
            operation=operation,
            bucket=self.bucket,
            key=key,
            error=str(exc),
        )
        return StorageTransportError(f"{operation} failed for {key!r}: {exc}", key=key)

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Mapping[str, str] | None = None,
    ) -> str:
        """Upload ``data`` to ``key``, overwriting any existing object."""

        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=dict(metadata or {}),
            )
        except (BotoCoreError, ClientError) as exc:
            raise self._transport_error("put", key, exc) from exc
        LOGGER.info("storage_put", bucket=self.bucket, key=key, size=len(data))
        return key

    def get_signed_url(self, key: str, ttl_seconds: int = 3600) -> str:
        """Return a time-limited GET URL; the key is not checked for existence."""

        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": sanitize_object_key(key)},
                ExpiresIn=ttl_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise self._transport_error("sign", key, exc) from exc

    def delete(self, key: str) -> None:
        """Remove ``key``; an already absent object is not an error."""

        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if classify_error(exc) is StorageErrorKind.NOT_FOUND:
                LOGGER.info("storage_delete_absent", bucket=self.bucket, key=key)
                return
            raise self._transport_error("delete", key, exc) from exc
        except BotoCoreError as exc:
            raise self._transport_error("delete", key, exc) from exc
        LOGGER.info("storage_delete", bucket=self.bucket, key=key)

    def delete_with_thumbnail(self, key: str) -> None:
        """Remove an original together with its thumbnail variant."""

        self.delete(derive_thumbnail_key(key))
        self.delete(key)

    def _head(self, key: str) -> dict[str, Any] | None:
        try:
            return self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if classify_error(exc) is StorageErrorKind.NOT_FOUND:
                return None
            raise self._transport_error("head", key, exc) from exc
        except BotoCoreError as exc:
            raise self._transport_error("head", key, exc) from exc

    def exists(self, key: str) -> bool:
        return self._head(key) is not None

    def head_info(self, key: str) -> AssetInfo | None:
        response = self._head(key)
        if response is None:
            return None
        return AssetInfo(
            key=key,
            size=int(response.get("ContentLength") or 0),
            content_type=response.get("ContentType") or "application/octet-stream",
            last_modified=response.get("LastModified") or datetime.now(timezone.utc),
            etag=response.get("ETag"),
        )

    def download(self, key: str) -> bytes:
        """Return the bytes stored at ``key``.

        Raises :class:`StorageNotFoundError` when the object is absent.
        """

        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            body = response["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except ClientError as exc:
            if classify_error(exc) is StorageErrorKind.NOT_FOUND:
                raise StorageNotFoundError(f"Object not found: {key}", key=key) from exc
            raise self._transport_error("download", key, exc) from exc
        except BotoCoreError as exc:
            raise self._transport_error("download", key, exc) from exc

    def list_keys(self, prefix: str = "") -> list[str]:
        """Return every key under ``prefix``."""

        keys: list[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for item in page.get("Contents", []) or []:
                    keys.append(item["Key"])
        except (BotoCoreError, ClientError) as exc:
            raise self._transport_error("list", prefix, exc) from exc
        LOGGER.info("storage_list", bucket=self.bucket, prefix=prefix, count=len(keys))
        return keys

    def check_bucket(self) -> None:
        """Raise :class:`StorageTransportError` when the bucket is unreachable."""

        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as exc:
            raise self._transport_error("head_bucket", None, exc) from exc


@lru_cache()
def get_storage_gateway() -> StorageGateway:
    """Return the application-wide gateway, built once from settings."""

    return StorageGateway.from_settings(get_settings())


__all__ = [
    "AssetInfo",
    "StorageConfigError",
    "StorageError",
    "StorageErrorKind",
    "StorageGateway",
    "StorageNotFoundError",
    "StorageTransportError",
    "build_s3_client",
    "classify_error",
    "get_storage_gateway",
    "sanitize_object_key",
]
