"""Upload boundary: validation, key assignment and storage."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

import structlog

from app.backend.src.services.keys import (
    DOCUMENT_CATEGORIES,
    IMAGE_CATEGORIES,
    AssetCategory,
    build_key,
    derive_thumbnail_key,
    file_extension,
)
from app.backend.src.services.metrics import uploads_total
from app.backend.src.services.s3 import StorageGateway
from app.backend.src.services.thumbnails import (
    THUMBNAIL_SIZES,
    DecodeError,
    ThumbnailPipeline,
)

LOGGER = structlog.get_logger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
UPLOAD_URL_TTL_SECONDS = 3600

ALLOWED_IMAGE_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/svg+xml",
        "image/webp",
        "image/gif",
        "image/bmp",
        "image/tiff",
        "image/x-icon",
        "image/vnd.microsoft.icon",
        "image/x-ms-bmp",
        "image/pjpeg",
        "image/x-png",
    }
)
ALLOWED_DOCUMENT_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)

# Raster formats Pillow can decode; vector and icon uploads keep only the original.
_THUMBNAILABLE_TYPES = ALLOWED_IMAGE_TYPES - {"image/svg+xml", "image/x-icon", "image/vnd.microsoft.icon"}


class UploadValidationError(ValueError):
    """Raised before any storage call when an upload is not acceptable."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


@dataclass(frozen=True)
class UploadRequest:
    category: AssetCategory
    filename: str
    content_type: str
    data: bytes
    entity_id: str | None = None
    uploaded_by: str | None = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadResult:
    key: str
    url: str
    size: int
    content_type: str
    original_name: str
    thumbnail_key: str | None = None


def is_image_upload(filename: str, content_type: str) -> bool:
    if content_type in ALLOWED_IMAGE_TYPES:
        return True
    # Some browsers send odd MIME types for SVG.
    return file_extension(filename) == "svg" and content_type.startswith("image/")


def is_document_upload(content_type: str) -> bool:
    return content_type in ALLOWED_DOCUMENT_TYPES


def validate_upload(request: UploadRequest, *, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    """Raise :class:`UploadValidationError` when ``request`` must be rejected."""

    if not request.data:
        raise UploadValidationError("File is required", field="file")

    if request.size > max_bytes:
        raise UploadValidationError(
            f"File size exceeds maximum allowed size of {max_bytes // (1024 * 1024)}MB",
            field="file",
        )

    is_image = is_image_upload(request.filename, request.content_type)
    is_document = is_document_upload(request.content_type)
    if not is_image and not is_document:
        raise UploadValidationError(
            "Invalid file type. Allowed types: images (PNG, JPG, JPEG, SVG, WebP, GIF, "
            "BMP, TIFF, ICO) or documents (PDF, DOC, DOCX)",
            field="file",
        )

    if request.category in IMAGE_CATEGORIES and not is_image:
        raise UploadValidationError("Logo, gallery and cover files must be images", field="type")

    if request.category in DOCUMENT_CATEGORIES and not is_document:
        raise UploadValidationError("License and document files must be documents", field="type")


def resolve_upload_key(request: UploadRequest, *, now: datetime | None = None) -> str:
    """Return the key for ``request``; uploads without an entity go to ``temp/``."""

    category = request.category
    if category is not AssetCategory.TEMP and not (request.entity_id or "").strip():
        category = AssetCategory.TEMP
    return build_key(category, request.entity_id, request.filename, now=now)


class UploadService:
    def __init__(
        self,
        gateway: StorageGateway,
        *,
        max_bytes: int = MAX_UPLOAD_BYTES,
        thumbnails_on_upload: bool = True,
        enqueue_thumbnail: Callable[[str, str], None] | None = None,
    ) -> None:
        self.gateway = gateway
        self.max_bytes = max_bytes
        self.thumbnails_on_upload = thumbnails_on_upload
        self.enqueue_thumbnail = enqueue_thumbnail
        self.pipeline = ThumbnailPipeline(gateway)

    def upload(self, request: UploadRequest, *, now: datetime | None = None) -> UploadResult:
        try:
            validate_upload(request, max_bytes=self.max_bytes)
        except UploadValidationError as exc:
            uploads_total.labels(category=request.category.value, status="rejected").inc()
            LOGGER.info(
                "upload_rejected",
                category=request.category.value,
                content_type=request.content_type,
                size=request.size,
                reason=exc.message,
            )
            raise

        key = resolve_upload_key(request, now=now)
        uploaded_at = (now or datetime.now(timezone.utc)).isoformat()
        metadata = {"originalName": request.filename, "uploadedAt": uploaded_at}
        if request.uploaded_by:
            metadata["uploadedBy"] = request.uploaded_by

        self.gateway.put(key, request.data, request.content_type, metadata)
        uploads_total.labels(category=request.category.value, status="stored").inc()
        self._discard_stale_thumbnail(request, key)

        thumbnail_key = self._thumbnail(request, key)
        url = self.gateway.get_signed_url(key, UPLOAD_URL_TTL_SECONDS)
        LOGGER.info(
            "upload_stored",
            key=key,
            category=request.category.value,
            size=request.size,
            thumbnail_key=thumbnail_key,
        )
        return UploadResult(
            key=key,
            url=url,
            size=request.size,
            content_type=request.content_type,
            original_name=request.filename,
            thumbnail_key=thumbnail_key,
        )

    def _has_thumbnail_slot(self, request: UploadRequest, key: str) -> bool:
        return request.category in THUMBNAIL_SIZES and key.startswith(request.category.prefix)

    def _discard_stale_thumbnail(self, request: UploadRequest, key: str) -> None:
        # Slot keys are reused; drop the thumbnail of the replaced original.
        if self._has_thumbnail_slot(request, key):
            self.gateway.delete(derive_thumbnail_key(key))

    def _thumbnail(self, request: UploadRequest, key: str) -> str | None:
        if not self._has_thumbnail_slot(request, key):
            return None
        if request.content_type not in _THUMBNAILABLE_TYPES:
            return None

        if not self.thumbnails_on_upload:
            if self.enqueue_thumbnail is not None:
                self.enqueue_thumbnail(key, request.category.value)
            return None

        try:
            return self.pipeline.ensure_thumbnail(key, request.data, request.category)
        except DecodeError as exc:
            # The original is already stored; the backfill job can retry later.
            LOGGER.warning("upload_thumbnail_skipped", key=key, error=str(exc))
            return None

    def delete(self, key: str) -> None:
        self.gateway.delete_with_thumbnail(key)
        LOGGER.info("upload_deleted", key=key)


__all__ = [
    "ALLOWED_DOCUMENT_TYPES",
    "ALLOWED_IMAGE_TYPES",
    "MAX_UPLOAD_BYTES",
    "UploadRequest",
    "UploadResult",
    "UploadService",
    "UploadValidationError",
    "resolve_upload_key",
    "validate_upload",
]
