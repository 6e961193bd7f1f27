"""Thumbnail variants for uploaded images."""

from __future__ import annotations

from io import BytesIO
from time import perf_counter

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from app.backend.src.services.keys import AssetCategory, derive_thumbnail_key
from app.backend.src.services.metrics import thumbnail_render_seconds, thumbnails_total
from app.backend.src.services.s3 import StorageGateway

LOGGER = structlog.get_logger(__name__)

# Twice the card display size for high-density screens.
THUMBNAIL_SIZES: dict[AssetCategory, tuple[int, int]] = {
    AssetCategory.LOGO: (128, 128),
    AssetCategory.COVER: (640, 360),
    AssetCategory.GALLERY: (400, 400),
}

THUMBNAIL_FORMAT = "WEBP"
THUMBNAIL_CONTENT_TYPE = "image/webp"
THUMBNAIL_QUALITY = 85


class DecodeError(ValueError):
    """Raised when the original bytes cannot be read as an image."""


class UnsupportedCategoryError(ValueError):
    """Raised for categories that have no thumbnail size."""


def thumbnail_size(category: AssetCategory | str) -> tuple[int, int]:
    category = AssetCategory.parse(category)
    try:
        return THUMBNAIL_SIZES[category]
    except KeyError as exc:
        raise UnsupportedCategoryError(
            f"No thumbnail size defined for category {category.value!r}"
        ) from exc


def render_thumbnail(data: bytes, size: tuple[int, int]) -> bytes:
    """Resize ``data`` to fill ``size`` (centered crop) and encode as WebP."""

    try:
        with Image.open(BytesIO(data)) as source:
            source.load()
            image = ImageOps.exif_transpose(source)
            if image.mode not in ("RGB", "RGBA"):
                has_alpha = image.mode in ("LA", "PA") or "transparency" in image.info
                image = image.convert("RGBA" if has_alpha else "RGB")
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise DecodeError(f"Unable to decode image: {exc}") from exc

    fitted = ImageOps.fit(
        image,
        size,
        method=Image.Resampling.LANCZOS,
        centering=(0.5, 0.5),
    )
    buffer = BytesIO()
    fitted.save(buffer, format=THUMBNAIL_FORMAT, quality=THUMBNAIL_QUALITY)
    return buffer.getvalue()


class ThumbnailPipeline:
    """Creates at most one thumbnail per original key."""

    def __init__(self, gateway: StorageGateway) -> None:
        self.gateway = gateway

    def ensure_thumbnail(
        self,
        original_key: str,
        original_bytes: bytes,
        category: AssetCategory | str,
    ) -> str:
        category = AssetCategory.parse(category)
        size = thumbnail_size(category)
        thumbnail_key = derive_thumbnail_key(original_key)

        if self.gateway.exists(thumbnail_key):
            LOGGER.info("thumbnail_exists", key=thumbnail_key)
            thumbnails_total.labels(category=category.value, status="skipped").inc()
            return thumbnail_key

        start = perf_counter()
        try:
            rendered = render_thumbnail(original_bytes, size)
        except DecodeError as exc:
            LOGGER.warning("thumbnail_decode_failed", key=original_key, error=str(exc))
            thumbnails_total.labels(category=category.value, status="decode_error").inc()
            raise
        finally:
            thumbnail_render_seconds.observe(perf_counter() - start)

        self.gateway.put(
            thumbnail_key,
            rendered,
            THUMBNAIL_CONTENT_TYPE,
            {
                "isThumbnail": "true",
                "originalKey": original_key,
                "thumbnailType": category.value,
            },
        )
        thumbnails_total.labels(category=category.value, status="generated").inc()
        LOGGER.info(
            "thumbnail_created",
            original_key=original_key,
            key=thumbnail_key,
            width=size[0],
            height=size[1],
        )
        return thumbnail_key


__all__ = [
    "DecodeError",
    "THUMBNAIL_CONTENT_TYPE",
    "THUMBNAIL_SIZES",
    "ThumbnailPipeline",
    "UnsupportedCategoryError",
    "render_thumbnail",
    "thumbnail_size",
]
