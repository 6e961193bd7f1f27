"""Celery tasks for thumbnail generation."""

from __future__ import annotations

from time import perf_counter

import structlog

from app.backend.src.services.s3 import get_storage_gateway
from app.backend.src.services.thumbnails import ThumbnailPipeline
from .worker import celery

LOGGER = structlog.get_logger(__name__)


@celery.task(name="tasks.generate_thumbnail")
def generate_thumbnail(original_key: str, category: str) -> str:
    """Create the thumbnail for an already uploaded original."""

    start = perf_counter()
    gateway = get_storage_gateway()
    try:
        original = gateway.download(original_key)
        thumbnail_key = ThumbnailPipeline(gateway).ensure_thumbnail(
            original_key, original, category
        )
    except Exception as exc:  # pragma: no cover - logged and re-raised
        LOGGER.error("thumbnail_task_failure", key=original_key, error=str(exc))
        raise
    LOGGER.info(
        "thumbnail_task_success",
        key=original_key,
        thumbnail_key=thumbnail_key,
        duration_seconds=round(perf_counter() - start, 3),
    )
    return thumbnail_key


__all__ = ["generate_thumbnail"]
