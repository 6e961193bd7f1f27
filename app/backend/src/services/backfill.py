"""Batch thumbnail generation for originals that predate the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

import structlog

from app.backend.src.services.keys import (
    AssetCategory,
    category_for_key,
    derive_thumbnail_key,
    is_thumbnail_key,
)
from app.backend.src.services.s3 import StorageError, StorageGateway
from app.backend.src.services.signed_urls import extract_key, is_signed_url
from app.backend.src.services.thumbnails import (
    THUMBNAIL_SIZES,
    DecodeError,
    ThumbnailPipeline,
)

LOGGER = structlog.get_logger(__name__)

INVENTORY_CATEGORIES = (AssetCategory.LOGO, AssetCategory.COVER)


@dataclass(frozen=True)
class ImageCandidate:
    key: str
    category: AssetCategory
    entity_id: str | None = None


@dataclass
class BackfillReport:
    dry_run: bool = False
    generated: list[str] = field(default_factory=list)
    planned: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return (
            len(self.generated)
            + len(self.planned)
            + len(self.skipped)
            + len(self.missing)
            + len(self.errors)
        )

    @property
    def failed(self) -> bool:
        return bool(self.errors or self.missing)

    def as_dict(self) -> dict[str, object]:
        return {
            "dry_run": self.dry_run,
            "generated": len(self.generated),
            "planned": len(self.planned),
            "skipped": len(self.skipped),
            "missing": len(self.missing),
            "errors": dict(self.errors),
            "total": self.total,
        }


def key_from_value(value: str | None) -> str | None:
    """Return the storage key held by an inventory value (key or signed URL)."""

    if not value:
        return None
    value = value.strip()
    if is_signed_url(value):
        return extract_key(value)
    if value.startswith(tuple(category.prefix for category in INVENTORY_CATEGORIES)):
        return value
    return None


def candidates_from_prefix(gateway: StorageGateway, prefix: str) -> list[ImageCandidate]:
    """List originals under ``prefix`` whose category has a thumbnail size."""

    candidates: list[ImageCandidate] = []
    for key in gateway.list_keys(prefix):
        if is_thumbnail_key(key):
            continue
        category = category_for_key(key)
        if category not in THUMBNAIL_SIZES:
            continue
        candidates.append(ImageCandidate(key=key, category=category))
    return candidates


def candidates_from_inventory(
    rows: Iterable[Sequence[str | None]],
) -> list[ImageCandidate]:
    """Build candidates from ``(entity_id, logo_value, cover_value)`` rows."""

    candidates: list[ImageCandidate] = []
    for entity_id, *values in rows:
        for expected, value in zip(INVENTORY_CATEGORIES, values):
            key = key_from_value(value)
            if key is None or category_for_key(key) is not expected:
                continue
            candidates.append(
                ImageCandidate(
                    key=key,
                    category=expected,
                    entity_id=str(entity_id) if entity_id is not None else None,
                )
            )
    return candidates


def run_backfill(
    gateway: StorageGateway,
    candidates: Iterable[ImageCandidate],
    *,
    dry_run: bool = False,
) -> BackfillReport:
    """Generate missing thumbnails; one failing item never stops the batch."""

    pipeline = ThumbnailPipeline(gateway)
    report = BackfillReport(dry_run=dry_run)

    for candidate in candidates:
        thumbnail_key = derive_thumbnail_key(candidate.key)
        try:
            if gateway.exists(thumbnail_key):
                report.skipped.append(candidate.key)
                continue
            if not gateway.exists(candidate.key):
                LOGGER.warning("backfill_original_missing", key=candidate.key)
                report.missing.append(candidate.key)
                continue
            if dry_run:
                LOGGER.info("backfill_planned", key=candidate.key, thumbnail_key=thumbnail_key)
                report.planned.append(candidate.key)
                continue

            original = gateway.download(candidate.key)
            pipeline.ensure_thumbnail(candidate.key, original, candidate.category)
            report.generated.append(candidate.key)
        except (DecodeError, StorageError) as exc:
            LOGGER.error("backfill_item_failed", key=candidate.key, error=str(exc))
            report.errors[candidate.key] = str(exc)

    LOGGER.info("backfill_complete", **report.as_dict())
    return report


__all__ = [
    "BackfillReport",
    "ImageCandidate",
    "candidates_from_inventory",
    "candidates_from_prefix",
    "key_from_value",
    "run_backfill",
]
