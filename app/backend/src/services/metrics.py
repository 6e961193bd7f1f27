"""Prometheus metric definitions for media storage."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

uploads_total = Counter(
    "media_uploads_total",
    "Total upload requests by category and outcome.",
    labelnames=["category", "status"],
)

thumbnails_total = Counter(
    "media_thumbnails_total",
    "Thumbnail pipeline runs by outcome.",
    labelnames=["category", "status"],
)

thumbnail_render_seconds = Histogram(
    "media_thumbnail_render_seconds",
    "Time spent resizing and encoding a single thumbnail.",
)

signed_url_refresh_total = Counter(
    "media_signed_url_refresh_total",
    "Signed URL refresh attempts by outcome.",
    labelnames=["status"],
)

__all__ = [
    "signed_url_refresh_total",
    "thumbnail_render_seconds",
    "thumbnails_total",
    "uploads_total",
]
