"""Signed URLs for many keys at once, preferring thumbnail variants.

Listing pages ask for every logo and cover on a page in one request instead
of one request per card.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Protocol

import structlog
from cachetools import TTLCache

from app.backend.src.core.config import get_settings
from app.backend.src.core.redis_cache import RedisUrlCache
from app.backend.src.services.keys import derive_thumbnail_key, is_thumbnail_key
from app.backend.src.services.s3 import StorageError, StorageGateway

LOGGER = structlog.get_logger(__name__)

BATCH_URL_TTL_SECONDS = 1800
# Shorter than the URL lifetime so cached URLs are never handed out stale.
BATCH_CACHE_TTL_SECONDS = 25 * 60
MAX_BATCH_KEYS = 50

_THUMBNAIL_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif")


class UrlCache(Protocol):
    def get(self, suffix: str) -> str | None: ...

    def set(self, suffix: str, value: str) -> None: ...


class MemoryUrlCache:
    def __init__(self, *, maxsize: int = 1000, ttl_seconds: int = BATCH_CACHE_TTL_SECONDS) -> None:
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl_seconds)

    def get(self, suffix: str) -> str | None:
        return self._cache.get(suffix)

    def set(self, suffix: str, value: str) -> None:
        self._cache[suffix] = value


def has_thumbnail_variant(key: str) -> bool:
    return key.lower().endswith(_THUMBNAIL_EXTENSIONS) and not is_thumbnail_key(key)


class BatchUrlService:
    def __init__(self, gateway: StorageGateway, cache: UrlCache) -> None:
        self.gateway = gateway
        self.cache = cache

    def url_for(self, key: str, *, prefer_thumbnail: bool = True) -> str | None:
        cache_key = f"{key}:{int(prefer_thumbnail)}"
        cached = self.cache.get(cache_key)
        if cached:
            return cached

        try:
            final_key = key
            if prefer_thumbnail and has_thumbnail_variant(key):
                thumbnail_key = derive_thumbnail_key(key)
                if self.gateway.exists(thumbnail_key):
                    final_key = thumbnail_key
            url = self.gateway.get_signed_url(final_key, BATCH_URL_TTL_SECONDS)
        except StorageError as exc:
            LOGGER.warning("batch_url_failed", key=key, error=str(exc))
            return None

        self.cache.set(cache_key, url)
        return url

    def urls_for(self, keys: Iterable[str], *, prefer_thumbnails: bool = True) -> dict[str, str | None]:
        return {key: self.url_for(key, prefer_thumbnail=prefer_thumbnails) for key in keys}


@lru_cache()
def get_url_cache() -> UrlCache:
    settings = get_settings()
    if settings.redis_enabled:
        return RedisUrlCache(ttl_seconds=BATCH_CACHE_TTL_SECONDS)
    return MemoryUrlCache()


__all__ = [
    "BATCH_URL_TTL_SECONDS",
    "BatchUrlService",
    "MAX_BATCH_KEYS",
    "MemoryUrlCache",
    "get_url_cache",
    "has_thumbnail_variant",
]
