from __future__ import annotations
import structlog
from redis import Redis

from .config import get_settings

LOGGER = structlog.get_logger(__name__)

class RedisUrlCache:
    """Redis cache for signed URLs handed out by the batch endpoint."""

    def __init__(self, *, key_prefix: str = "signed_url", ttl_seconds: int = 25 * 60):
        settings = get_settings()
        self.client = Redis.from_url(settings.redis_url)
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds

    def _key(self, suffix: str) -> str:
        return f"{self.key_prefix}:{suffix}"

    def get(self, suffix: str) -> str | None:
        key = self._key(suffix)
        try:
            raw = self.client.get(key)
            if not raw:
                return None
            return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
        except Exception as exc:
            LOGGER.warning("redis_cache_read_failed", key=key, error=str(exc))
            return None

    def set(self, suffix: str, value: str) -> None:
        key = self._key(suffix)
        try:
            self.client.setex(key, self.ttl_seconds, value)
        except Exception as exc:
            LOGGER.warning("redis_cache_write_failed", key=key, error=str(exc))
