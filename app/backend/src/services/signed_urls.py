"""Signed URL inspection and refresh.

A signed URL carries its own expiry: ``X-Amz-Date`` is the issue time and
``X-Amz-Expires`` the ttl in seconds. Expiry is never treated as an error;
callers refresh ahead of time and fall back to the value they already hold.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable
from urllib.parse import parse_qs, unquote, urlsplit

import structlog

from app.backend.src.services.metrics import signed_url_refresh_total

LOGGER = structlog.get_logger(__name__)

ALGORITHM_PARAM = "X-Amz-Algorithm"
SIGNATURE_PARAM = "X-Amz-Signature"
DATE_PARAM = "X-Amz-Date"
EXPIRES_PARAM = "X-Amz-Expires"
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

SAFETY_MARGIN = timedelta(minutes=5)
REFRESH_TTL_SECONDS = 3600


class InputKind(str, Enum):
    EMPTY = "empty"
    KEY = "key"
    URL = "url"
    SIGNED_URL = "signed_url"


def _query(url: str) -> dict[str, list[str]]:
    try:
        return parse_qs(urlsplit(url).query)
    except ValueError:
        return {}


def is_signed_url(url: str | None) -> bool:
    """Return ``True`` when ``url`` carries the signing algorithm and a signature."""

    if not url:
        return False
    params = _query(url)
    return ALGORITHM_PARAM in params and SIGNATURE_PARAM in params


def classify(value: str | None) -> InputKind:
    """Tell a bare storage key from an ordinary or signed URL."""

    if not value or not value.strip():
        return InputKind.EMPTY
    value = value.strip()
    if "://" in value or value.startswith(("/", "data:", "blob:")):
        return InputKind.SIGNED_URL if is_signed_url(value) else InputKind.URL
    if "/" in value or "." in value:
        return InputKind.KEY
    return InputKind.URL


def extract_key(url: str) -> str | None:
    """Return the object key of a ``<endpoint>/<bucket>/<key>?...`` URL."""

    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    segments = [segment for segment in parts.path.split("/") if segment]
    if len(segments) < 2:
        return None
    return unquote("/".join(segments[1:]))


def parse_expiry(url: str) -> datetime | None:
    """Return the UTC instant at which ``url`` stops working, if it says."""

    if not is_signed_url(url):
        return None
    params = _query(url)
    try:
        issued_at = datetime.strptime(params[DATE_PARAM][0], AMZ_DATE_FORMAT)
        ttl_seconds = int(params[EXPIRES_PARAM][0])
    except (KeyError, IndexError, ValueError):
        return None
    return issued_at.replace(tzinfo=timezone.utc) + timedelta(seconds=ttl_seconds)


def is_expiring_soon(url: str | None, now: datetime | None = None) -> bool:
    """Return ``True`` once ``url`` is inside the safety margin before expiry.

    URLs without expiry information are never reported as expiring.
    """

    if not url:
        return False
    expires_at = parse_expiry(url)
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now >= expires_at - SAFETY_MARGIN


def refresh_key_for(url_or_key: str | None) -> str | None:
    """Return the key a refresh should sign for ``url_or_key``, if any."""

    kind = classify(url_or_key)
    if kind is InputKind.SIGNED_URL:
        return extract_key(url_or_key.strip())
    if kind is InputKind.KEY:
        return url_or_key.strip()
    return None


class SignedUrlLifecycle:
    """Exchanges a key or stale signed URL for a fresh one.

    ``sign`` maps a key to a new URL; on the server it is the storage gateway.
    """

    def __init__(
        self,
        sign: Callable[[str, int], str],
        *,
        ttl_seconds: int = REFRESH_TTL_SECONDS,
    ) -> None:
        self._sign = sign
        self.ttl_seconds = ttl_seconds

    @classmethod
    def for_gateway(cls, gateway, *, ttl_seconds: int = REFRESH_TTL_SECONDS) -> "SignedUrlLifecycle":
        return cls(gateway.get_signed_url, ttl_seconds=ttl_seconds)

    def refresh(self, url_or_key: str) -> str:
        """Return a fresh signed URL, or ``url_or_key`` unchanged on any failure."""

        key = refresh_key_for(url_or_key)
        if not key:
            return url_or_key
        try:
            url = self._sign(key, self.ttl_seconds)
        except Exception as exc:
            LOGGER.warning("signed_url_refresh_failed", key=key, error=str(exc))
            signed_url_refresh_total.labels(status="failed").inc()
            return url_or_key
        signed_url_refresh_total.labels(status="refreshed").inc()
        return url or url_or_key


async def refresh_async(
    url_or_key: str,
    fetch: Callable[[str], Awaitable[str | None]],
) -> str:
    """Async counterpart of :meth:`SignedUrlLifecycle.refresh` for the client.

    ``fetch`` asks the URL-refresh endpoint for a new URL for a key.
    """

    key = refresh_key_for(url_or_key)
    if not key:
        return url_or_key
    try:
        url = await fetch(key)
    except Exception as exc:
        LOGGER.warning("signed_url_refresh_failed", key=key, error=str(exc))
        signed_url_refresh_total.labels(status="failed").inc()
        return url_or_key
    signed_url_refresh_total.labels(status="refreshed").inc()
    return url or url_or_key


__all__ = [
    "InputKind",
    "REFRESH_TTL_SECONDS",
    "SAFETY_MARGIN",
    "SignedUrlLifecycle",
    "classify",
    "extract_key",
    "is_expiring_soon",
    "is_signed_url",
    "parse_expiry",
    "refresh_async",
    "refresh_key_for",
]
