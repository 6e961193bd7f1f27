"""Render-time resolution of asset keys into usable image URLs.

Pages hold whatever a record stores: a bare key (``logos/42/logo.webp``), an
ordinary URL, or a signed URL that may be close to expiry. ``AssetResolver``
turns any of these into a URL, sharing one in-flight request per key across
every :class:`ImageSlot` that asks for it. ``ImageSlot`` tracks one rendered
image through the ``TRANSITIONS`` table below.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable

import httpx
import structlog
from cachetools import TTLCache

from app.backend.src.services.signed_urls import (
    REFRESH_TTL_SECONDS,
    SAFETY_MARGIN,
    InputKind,
    classify,
    extract_key,
    is_expiring_soon,
    is_signed_url,
    refresh_key_for,
)

LOGGER = structlog.get_logger(__name__)

REFRESH_PATH = "/api/images/refresh"
MAX_LOAD_RETRIES = 2
DEFAULT_CACHE_SIZE = 256
DEFAULT_CACHE_TTL = REFRESH_TTL_SECONDS - int(SAFETY_MARGIN.total_seconds())

FetchUrl = Callable[[str], Awaitable[str]]


class ResolveError(RuntimeError):
    """Raised by a URL source that could not produce a URL for a key."""


class InvalidTransition(RuntimeError):
    pass


class ResolverState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    REFRESHING = "refreshing"
    RETRYING = "retrying"
    GAVE_UP = "gave_up"


class ResolverEvent(str, Enum):
    RESOLVE = "resolve"
    RESOLVED = "resolved"
    FAILED = "failed"
    EXPIRING = "expiring"
    LOAD_ERROR = "load_error"
    REFRESHED = "refreshed"
    EXHAUSTED = "exhausted"


TRANSITIONS: dict[tuple[ResolverState, ResolverEvent], ResolverState] = {
    **{(state, ResolverEvent.RESOLVE): ResolverState.RESOLVING for state in ResolverState},
    (ResolverState.RESOLVING, ResolverEvent.RESOLVED): ResolverState.RESOLVED,
    (ResolverState.RESOLVING, ResolverEvent.FAILED): ResolverState.GAVE_UP,
    (ResolverState.RESOLVED, ResolverEvent.EXPIRING): ResolverState.REFRESHING,
    (ResolverState.REFRESHING, ResolverEvent.REFRESHED): ResolverState.RESOLVED,
    (ResolverState.RESOLVED, ResolverEvent.LOAD_ERROR): ResolverState.RETRYING,
    (ResolverState.RETRYING, ResolverEvent.REFRESHED): ResolverState.RESOLVED,
    (ResolverState.RESOLVED, ResolverEvent.EXHAUSTED): ResolverState.GAVE_UP,
}


def next_state(state: ResolverState, event: ResolverEvent) -> ResolverState:
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(f"{event.value} is not allowed in state {state.value}") from None


def is_renderable(url: str | None) -> bool:
    """Return ``True`` for absolute http(s) or root-relative URLs."""

    if not url:
        return False
    return url.startswith(("http://", "https://")) or (
        url.startswith("/") and not url.startswith("//")
    )


class SignedUrlClient:
    """HTTP boundary to the URL-refresh endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def fetch(self, key: str) -> str:
        response = await self._client.post(REFRESH_PATH, json={"key": key})
        response.raise_for_status()
        url = response.json().get("url")
        if not url:
            raise ResolveError(f"Refresh endpoint returned no url for {key!r}")
        return url

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SignedUrlClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class AssetResolver:
    """Resolves keys to signed URLs with a bounded cache and request coalescing.

    One resolver is shared by every slot rendered in the same runtime. At most
    one ``fetch_url`` call per key is in flight; later callers await the same
    future.
    """

    def __init__(
        self,
        fetch_url: FetchUrl,
        *,
        cache_size: int = DEFAULT_CACHE_SIZE,
        cache_ttl: float = DEFAULT_CACHE_TTL,
    ) -> None:
        self._fetch_url = fetch_url
        self._cache: TTLCache = TTLCache(maxsize=cache_size, ttl=cache_ttl)
        self._inflight: dict[str, asyncio.Future[str]] = {}

    def cached(self, key: str) -> str | None:
        return self._cache.get(key)

    def clear(self) -> None:
        self._cache.clear()

    async def _fetch(self, key: str) -> str:
        url = await self._fetch_url(key)
        if not url:
            raise ResolveError(f"No url returned for {key!r}")
        self._cache[key] = url
        return url

    async def resolve_key(self, key: str, *, force: bool = False) -> str | None:
        """Return a URL for ``key`` or ``None`` when it cannot be resolved."""

        if not force:
            cached = self._cache.get(key)
            if cached is not None and not is_expiring_soon(cached):
                return cached

        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._fetch(key))
            self._inflight[key] = pending

            def _forget(done: asyncio.Future[str]) -> None:
                if self._inflight.get(key) is done:
                    del self._inflight[key]
                if not done.cancelled():
                    # Retrieved even when every awaiter was cancelled.
                    done.exception()

            pending.add_done_callback(_forget)
        else:
            LOGGER.debug("asset_resolve_coalesced", key=key)

        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("asset_resolve_failed", key=key, error=str(exc))
            return None

    async def resolve(self, value: str | None) -> str | None:
        """Return a URL to render for ``value``; never raises."""

        kind = classify(value)
        if kind is InputKind.EMPTY:
            return None
        value = value.strip()
        if kind is InputKind.URL:
            return value
        if kind is InputKind.SIGNED_URL:
            if not is_expiring_soon(value):
                return value
            key = extract_key(value)
            if key is None:
                return value
            return await self.resolve_key(key) or value
        return await self.resolve_key(value)

    async def refresh(self, url_or_key: str) -> str:
        """Return a fresh URL for ``url_or_key`` or the input itself on failure."""

        key = refresh_key_for(url_or_key)
        if not key:
            return url_or_key
        return await self.resolve_key(key, force=True) or url_or_key


class ImageSlot:
    """One rendered image: which source it shows and how it recovers."""

    def __init__(self, resolver: AssetResolver, *, max_retries: int = MAX_LOAD_RETRIES) -> None:
        self.resolver = resolver
        self.max_retries = max_retries
        self.state = ResolverState.IDLE
        self.source: str | None = None
        self.current_url: str | None = None
        self.retries = 0
        self._generation = 0

    def _apply(self, event: ResolverEvent) -> None:
        self.state = next_state(self.state, event)

    @property
    def placeholder(self) -> bool:
        return self.state is ResolverState.RESOLVING

    @property
    def renderable_url(self) -> str | None:
        """URL for the image tag, or ``None`` to render nothing/placeholder."""

        if self.placeholder or not is_renderable(self.current_url):
            return None
        return self.current_url

    async def set_source(self, value: str | None) -> str | None:
        if value == self.source and self.state is not ResolverState.IDLE:
            return self.renderable_url

        self._generation += 1
        generation = self._generation
        self.source = value
        self.current_url = None
        self.retries = 0
        self._apply(ResolverEvent.RESOLVE)

        url = await self.resolver.resolve(value)
        if generation != self._generation:
            # Superseded by a newer source while this one was pending.
            return None

        if url is None:
            self._apply(ResolverEvent.FAILED)
        else:
            self.current_url = url
            self._apply(ResolverEvent.RESOLVED)
        return self.renderable_url

    async def check_expiry(self) -> str | None:
        """Refresh ahead of time once the current URL nears expiry."""

        if self.state is not ResolverState.RESOLVED or not is_expiring_soon(self.current_url):
            return self.renderable_url

        generation = self._generation
        self._apply(ResolverEvent.EXPIRING)
        url = await self.resolver.refresh(self.current_url)
        if generation != self._generation:
            return None
        self.current_url = url
        self._apply(ResolverEvent.REFRESHED)
        return self.renderable_url

    async def on_load_error(self) -> str | None:
        """Handle the image failing to load; bounded by ``max_retries``."""

        if self.state is not ResolverState.RESOLVED:
            return self.renderable_url

        if self.retries >= self.max_retries or not is_signed_url(self.current_url):
            LOGGER.info(
                "asset_load_gave_up",
                source=self.source,
                retries=self.retries,
            )
            self._apply(ResolverEvent.EXHAUSTED)
            return self.renderable_url

        generation = self._generation
        self.retries += 1
        self._apply(ResolverEvent.LOAD_ERROR)
        url = await self.resolver.refresh(self.current_url)
        if generation != self._generation:
            return None
        self.current_url = url
        self._apply(ResolverEvent.REFRESHED)
        return self.renderable_url


__all__ = [
    "AssetResolver",
    "ImageSlot",
    "InvalidTransition",
    "ResolveError",
    "ResolverEvent",
    "ResolverState",
    "SignedUrlClient",
    "TRANSITIONS",
    "is_renderable",
    "next_state",
]
