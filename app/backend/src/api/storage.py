"""Signed URL lookup endpoints for pages and listings."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.backend.src.core.security import Caller, can_read_private, get_optional_caller
from app.backend.src.schemas.storage import (
    BatchUrlRequest,
    BatchUrlResponse,
    SignedUrlResponse,
)
from app.backend.src.services.batch_urls import BatchUrlService, get_url_cache
from app.backend.src.services.keys import is_public_key
from app.backend.src.services.s3 import StorageError, StorageGateway, get_storage_gateway

LOGGER = structlog.get_logger(__name__)

router = APIRouter(prefix="/storage", tags=["storage"])


def get_batch_url_service(
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> BatchUrlService:
    return BatchUrlService(gateway, get_url_cache())


@router.get("/url", response_model=SignedUrlResponse)
def get_file_url(
    key: str = Query(..., min_length=1),
    expires: int = Query(default=3600, ge=60, le=7 * 24 * 3600),
    caller: Caller | None = Depends(get_optional_caller),
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> SignedUrlResponse:
    """Sign ``key``; only public prefixes are available to anonymous callers."""

    if not is_public_key(key) and not can_read_private(caller):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        if not gateway.exists(key):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="File not found",
            )
        url = gateway.get_signed_url(key, expires)
    except StorageError as exc:
        LOGGER.error("get_file_url_failed", key=key, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to get file URL",
        ) from exc

    return SignedUrlResponse(url=url, key=key, expires_in=expires)


@router.post("/batch-urls", response_model=BatchUrlResponse)
def get_batch_urls(
    payload: BatchUrlRequest,
    caller: Caller | None = Depends(get_optional_caller),
    service: BatchUrlService = Depends(get_batch_url_service),
) -> BatchUrlResponse:
    """Sign up to 50 keys, preferring existing thumbnails.

    Private keys map to ``null`` for callers that may not read them.
    """

    urls: dict[str, str | None] = dict.fromkeys(payload.keys)
    allowed = [key for key in payload.keys if is_public_key(key) or can_read_private(caller)]
    urls.update(service.urls_for(allowed, prefer_thumbnails=payload.prefer_thumbnails))
    return BatchUrlResponse(urls=urls)
