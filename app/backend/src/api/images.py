"""Signed URL refresh endpoint used by the client resolver."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from app.backend.src.core.security import Caller, can_read_private, get_optional_caller
from app.backend.src.schemas.storage import RefreshRequest, RefreshResponse
from app.backend.src.services.keys import is_public_key
from app.backend.src.services.s3 import StorageError, StorageGateway, get_storage_gateway
from app.backend.src.services.signed_urls import REFRESH_TTL_SECONDS

LOGGER = structlog.get_logger(__name__)

router = APIRouter(prefix="/images", tags=["images"])


@router.post("/refresh", response_model=RefreshResponse)
def refresh_image_url(
    payload: RefreshRequest,
    caller: Caller | None = Depends(get_optional_caller),
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> RefreshResponse:
    """Return a fresh 1-hour signed URL for ``payload.key``."""

    if not payload.key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Key is required")
    if not is_public_key(payload.key) and not can_read_private(caller):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        url = gateway.get_signed_url(payload.key, REFRESH_TTL_SECONDS)
    except StorageError as exc:
        LOGGER.error("refresh_image_url_failed", key=payload.key, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to refresh image URL",
        ) from exc
    return RefreshResponse(url=url)
