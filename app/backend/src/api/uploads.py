"""Upload management endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from app.backend.src.core.config import get_settings
from app.backend.src.core.security import Caller, require_uploader
from app.backend.src.schemas.storage import UploadResponse
from app.backend.src.services.keys import AssetCategory
from app.backend.src.services.s3 import StorageError, StorageGateway, get_storage_gateway
from app.backend.src.services.uploads import (
    UploadRequest,
    UploadService,
    UploadValidationError,
)

LOGGER = structlog.get_logger(__name__)

router = APIRouter(prefix="/upload", tags=["uploads"])


def _enqueue_thumbnail(key: str, category: str) -> None:
    from tasks.thumbnail_tasks import generate_thumbnail

    task = generate_thumbnail.apply_async(args=[key, category])
    LOGGER.info("thumbnail_task_enqueued", task_id=task.id, key=key)


def get_upload_service(
    gateway: StorageGateway = Depends(get_storage_gateway),
) -> UploadService:
    settings = get_settings()
    return UploadService(
        gateway,
        max_bytes=settings.max_upload_bytes,
        thumbnails_on_upload=settings.thumbnails_on_upload,
        enqueue_thumbnail=_enqueue_thumbnail,
    )


@router.post("", response_model=UploadResponse)
async def create_upload(
    file: UploadFile = File(...),
    type: str = Form(...),
    organization_id: str | None = Form(default=None, alias="organizationId"),
    caller: Caller = Depends(require_uploader),
    service: UploadService = Depends(get_upload_service),
) -> UploadResponse:
    """Store an image or document and return its key and a 1-hour URL."""

    try:
        category = AssetCategory.parse(type)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    contents = await file.read()
    request = UploadRequest(
        category=category,
        filename=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
        data=contents,
        entity_id=organization_id,
        uploaded_by=caller.id,
    )

    try:
        result = service.upload(request)
    except UploadValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except StorageError as exc:
        LOGGER.error("upload_failed", error=str(exc), category=category.value)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to upload file",
        ) from exc

    return UploadResponse(
        key=result.key,
        url=result.url,
        size=result.size,
        content_type=result.content_type,
        original_name=result.original_name,
        thumbnail_key=result.thumbnail_key,
    )


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
def delete_upload(
    key: str = Query(..., min_length=1),
    _: Caller = Depends(require_uploader),
    service: UploadService = Depends(get_upload_service),
) -> None:
    """Delete an asset together with its thumbnail."""

    try:
        service.delete(key)
    except StorageError as exc:
        LOGGER.error("delete_failed", key=key, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to delete file",
        ) from exc
