from datetime import datetime, timezone
from io import BytesIO

import pytest
from PIL import Image

from app.backend.src.services.backfill import candidates_from_prefix, run_backfill
from app.backend.src.services.keys import AssetCategory
from app.backend.src.services.s3 import StorageGateway
from app.backend.src.services.uploads import (
    UploadRequest,
    UploadService,
    UploadValidationError,
    resolve_upload_key,
)
from conftest import FakeS3Client, image_bytes

NOW = datetime(2025, 12, 15, 7, 47, 20, tzinfo=timezone.utc)


def _request(**overrides: object) -> UploadRequest:
    values = dict(
        category=AssetCategory.COVER,
        filename="cover.jpg",
        content_type="image/jpeg",
        data=image_bytes((64, 64)),
        entity_id="42",
        uploaded_by="7",
    )
    values.update(overrides)
    return UploadRequest(**values)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"data": b""}, "File is required"),
        ({"data": b"x" * 2048}, "File size exceeds"),
        ({"content_type": "text/html", "filename": "a.html"}, "Invalid file type"),
        ({"content_type": "application/pdf", "filename": "a.pdf"}, "must be images"),
        ({"category": AssetCategory.LICENSE}, "must be documents"),
    ],
)
def test_validation_rejects_before_storage(
    gateway: StorageGateway, s3_client: FakeS3Client, overrides: dict, message: str
) -> None:
    service = UploadService(gateway, max_bytes=1024)

    with pytest.raises(UploadValidationError) as excinfo:
        service.upload(_request(**overrides))

    assert message in excinfo.value.message
    assert s3_client.calls == []


def test_svg_accepted_by_extension(gateway: StorageGateway) -> None:
    service = UploadService(gateway)

    result = service.upload(
        _request(category=AssetCategory.LOGO, filename="logo.svg", content_type="image/svg", data=b"<svg/>")
    )

    assert result.key == "logos/42/logo.svg"
    assert result.thumbnail_key is None


def test_upload_without_entity_goes_to_temp() -> None:
    key = resolve_upload_key(_request(entity_id=None, filename="my cover.jpg"), now=NOW)

    assert key.startswith("temp/")
    assert key.endswith("/my_cover.jpg")


def test_document_upload_keeps_sanitized_name(gateway: StorageGateway, s3_client: FakeS3Client) -> None:
    service = UploadService(gateway)

    result = service.upload(
        _request(
            category=AssetCategory.DOCUMENT,
            filename="Charter 2024.pdf",
            content_type="application/pdf",
            data=b"%PDF-1.4",
        ),
        now=NOW,
    )

    assert result.key == "documents/42/Charter_2024.pdf"
    assert result.original_name == "Charter 2024.pdf"
    assert s3_client.objects[result.key]["Metadata"] == {
        "originalName": "Charter 2024.pdf",
        "uploadedAt": NOW.isoformat(),
        "uploadedBy": "7",
    }


def test_cover_upload_then_thumbnail_job_is_idempotent(
    gateway: StorageGateway, s3_client: FakeS3Client
) -> None:
    enqueued: list[tuple[str, str]] = []
    service = UploadService(
        gateway,
        thumbnails_on_upload=False,
        enqueue_thumbnail=lambda key, category: enqueued.append((key, category)),
    )

    result = service.upload(_request(data=image_bytes((2000, 2000))))

    assert result.key == "covers/42/cover.jpg"
    assert result.size == len(s3_client.objects["covers/42/cover.jpg"]["Body"])
    assert "covers/42/cover.jpg" in result.url
    assert enqueued == [("covers/42/cover.jpg", "cover")]

    report = run_backfill(gateway, candidates_from_prefix(gateway, "covers/"))
    assert report.generated == ["covers/42/cover.jpg"]

    thumbnail = s3_client.objects["covers/42/cover_thumb.jpg"]
    assert thumbnail["ContentType"] == "image/webp"
    with Image.open(BytesIO(thumbnail["Body"])) as image:
        assert image.format == "WEBP"
        assert image.size == (640, 360)

    puts_before = s3_client.count("put_object")
    rerun = run_backfill(gateway, candidates_from_prefix(gateway, "covers/"))
    assert rerun.generated == []
    assert rerun.skipped == ["covers/42/cover.jpg"]
    assert s3_client.count("put_object") == puts_before


def test_logo_upload_creates_thumbnail_synchronously(gateway: StorageGateway, s3_client: FakeS3Client) -> None:
    service = UploadService(gateway)

    result = service.upload(
        _request(
            category=AssetCategory.LOGO,
            filename="logo.png",
            content_type="image/png",
            data=image_bytes((300, 300), fmt="PNG"),
        )
    )

    assert result.key == "logos/42/logo.png"
    assert result.thumbnail_key == "logos/42/logo_thumb.png"
    assert "logos/42/logo_thumb.png" in s3_client.objects


def test_undecodable_image_keeps_original(gateway: StorageGateway, s3_client: FakeS3Client) -> None:
    service = UploadService(gateway)

    result = service.upload(_request(data=b"\xff\xd8 broken jpeg"))

    assert result.thumbnail_key is None
    assert list(s3_client.objects) == ["covers/42/cover.jpg"]


def test_delete_removes_original_and_thumbnail(gateway: StorageGateway, s3_client: FakeS3Client) -> None:
    service = UploadService(gateway)
    result = service.upload(_request())

    service.delete(result.key)

    assert s3_client.objects == {}


def test_reupload_regenerates_thumbnail(gateway: StorageGateway, s3_client: FakeS3Client) -> None:
    service = UploadService(gateway)

    service.upload(
        _request(category=AssetCategory.LOGO, filename="logo.jpg", data=image_bytes((300, 300), color="red"))
    )
    result = service.upload(
        _request(category=AssetCategory.LOGO, filename="logo.jpg", data=image_bytes((300, 300), color="blue"))
    )

    assert result.thumbnail_key == "logos/42/logo_thumb.jpg"
    with Image.open(BytesIO(s3_client.objects["logos/42/logo_thumb.jpg"]["Body"])) as thumbnail:
        red, green, blue = thumbnail.convert("RGB").getpixel((64, 64))
    assert blue > 200
    assert red < 50


def test_reupload_with_queued_thumbnails_clears_stale_variant(
    gateway: StorageGateway, s3_client: FakeS3Client
) -> None:
    gateway.put("covers/42/cover_thumb.jpg", b"old", "image/webp")
    enqueued: list[tuple[str, str]] = []
    service = UploadService(
        gateway,
        thumbnails_on_upload=False,
        enqueue_thumbnail=lambda key, category: enqueued.append((key, category)),
    )

    service.upload(_request())

    assert "covers/42/cover_thumb.jpg" not in s3_client.objects
    assert enqueued == [("covers/42/cover.jpg", "cover")]
