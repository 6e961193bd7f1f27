import sys
from datetime import datetime, timezone
from io import BytesIO
from pathlib import Path
from typing import Any
from urllib.parse import quote

sys.path.append(str(Path(__file__).resolve().parents[4]))

import pytest
from botocore.exceptions import ClientError
from PIL import Image

from app.backend.src.services.s3 import StorageGateway

BUCKET = "edumap-media"
ENDPOINT = "https://storage.yandexcloud.net"


def client_error(status: int, code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def signed_url(key: str, *, issued_at: datetime | None = None, ttl: int = 3600, signature: str = "sig") -> str:
    issued_at = issued_at or datetime.now(timezone.utc)
    return (
        f"{ENDPOINT}/{BUCKET}/{quote(key)}"
        "?X-Amz-Algorithm=AWS4-HMAC-SHA256"
        "&X-Amz-Credential=test%2F20251215%2Fru-central1%2Fs3%2Faws4_request"
        f"&X-Amz-Date={issued_at.strftime('%Y%m%dT%H%M%SZ')}"
        f"&X-Amz-Expires={ttl}"
        "&X-Amz-SignedHeaders=host"
        f"&X-Amz-Signature={signature}"
    )


class _Body:
    def __init__(self, data: bytes) -> None:
        self._stream = BytesIO(data)

    def read(self) -> bytes:
        return self._stream.read()

    def close(self) -> None:
        self._stream.close()


class _Paginator:
    def __init__(self, objects: dict[str, dict[str, Any]]) -> None:
        self._objects = objects

    def paginate(self, Bucket: str, Prefix: str = ""):  # noqa: N803
        keys = sorted(key for key in self._objects if key.startswith(Prefix))
        yield {"Contents": [{"Key": key} for key in keys[:2]]}
        if keys[2:]:
            yield {"Contents": [{"Key": key} for key in keys[2:]]}


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client methods the gateway uses."""

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.failures: dict[str, Exception] = {}
        self.sign_count = 0

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str, Metadata: dict[str, str]):  # noqa: N803
        self.calls.append(("put_object", Key))
        self._maybe_fail("put_object")
        self.objects[Key] = {
            "Body": bytes(Body),
            "ContentType": ContentType,
            "Metadata": dict(Metadata),
            "LastModified": datetime(2025, 12, 15, tzinfo=timezone.utc),
        }
        return {"ETag": '"etag"'}

    def head_object(self, Bucket: str, Key: str):  # noqa: N803
        self.calls.append(("head_object", Key))
        self._maybe_fail("head_object")
        if Key not in self.objects:
            raise client_error(404, "404")
        item = self.objects[Key]
        return {
            "ContentLength": len(item["Body"]),
            "ContentType": item["ContentType"],
            "LastModified": item["LastModified"],
            "ETag": '"etag"',
        }

    def get_object(self, Bucket: str, Key: str):  # noqa: N803
        self.calls.append(("get_object", Key))
        self._maybe_fail("get_object")
        if Key not in self.objects:
            raise client_error(404, "NoSuchKey", "GetObject")
        return {"Body": _Body(self.objects[Key]["Body"])}

    def delete_object(self, Bucket: str, Key: str):  # noqa: N803
        self.calls.append(("delete_object", Key))
        self._maybe_fail("delete_object")
        self.objects.pop(Key, None)
        return {}

    def generate_presigned_url(self, operation: str, Params: dict[str, str], ExpiresIn: int):  # noqa: N803
        self.calls.append(("generate_presigned_url", Params["Key"]))
        self._maybe_fail("generate_presigned_url")
        self.sign_count += 1
        return signed_url(Params["Key"], ttl=ExpiresIn, signature=f"sig{self.sign_count}")

    def get_paginator(self, operation: str) -> _Paginator:
        self._maybe_fail("list_objects_v2")
        return _Paginator(self.objects)

    def head_bucket(self, Bucket: str):  # noqa: N803
        self._maybe_fail("head_bucket")
        return {}

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


def image_bytes(size: tuple[int, int], fmt: str = "JPEG", color: str = "#336699") -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture()
def s3_client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture()
def gateway(s3_client: FakeS3Client) -> StorageGateway:
    return StorageGateway(s3_client, BUCKET)


@pytest.fixture
def anyio_backend():
    return "asyncio"
