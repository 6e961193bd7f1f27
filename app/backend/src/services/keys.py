"""Object key layout for media assets.

Every asset is addressed only by its key, ``<category>/<entityId>/<filename>``.
Thumbnail variants live next to their original with ``_thumb`` inserted
before the extension.
"""

from __future__ import annotations

import random
import re
import string
import time
from datetime import datetime
from enum import Enum

THUMBNAIL_MARKER = "_thumb"
DEFAULT_EXTENSION = "bin"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_BASE36 = string.digits + string.ascii_lowercase


class AssetCategory(str, Enum):
    """Closed set of asset categories accepted by the upload boundary."""

    LOGO = "logo"
    COVER = "cover"
    GALLERY = "gallery"
    LICENSE = "license"
    DOCUMENT = "document"
    TEMP = "temp"

    @classmethod
    def parse(cls, value: str | AssetCategory) -> AssetCategory:
        """Return the category for ``value`` or raise ``ValueError``."""

        if isinstance(value, AssetCategory):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown asset category: {value!r}") from exc

    @property
    def prefix(self) -> str:
        return CATEGORY_PREFIXES[self]

    @property
    def is_image(self) -> bool:
        return self in IMAGE_CATEGORIES


CATEGORY_PREFIXES: dict[AssetCategory, str] = {
    AssetCategory.LOGO: "logos/",
    AssetCategory.COVER: "covers/",
    AssetCategory.GALLERY: "galleries/",
    AssetCategory.LICENSE: "licenses/",
    AssetCategory.DOCUMENT: "documents/",
    AssetCategory.TEMP: "temp/",
}

IMAGE_CATEGORIES = frozenset(
    {AssetCategory.LOGO, AssetCategory.COVER, AssetCategory.GALLERY}
)
DOCUMENT_CATEGORIES = frozenset({AssetCategory.LICENSE, AssetCategory.DOCUMENT})

# Keys under these prefixes may be signed for anonymous callers.
PUBLIC_PREFIXES = ("logos/", "covers/", "galleries/", "temp/", "banners/")


def sanitize_filename(filename: str) -> str:
    """Replace every character outside ``[A-Za-z0-9._-]`` with ``_``."""

    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def file_extension(filename: str) -> str:
    """Return the lower-cased extension of ``filename`` or ``bin``."""

    name = filename.rsplit("/", 1)[-1]
    if "." not in name:
        return DEFAULT_EXTENSION
    extension = name.rsplit(".", 1)[-1].lower()
    return sanitize_filename(extension) or DEFAULT_EXTENSION


def _timestamp_ms(now: datetime | None) -> int:
    if now is None:
        return int(time.time() * 1000)
    return int(now.timestamp() * 1000)


def new_upload_id(now: datetime | None = None) -> str:
    """Return a ``<timestamp>_<random>`` identifier for temporary uploads."""

    suffix = "".join(random.choices(_BASE36, k=6))
    return f"{_timestamp_ms(now)}_{suffix}"


def build_key(
    category: AssetCategory | str,
    entity_id: str | int | None,
    filename: str,
    *,
    now: datetime | None = None,
    upload_id: str | None = None,
) -> str:
    """Return the storage key for an upload of ``filename``."""

    category = AssetCategory.parse(category)
    extension = file_extension(filename)

    if category is AssetCategory.TEMP:
        return f"temp/{upload_id or new_upload_id(now)}/{sanitize_filename(filename)}"

    entity = str(entity_id).strip() if entity_id is not None else ""
    if not entity:
        raise ValueError(f"An entity id is required for {category.value} keys")

    if category is AssetCategory.LOGO:
        return f"logos/{entity}/logo.{extension}"
    if category is AssetCategory.COVER:
        return f"covers/{entity}/cover.{extension}"
    if category is AssetCategory.GALLERY:
        return f"galleries/{entity}/image_{_timestamp_ms(now)}.{extension}"
    if category is AssetCategory.LICENSE:
        return f"licenses/{entity}/license.{extension}"
    if category is AssetCategory.DOCUMENT:
        return f"documents/{entity}/{sanitize_filename(filename)}"
    raise AssertionError(f"Unhandled asset category: {category}")


def _split_key(key: str) -> tuple[str, str]:
    directory, _, filename = key.rpartition("/")
    return directory, filename


def _join_key(directory: str, filename: str) -> str:
    return f"{directory}/{filename}" if directory else filename


def derive_thumbnail_key(key: str) -> str:
    """Return the thumbnail key for ``key``.

    ``logos/42/logo.webp`` becomes ``logos/42/logo_thumb.webp``; a filename
    without an extension gets the marker appended.
    """

    directory, filename = _split_key(key)
    name, dot, extension = filename.rpartition(".")
    if not dot:
        return _join_key(directory, f"{filename}{THUMBNAIL_MARKER}")
    return _join_key(directory, f"{name}{THUMBNAIL_MARKER}.{extension}")


def is_thumbnail_key(key: str) -> bool:
    """Return ``True`` when the filename carries the marker before its extension."""

    _, filename = _split_key(key)
    name, dot, _ = filename.rpartition(".")
    if not dot:
        return False
    return name.endswith(THUMBNAIL_MARKER)


def original_key_from_thumbnail(key: str) -> str:
    """Inverse of :func:`derive_thumbnail_key`."""

    directory, filename = _split_key(key)
    name, dot, extension = filename.rpartition(".")
    if dot and name.endswith(THUMBNAIL_MARKER):
        return _join_key(directory, f"{name[: -len(THUMBNAIL_MARKER)]}.{extension}")
    if not dot and filename.endswith(THUMBNAIL_MARKER):
        return _join_key(directory, filename[: -len(THUMBNAIL_MARKER)])
    return key


def category_for_key(key: str) -> AssetCategory | None:
    """Return the category whose prefix ``key`` starts with, if any."""

    for category, prefix in CATEGORY_PREFIXES.items():
        if key.startswith(prefix):
            return category
    return None


def is_public_key(key: str) -> bool:
    return key.startswith(PUBLIC_PREFIXES)


__all__ = [
    "AssetCategory",
    "CATEGORY_PREFIXES",
    "DOCUMENT_CATEGORIES",
    "IMAGE_CATEGORIES",
    "PUBLIC_PREFIXES",
    "THUMBNAIL_MARKER",
    "build_key",
    "category_for_key",
    "derive_thumbnail_key",
    "file_extension",
    "is_public_key",
    "is_thumbnail_key",
    "new_upload_id",
    "original_key_from_thumbnail",
    "sanitize_filename",
]
