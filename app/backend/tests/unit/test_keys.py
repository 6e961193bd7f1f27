"""Tests for the object key layout."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.backend.src.services.keys import (
    AssetCategory,
    build_key,
    category_for_key,
    derive_thumbnail_key,
    file_extension,
    is_public_key,
    is_thumbnail_key,
    original_key_from_thumbnail,
    sanitize_filename,
)

NOW = datetime(2025, 12, 15, 7, 47, 20, tzinfo=timezone.utc)


def test_build_key_templates_per_category() -> None:
    assert build_key("logo", 42, "Logo.PNG") == "logos/42/logo.png"
    assert build_key(AssetCategory.COVER, "42", "photo.jpg") == "covers/42/cover.jpg"
    assert build_key("license", 7, "scan.pdf") == "licenses/7/license.pdf"
    assert (
        build_key("gallery", 3, "a.webp", now=NOW)
        == f"galleries/3/image_{int(NOW.timestamp() * 1000)}.webp"
    )


def test_build_key_sanitizes_document_and_temp_names() -> None:
    assert build_key("document", 9, "Annual Report (2024).pdf") == "documents/9/Annual_Report__2024_.pdf"
    assert build_key("temp", None, "my file.png", upload_id="abc") == "temp/abc/my_file.png"


def test_build_key_defaults_extension_to_bin() -> None:
    assert build_key("logo", 1, "README") == "logos/1/logo.bin"
    assert file_extension("archive.tar.GZ") == "gz"


def test_build_key_requires_entity_for_owned_categories() -> None:
    with pytest.raises(ValueError):
        build_key("cover", "  ", "cover.jpg")


def test_unknown_category_is_rejected() -> None:
    with pytest.raises(ValueError):
        AssetCategory.parse("banner")
    with pytest.raises(ValueError):
        build_key("avatar", 1, "a.png")


def test_temp_keys_get_unique_upload_ids() -> None:
    first = build_key("temp", None, "a.png")
    assert first.startswith("temp/")
    assert first.endswith("/a.png")


def test_derive_thumbnail_key_inserts_marker_before_extension() -> None:
    assert derive_thumbnail_key("logos/42/logo.webp") == "logos/42/logo_thumb.webp"
    assert derive_thumbnail_key("covers/42/cover.jpg") == "covers/42/cover_thumb.jpg"


def test_derive_thumbnail_key_without_extension_appends_marker() -> None:
    assert derive_thumbnail_key("temp/abc/README") == "temp/abc/README_thumb"
    assert original_key_from_thumbnail("temp/abc/README_thumb") == "temp/abc/README"


@pytest.mark.parametrize(
    "key",
    [
        "logos/42/logo.webp",
        "covers/1/cover.jpeg",
        "galleries/5/image_1734248840000.png",
        "documents/9/report.v2.pdf",
        "logo.png",
    ],
)
def test_thumbnail_mapping_round_trips(key: str) -> None:
    thumbnail = derive_thumbnail_key(key)
    assert not is_thumbnail_key(key)
    assert is_thumbnail_key(thumbnail)
    assert original_key_from_thumbnail(thumbnail) == key


def test_marker_outside_filename_is_not_a_thumbnail() -> None:
    assert not is_thumbnail_key("logos/a_thumb.b/logo.png")
    assert original_key_from_thumbnail("logos/42/logo.png") == "logos/42/logo.png"


def test_category_for_key_and_public_prefixes() -> None:
    assert category_for_key("covers/42/cover.jpg") is AssetCategory.COVER
    assert category_for_key("banners/42/banner.jpg") is None
    assert is_public_key("banners/42/banner.jpg")
    assert not is_public_key("licenses/42/license.pdf")


def test_sanitize_filename_keeps_safe_characters() -> None:
    assert sanitize_filename("a-b_c.d") == "a-b_c.d"
    assert sanitize_filename("a/b\\c") == "a_b_c"
