"""Tests for nanogen.api.gallery_store — cache listing and pagination.

Tests cover:
- Filtering the cache directory down to image files.
- Newest-first ordering from filename timestamps (mtime fallback).
- Page arithmetic, including empty galleries and pages past the end.
- Metadata attachment for the requested page only.
"""

from __future__ import annotations

import os

from nanogen.api.gallery_store import (
    attach_metadata,
    load_gallery_entries,
    paginate_gallery_entries,
)
from nanogen.core.provider import ImagePayload


def _entries(count: int) -> list[dict]:
    return [{"filename": f"{i}.png"} for i in range(count)]


class TestLoadGalleryEntries:
    def test_only_images_are_listed(self, image_cache, png_bytes):
        (image_cache.cache_dir / "1700000000001-aaaaaa.png").write_bytes(png_bytes)
        (image_cache.cache_dir / "1700000000002-bbbbbb.WEBP").write_bytes(b"x")
        (image_cache.cache_dir / "notes.txt").write_text("hello")
        (image_cache.cache_dir / "nested.png").mkdir()

        names = [e["filename"] for e in load_gallery_entries(image_cache)]
        assert names == ["1700000000002-bbbbbb.WEBP", "1700000000001-aaaaaa.png"]

    def test_newest_first_by_filename_timestamp(self, image_cache, png_bytes):
        for name in ("1700000000005-a.png", "1700000000009-b.jpg", "1700000000001-c.jpeg"):
            (image_cache.cache_dir / name).write_bytes(png_bytes)

        entries = load_gallery_entries(image_cache)
        assert [e["timestamp"] for e in entries] == [1700000000009, 1700000000005, 1700000000001]
        assert entries[0]["path"] == "/cache/1700000000009-b.jpg"
        assert entries[0]["size"] == len(png_bytes)

    def test_mtime_fallback(self, image_cache, png_bytes):
        path = image_cache.cache_dir / "dropped.png"
        path.write_bytes(png_bytes)
        os.utime(path, (1600000000, 1600000000))

        (entry,) = load_gallery_entries(image_cache)
        assert entry["timestamp"] == 1600000000000

    def test_empty_directory(self, image_cache):
        assert load_gallery_entries(image_cache) == []


class TestPaginateGalleryEntries:
    def test_first_page(self):
        result = paginate_gallery_entries(_entries(30), page=1, limit=12)
        assert len(result["images"]) == 12
        assert result["totalPages"] == 3
        assert result["currentPage"] == 1

    def test_last_partial_page(self):
        result = paginate_gallery_entries(_entries(30), page=3, limit=12)
        assert [e["filename"] for e in result["images"]] == [f"{i}.png" for i in range(24, 30)]

    def test_page_past_end_is_empty(self):
        result = paginate_gallery_entries(_entries(5), page=4, limit=12)
        assert result == {"images": [], "totalPages": 1, "currentPage": 4}

    def test_empty_gallery(self):
        assert paginate_gallery_entries([], page=1, limit=12) == {
            "images": [],
            "totalPages": 0,
            "currentPage": 1,
        }

    def test_values_are_clamped(self):
        result = paginate_gallery_entries(_entries(3), page=0, limit=0)
        assert result["currentPage"] == 1
        assert result["totalPages"] == 3
        assert len(result["images"]) == 1


class TestAttachMetadata:
    def test_metadata_added_without_mutating_entries(self, image_cache, png_bytes):
        stored = image_cache.store(
            ImagePayload(mime_type="image/png", data=png_bytes), {"prompt": "a fox"}
        )
        entries = load_gallery_entries(image_cache)

        enriched = attach_metadata(entries, image_cache)

        assert enriched[0]["metadata"] == {"prompt": "a fox"}
        assert enriched[0]["filename"] == stored.file_path.name
        assert "metadata" not in entries[0]
