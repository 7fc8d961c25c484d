"""Gallery listing helpers for the Nano Generator API.

This module isolates cache-directory scanning and pagination from
``nanogen.api.main`` so route handlers can focus on HTTP concerns while the
gallery logic remains testable as a small unit.

The gallery is intentionally simple:

- the cache directory itself is the source of truth (no index file)
- every ``.png``/``.jpg``/``.jpeg``/``.webp`` file is one gallery entry
- list order is reverse-chronological (newest first), using the timestamp
  encoded in the filename and falling back to the file's modification time
- generation metadata is read from the image only for the requested page
"""

from __future__ import annotations

import re

from nanogen.core.cache import IMAGE_EXTENSIONS, ImageCache

_TIMESTAMP_RE = re.compile(r"^(\d+)-")


def load_gallery_entries(cache: ImageCache) -> list[dict]:
    """Scan the cache directory and return gallery entries, newest first.

    Users may drop or delete files in the cache directory by hand, so the
    listing is rebuilt from the directory on every call.

    Args:
        cache: Image cache whose directory is scanned.

    Returns:
        List of entry dictionaries with ``filename``, ``path``,
        ``timestamp`` (milliseconds), and ``size`` (bytes).

    Raises:
        OSError: If the cache directory cannot be read.
    """
    entries: list[dict] = []

    for file_path in cache.cache_dir.iterdir():
        if not file_path.is_file() or not file_path.name.lower().endswith(IMAGE_EXTENSIONS):
            continue

        stats = file_path.stat()

        # Filenames written by the cache start with their creation time in
        # milliseconds; anything else falls back to the modification time.
        match = _TIMESTAMP_RE.match(file_path.name)
        timestamp = int(match.group(1)) if match else int(stats.st_mtime * 1000)

        entries.append(
            {
                "filename": file_path.name,
                "path": cache.public_path(file_path.name),
                "timestamp": timestamp,
                "size": stats.st_size,
            }
        )

    entries.sort(key=lambda entry: (entry["timestamp"], entry["filename"]), reverse=True)
    return entries


def paginate_gallery_entries(entries: list[dict], page: int, limit: int) -> dict:
    """Slice one page out of the gallery entries.

    ``page`` and ``limit`` are clamped to at least 1.  A page past the end
    is returned empty rather than clamped, so the client's infinite scroll
    stops cleanly once ``currentPage`` reaches ``totalPages``.

    Args:
        entries: All gallery entries, already sorted.
        page: Requested one-based page number.
        limit: Requested items per page.

    Returns:
        Dictionary containing ``images``, ``totalPages``, and ``currentPage``.
    """
    page = max(page, 1)
    limit = max(limit, 1)

    total = len(entries)
    total_pages = (total + limit - 1) // limit

    start = (page - 1) * limit
    return {
        "images": entries[start : start + limit],
        "totalPages": total_pages,
        "currentPage": page,
    }


def attach_metadata(entries: list[dict], cache: ImageCache) -> list[dict]:
    """Return copies of ``entries`` with their embedded metadata added."""
    return [
        {**entry, "metadata": cache.read_metadata(cache.cache_dir / entry["filename"])}
        for entry in entries
    ]
