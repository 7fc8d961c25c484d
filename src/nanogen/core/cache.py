"""On-disk image cache for generated results.

Every successfully generated image is written once to the cache directory
and served back to the browser at ``/cache/<filename>``.  Generation
metadata (prompt, mode, model, aspect ratio) is embedded in the image itself
as a JSON document in the EXIF ``ImageDescription`` tag, so the gallery can
show it later without a separate database.

Filenames are ``<epoch-ms>-<6 hex chars>.<ext>``.  The timestamp prefix gives
the gallery its sort key and the random suffix keeps concurrent writers from
colliding, so no locking is needed: each task writes its own file once.
"""

from __future__ import annotations

import io
import json
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from nanogen.core.provider import ImagePayload

logger = logging.getLogger(__name__)

PUBLIC_PREFIX = "/cache"

# EXIF tag 0x010E.  Stored as ASCII, hence ``ensure_ascii`` when dumping.
IMAGE_DESCRIPTION_TAG = 0x010E

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")

_PIL_FORMATS = {"png": "PNG", "jpg": "JPEG", "webp": "WEBP"}


@dataclass(frozen=True)
class StoredImage:
    """Location of a cached image.

    Attributes:
        file_path: Absolute path on disk.
        public_path: URL path the browser loads the image from.
    """

    file_path: Path
    public_path: str


def infer_extension(mime_type: str | None) -> str:
    """Pick a file extension for a MIME type, defaulting to ``png``."""
    if not mime_type:
        return "png"
    if "png" in mime_type:
        return "png"
    if "jpeg" in mime_type or "jpg" in mime_type:
        return "jpg"
    if "webp" in mime_type:
        return "webp"
    return "png"


def unique_filename(ext: str) -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}.{ext}"


class ImageCache:
    """Append-only image store backed by a directory.

    Args:
        cache_dir: Directory holding the image files.  Created if missing.
    """

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def public_path(self, filename: str) -> str:
        return f"{PUBLIC_PREFIX}/{filename}"

    def store(self, payload: ImagePayload, metadata: dict | None = None) -> StoredImage:
        """Write an image to the cache, embedding ``metadata`` when possible.

        Images Pillow cannot decode are written byte-for-byte without
        metadata.

        Args:
            payload: Image bytes and MIME type from the provider.
            metadata: JSON-serialisable generation metadata.

        Returns:
            Where the image was written and its public reference.
        """
        ext = infer_extension(payload.mime_type)
        filename = unique_filename(ext)
        file_path = self.cache_dir / filename

        data = payload.data
        if metadata:
            try:
                data = self._embed_metadata(payload.data, _PIL_FORMATS[ext], metadata)
            except (UnidentifiedImageError, OSError, ValueError):
                logger.warning(
                    "Could not embed metadata into %s; saving raw bytes.", filename, exc_info=True
                )

        file_path.write_bytes(data)
        logger.info("Image saved: %s (public path %s).", file_path, self.public_path(filename))
        return StoredImage(file_path=file_path, public_path=self.public_path(filename))

    @staticmethod
    def _embed_metadata(data: bytes, pil_format: str, metadata: dict) -> bytes:
        with Image.open(io.BytesIO(data)) as image:
            exif = image.getexif()
            exif[IMAGE_DESCRIPTION_TAG] = json.dumps(metadata, ensure_ascii=True)

            if pil_format == "JPEG" and image.mode not in ("RGB", "L", "CMYK"):
                image = image.convert("RGB")

            buffer = io.BytesIO()
            image.save(buffer, format=pil_format, exif=exif.tobytes())
            return buffer.getvalue()

    def read_metadata(self, file_path: Path) -> dict:
        """Extract the embedded generation metadata from a cached image.

        Returns an empty dictionary for images without (valid) metadata.
        """
        try:
            with Image.open(file_path) as image:
                raw = image.getexif().get(IMAGE_DESCRIPTION_TAG)
        except (UnidentifiedImageError, OSError):
            return {}

        if not raw:
            return {}
        if isinstance(raw, bytes):
            raw = raw.decode("ascii", errors="ignore")
        try:
            metadata = json.loads(raw)
        except ValueError:
            return {}
        return metadata if isinstance(metadata, dict) else {}

    def resolve(self, filename: str) -> Path:
        """Resolve a gallery filename to a path inside the cache directory.

        Raises:
            ValueError: If the name is not a plain image filename in the cache.
            FileNotFoundError: If no such file exists.
        """
        if not filename or Path(filename).name != filename:
            raise ValueError(f"Invalid filename: {filename!r}")
        if not filename.lower().endswith(IMAGE_EXTENSIONS):
            raise ValueError(f"Not an image file: {filename!r}")

        file_path = (self.cache_dir / filename).resolve()
        if file_path.parent != self.cache_dir.resolve():
            logger.warning("Path traversal attempt detected: %s", filename)
            raise ValueError(f"Invalid filename: {filename!r}")
        if not file_path.is_file():
            raise FileNotFoundError(filename)
        return file_path

    def delete(self, filename: str) -> None:
        """Remove a cached image.  Only reachable through the admin route."""
        file_path = self.resolve(filename)
        file_path.unlink()
        logger.info("Image deleted: %s", file_path)
