"""Pydantic request and response models for the Nano Generator API.

These models define the JSON schema for every API endpoint.  FastAPI uses
them for automatic request parsing, serialisation, and OpenAPI
documentation generation.

Field names follow the browser client's camelCase JSON keys through aliases.
Range and mode checks are deliberately *not* expressed here: they live in
:class:`~nanogen.core.orchestrator.GenerationRequest` so that every invalid
request is answered with the same ``400 {"images": [], "error": ...}`` shape
instead of FastAPI's generic 422.

Models
------
GenerateBody
    Payload for ``POST /api/generate``.
GenerateResponse
    Success and failure body of ``POST /api/generate``.
GalleryImageModel / GalleryResponse
    Body of ``GET /api/gallery``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GenerateBody(BaseModel):
    """Request body for the ``POST /api/generate`` endpoint.

    Attributes:
        prompt: Text prompt.  Required (checked by the orchestrator).
        n: Number of images to generate (1–6).
        mode: ``"text-to-image"`` or ``"image-to-image"``.
        image_data_urls: Reference images as ``data:image/...;base64,...``
            URLs.  Required in image-to-image mode.
        aspect_ratio: Optional output ratio (``16:9``, ``4:3``, ``1:1``,
            ``3:4``, ``9:16``).
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt: Any = Field(
        default=None,
        description="Text prompt describing the desired image.",
    )
    n: Any = Field(
        default=1,
        description="Number of images to generate (1–6).",
    )
    mode: Any = Field(
        default="text-to-image",
        description="Generation mode: 'text-to-image' or 'image-to-image'.",
    )
    image_data_urls: Any = Field(
        default=None,
        alias="imageDataUrls",
        description="Reference images as base64 data URLs (image-to-image).",
    )
    aspect_ratio: Any = Field(
        default=None,
        alias="aspectRatio",
        description="Optional output aspect ratio, e.g. '16:9'.",
    )


class GenerateResponse(BaseModel):
    """Response body for ``POST /api/generate``.

    On success only ``images`` and ``error`` (``None``) are meaningful.  On
    failure ``images`` is empty and the remaining fields describe the
    classified error.
    """

    model_config = ConfigDict(populate_by_name=True)

    images: list[str] = Field(default_factory=list)
    error: str | None = None
    error_type: str | None = Field(default=None, alias="errorType")
    suggestions: list[str] | None = None
    retryable: bool | None = None


class GalleryImageModel(BaseModel):
    """One cached image as listed by ``GET /api/gallery``."""

    filename: str
    path: str
    timestamp: int
    size: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class GalleryResponse(BaseModel):
    """One page of the gallery.

    Attributes:
        images: Images on the requested page, newest first.
        total_pages: ``ceil(total / limit)``; 0 for an empty gallery.
        current_page: The page that was requested.
        error: Set only when the cache directory could not be read.
    """

    model_config = ConfigDict(populate_by_name=True)

    images: list[GalleryImageModel] = Field(default_factory=list)
    total_pages: int = Field(default=0, alias="totalPages")
    current_page: int = Field(default=1, alias="currentPage")
    error: str | None = None
