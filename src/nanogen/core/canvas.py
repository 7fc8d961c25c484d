"""Blank reference canvases used to steer the output aspect ratio.

The image model follows the shape of the last reference image it is given,
so a request with an aspect ratio gets a solid black canvas of that ratio
appended to its reference images and a short instruction appended to its
prompt.
"""

from __future__ import annotations

import io
import logging

from PIL import Image

from nanogen.core.provider import ImagePayload

logger = logging.getLogger(__name__)

ASPECT_RATIOS: dict[str, tuple[int, int]] = {
    "16:9": (1280, 720),
    "4:3": (1024, 768),
    "1:1": (1024, 1024),
    "3:4": (768, 1024),
    "9:16": (720, 1280),
}

CANVAS_PROMPT_SUFFIX = "Aspect ratio as in the attached black canvas."


def blank_canvas(aspect_ratio: str, color: str = "black") -> ImagePayload:
    """Render a solid PNG canvas for ``aspect_ratio``.

    Unknown ratios fall back to ``1:1``.
    """
    size = ASPECT_RATIOS.get(aspect_ratio)
    if size is None:
        logger.error("Invalid aspect ratio: %s. Defaulting to 1:1.", aspect_ratio)
        size = ASPECT_RATIOS["1:1"]

    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="PNG")
    return ImagePayload(mime_type="image/png", data=buffer.getvalue())


def with_canvas_prompt(prompt: str) -> str:
    return f"{prompt.strip()} {CANVAS_PROMPT_SUFFIX}"
