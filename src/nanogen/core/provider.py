"""Vertex AI image provider adapter.

This module turns one generation call into one ``generate_content`` request
against a Gemini image model on Vertex AI, using the ``google-genai`` SDK.

Key Responsibilities
--------------------
- **Explicit configuration** — the SDK client is built from a
  :class:`~nanogen.core.config.ProviderSettings` passed in at construction
  time.  Nothing is read from or written to the process environment.
- **Request assembly** — the prompt becomes the first text part; reference
  images (``data:image/...;base64,...`` URLs) follow as inline-data parts.
  Malformed data URLs are skipped with a warning.
- **Strict response parsing** — the SDK response is validated against
  :class:`ProviderResponse`.  Anything that does not match, or matches but
  carries no image, fails with a status-less :class:`ProviderError` that the
  classifier reports as an unknown error.
- **Error normalisation** — SDK and transport failures are re-raised as
  :class:`ProviderError` with an HTTP-equivalent status, so the retry
  executor and the classifier see one consistent shape.

Usage
-----
::

    from nanogen.core.config import config
    from nanogen.core.provider import VertexImageProvider

    provider = VertexImageProvider(config.provider_settings())
    payload = await provider.invoke(config.image_model, "a lighthouse at dawn")
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel, ConfigDict, ValidationError

from nanogen.core.config import ProviderSettings
from nanogen.core.errors import ProviderError

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_MODALITIES: tuple[str, ...] = ("TEXT", "IMAGE")

_DATA_URL_RE = re.compile(r"^data:(image/[^;]+);base64,(.+)$", re.DOTALL)

# Provider status codes (numeric or gRPC-style names) → HTTP statuses.
_STATUS_MAP: dict[int | str, int] = {
    401: 401,
    "UNAUTHENTICATED": 401,
    403: 403,
    "PERMISSION_DENIED": 403,
    404: 404,
    "NOT_FOUND": 404,
    429: 429,
    "RESOURCE_EXHAUSTED": 429,
    400: 400,
    "INVALID_ARGUMENT": 400,
    500: 500,
    "INTERNAL": 500,
    503: 503,
    "UNAVAILABLE": 503,
    504: 408,
    "DEADLINE_EXCEEDED": 408,
}


@dataclass(frozen=True)
class ImagePayload:
    """Binary image data returned by (or sent to) the provider."""

    mime_type: str
    data: bytes

    @classmethod
    def from_data_url(cls, url: str) -> ImagePayload:
        """Decode a ``data:image/<type>;base64,<data>`` URL.

        Raises:
            ValueError: If the URL is not a base64 image data URL.
        """
        match = _DATA_URL_RE.match(url or "")
        if not match:
            raise ValueError("Invalid image data URL")
        try:
            data = base64.b64decode(match.group(2), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("Invalid base64 payload in data URL") from e
        if not data:
            raise ValueError("No base64 data found")
        return cls(mime_type=match.group(1), data=data)

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"


class ImageProvider(Protocol):
    """Interface the orchestrator uses to request a single image."""

    async def invoke(
        self,
        model: str,
        prompt: str,
        reference_images: Sequence[str] | None = None,
        response_modalities: Sequence[str] = DEFAULT_RESPONSE_MODALITIES,
    ) -> ImagePayload: ...


# ---------------------------------------------------------------------------
# Expected response schema.
# ---------------------------------------------------------------------------


class _Schema(BaseModel):
    model_config = ConfigDict(extra="ignore")


class InlineData(_Schema):
    mime_type: str
    data: bytes


class ResponsePart(_Schema):
    text: str | None = None
    inline_data: InlineData | None = None


class ResponseContent(_Schema):
    parts: list[ResponsePart] = []


class Candidate(_Schema):
    content: ResponseContent | None = None


class PromptFeedback(_Schema):
    block_reason: Any = None


class ProviderResponse(_Schema):
    """Subset of ``GenerateContentResponse`` the adapter relies on."""

    candidates: list[Candidate] = []
    prompt_feedback: PromptFeedback | None = None

    def first_image(self) -> ImagePayload | None:
        for candidate in self.candidates:
            if candidate.content is None:
                continue
            for part in candidate.content.parts:
                if part.inline_data is not None and part.inline_data.data:
                    return ImagePayload(
                        mime_type=part.inline_data.mime_type,
                        data=part.inline_data.data,
                    )
        return None


def parse_provider_response(response: Any) -> ImagePayload:
    """Validate a provider response and extract its first image.

    Args:
        response: SDK response object (anything with ``model_dump``) or a
            plain dictionary of the same shape.

    Returns:
        The first inline image found in the candidates.

    Raises:
        ProviderError: 400 when the prompt was blocked; status-less
            ``unexpected_response`` when the shape is wrong or no image is
            present.
    """
    raw = response.model_dump(exclude_none=True) if hasattr(response, "model_dump") else response
    try:
        parsed = ProviderResponse.model_validate(raw)
    except ValidationError as e:
        raise ProviderError(
            f"Unexpected provider response shape: {e.error_count()} validation error(s)",
            code="unexpected_response",
        ) from e

    block_reason = parsed.prompt_feedback.block_reason if parsed.prompt_feedback else None
    if block_reason:
        reason = getattr(block_reason, "value", block_reason)
        raise ProviderError(
            f"Prompt blocked by safety filter: {reason}",
            status=400,
            code="content_filtered",
        )

    image = parsed.first_image()
    if image is None:
        raise ProviderError("No image in provider response", code="unexpected_response")
    return image


def map_provider_status(error: Any) -> int:
    """Translate an SDK error's code or status name into an HTTP status."""
    for key in (getattr(error, "code", None), getattr(error, "status", None)):
        if key in _STATUS_MAP:
            return _STATUS_MAP[key]
    return 500


class VertexImageProvider:
    """Gemini image generation on Vertex AI.

    Args:
        settings: Explicit project/location/timeout settings.
        client: Optional pre-built ``genai.Client`` (used by tests).
    """

    def __init__(self, settings: ProviderSettings, client: Any = None) -> None:
        self._settings = settings
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._settings.project_id:
                raise ProviderError(
                    "NANOGEN_PROJECT_ID is required for Vertex AI",
                    code="missing_project",
                )
            self._client = genai.Client(
                vertexai=True,
                project=self._settings.project_id,
                location=self._settings.location,
                http_options=types.HttpOptions(timeout=self._settings.timeout_ms),
            )
        return self._client

    @staticmethod
    def _build_parts(prompt: str, reference_images: Sequence[str] | None) -> list[types.Part]:
        parts = [types.Part.from_text(text=prompt)]
        for url in reference_images or ():
            try:
                payload = ImagePayload.from_data_url(url)
            except ValueError:
                logger.warning("Skipping invalid image data URL: %s...", (url or "")[:30])
                continue
            parts.append(types.Part.from_bytes(data=payload.data, mime_type=payload.mime_type))
        return parts

    async def invoke(
        self,
        model: str,
        prompt: str,
        reference_images: Sequence[str] | None = None,
        response_modalities: Sequence[str] = DEFAULT_RESPONSE_MODALITIES,
    ) -> ImagePayload:
        """Request one image from the provider.

        Args:
            model: Model identifier.
            prompt: Text prompt, sent unchanged.
            reference_images: Optional image data URLs for image-to-image mode.
            response_modalities: Modalities requested from the model.

        Returns:
            The generated image.

        Raises:
            ProviderError: On any provider, transport, or response failure.
        """
        client = self._get_client()

        logger.info(
            "Vertex AI request: model=%s, prompt=%r, images=%d, modalities=%s.",
            model,
            prompt[:100],
            len(reference_images or ()),
            list(response_modalities),
        )

        try:
            response = await client.aio.models.generate_content(
                model=model,
                contents=[
                    types.Content(role="user", parts=self._build_parts(prompt, reference_images))
                ],
                config=types.GenerateContentConfig(
                    response_modalities=list(response_modalities),
                ),
            )
        except genai_errors.APIError as e:
            logger.error(
                "Vertex AI error: code=%s, status=%s, message=%s.", e.code, e.status, e.message
            )
            raise ProviderError(
                e.message or "Vertex AI request failed",
                status=map_provider_status(e),
                code=e.status,
                body={"error": {"message": e.message, "code": e.status}},
            ) from e
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise ProviderError("Vertex AI request timeout", status=408) from e
        except httpx.TransportError as e:
            raise ProviderError(f"Vertex AI transport error: {e}", status=503) from e

        payload = parse_provider_response(response)
        logger.info("Vertex AI returned %s (%d bytes).", payload.mime_type, len(payload.data))
        return payload
