"""Generation orchestration: fan out N image requests, collect N references.

:class:`GenerationOrchestrator` is the piece the HTTP layer talks to.  For a
validated :class:`GenerationRequest` it:

1. Starts one task per requested image under an ``asyncio.Semaphore``
   (1 concurrent task for batches above 2, otherwise 2).
2. Calls the provider inside :func:`~nanogen.core.retry.with_retry`.
3. Stores each image in the :class:`~nanogen.core.cache.ImageCache` and keeps
   its public reference at the task's index, so results come back in
   submission order regardless of completion order.
4. Returns :class:`GenerationSuccess` when every task succeeds, or a single
   :class:`GenerationFailure` built from the first failure.  Tasks still in
   flight at that point run to completion but their results are dropped;
   tasks still waiting for a concurrency slot do not call the provider.

Cancellation comes from a :class:`~nanogen.core.sessions.GenerationToken`:
when a newer generation supersedes this one, every task is cancelled and
:class:`~nanogen.core.errors.GenerationSuperseded` is raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from nanogen.core.cache import ImageCache
from nanogen.core.canvas import ASPECT_RATIOS, blank_canvas, with_canvas_prompt
from nanogen.core.errors import (
    ClassifiedError,
    GenerationSuperseded,
    InvalidRequestError,
    classify_provider_error,
)
from nanogen.core.provider import ImageProvider
from nanogen.core.retry import RetryPolicy, with_retry
from nanogen.core.sessions import GenerationToken

logger = logging.getLogger(__name__)

MIN_COUNT = 1
MAX_COUNT = 6


class GenerationMode(str, Enum):
    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_TO_IMAGE = "image-to-image"


@dataclass(frozen=True)
class GenerationRequest:
    """One validated generation request.

    Construction validates every field and raises
    :class:`~nanogen.core.errors.InvalidRequestError` on the first violation,
    so an instance always satisfies the request invariants.

    Attributes:
        prompt: Non-empty text prompt, passed to the provider unchanged.
        count: Number of images, 1 to 6 inclusive.
        mode: Text-only or image-conditioned generation.
        reference_images: Image data URLs; required for image-to-image.
        aspect_ratio: Optional output ratio, one of :data:`ASPECT_RATIOS`.
    """

    prompt: str
    count: int = 1
    mode: GenerationMode = GenerationMode.TEXT_TO_IMAGE
    reference_images: tuple[str, ...] = ()
    aspect_ratio: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise InvalidRequestError("Prompt is required")

        if (
            isinstance(self.count, bool)
            or not isinstance(self.count, int)
            or not MIN_COUNT <= self.count <= MAX_COUNT
        ):
            raise InvalidRequestError(f"n must be between {MIN_COUNT} and {MAX_COUNT}")

        try:
            mode = GenerationMode(self.mode)
        except ValueError:
            raise InvalidRequestError(
                "mode must be 'text-to-image' or 'image-to-image'"
            ) from None
        object.__setattr__(self, "mode", mode)

        references = self.reference_images or ()
        if not isinstance(references, (list, tuple)) or not all(
            isinstance(url, str) for url in references
        ):
            raise InvalidRequestError("imageDataUrls must be an array of image data URLs")
        object.__setattr__(self, "reference_images", tuple(references))

        if mode is GenerationMode.IMAGE_TO_IMAGE and not self.reference_images:
            raise InvalidRequestError("imageDataUrls is required for image-to-image")

        if self.aspect_ratio is not None and (
            not isinstance(self.aspect_ratio, str) or self.aspect_ratio not in ASPECT_RATIOS
        ):
            raise InvalidRequestError(
                f"aspectRatio must be one of: {', '.join(ASPECT_RATIOS)}"
            )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> GenerationRequest:
        """Build a request from the JSON keys of ``POST /api/generate``.

        Raises:
            InvalidRequestError: If any field is invalid.
        """
        return cls(
            prompt=payload.get("prompt"),
            count=payload.get("n", 1),
            mode=payload.get("mode") or GenerationMode.TEXT_TO_IMAGE.value,
            reference_images=payload.get("imageDataUrls") or (),
            aspect_ratio=payload.get("aspectRatio"),
        )

    @property
    def effective_mode(self) -> GenerationMode:
        """Mode actually sent to the provider (an aspect ratio forces image-to-image)."""
        if self.aspect_ratio is not None:
            return GenerationMode.IMAGE_TO_IMAGE
        return self.mode

    def provider_inputs(self) -> tuple[str, tuple[str, ...]]:
        """Return the ``(prompt, reference_images)`` pair sent to the provider.

        Text-to-image requests send no reference images.  With an aspect
        ratio, a blank canvas is appended last and the prompt asks the model
        to match it.
        """
        if self.aspect_ratio is None:
            if self.mode is GenerationMode.TEXT_TO_IMAGE:
                return self.prompt, ()
            return self.prompt, self.reference_images

        canvas = blank_canvas(self.aspect_ratio).to_data_url()
        references = self.reference_images if self.mode is GenerationMode.IMAGE_TO_IMAGE else ()
        return with_canvas_prompt(self.prompt), references + (canvas,)


@dataclass(frozen=True)
class GenerationSuccess:
    images: tuple[str, ...]

    ok = True


@dataclass(frozen=True)
class GenerationFailure:
    error: ClassifiedError

    ok = False

    @property
    def http_status(self) -> int:
        return self.error.http_status


GenerationOutcome = Union[GenerationSuccess, GenerationFailure]


class _Batch:
    """Shared state of the tasks belonging to one request."""

    def __init__(self, count: int) -> None:
        self.results: list[str | None] = [None] * count
        self.failed = False


def _consume_result(task: asyncio.Task) -> None:
    # Late failures of tasks whose batch already failed are intentionally
    # dropped; retrieving them keeps asyncio from logging them as unhandled.
    if not task.cancelled():
        task.exception()


class GenerationOrchestrator:
    """Runs generation requests against a provider and stores the results.

    Args:
        provider: Adapter that produces one image per call.
        cache: Store for the generated images.
        model: Model identifier passed to the provider.
        retry_policy: Per-image retry policy (3 attempts, 0.6 s by default).
    """

    def __init__(
        self,
        provider: ImageProvider,
        cache: ImageCache,
        *,
        model: str,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._model = model
        self._retry_policy = retry_policy or RetryPolicy()

    @staticmethod
    def concurrency_limit(count: int) -> int:
        """Larger batches run one at a time to go easy on the provider."""
        return 1 if count > 2 else 2

    async def generate(
        self,
        request: GenerationRequest,
        token: GenerationToken | None = None,
    ) -> GenerationOutcome:
        """Generate ``request.count`` images.

        Args:
            request: Validated request.
            token: Optional session token; cancelling it aborts this call.

        Returns:
            :class:`GenerationSuccess` with references in submission order,
            or :class:`GenerationFailure` with the first classified error.

        Raises:
            GenerationSuperseded: If ``token`` was cancelled by a newer request.
        """
        if token is not None and token.cancelled:
            raise GenerationSuperseded(f"Generation #{token.serial} was superseded")

        prompt, references = request.provider_inputs()
        metadata = {
            "prompt": request.prompt,
            "mode": request.effective_mode.value,
            "model": self._model,
        }
        if request.aspect_ratio is not None:
            metadata["aspect_ratio"] = request.aspect_ratio

        batch = _Batch(request.count)
        semaphore = asyncio.Semaphore(self.concurrency_limit(request.count))
        tasks = [
            asyncio.create_task(
                self._run_task(index, batch, semaphore, prompt, references, metadata)
            )
            for index in range(request.count)
        ]
        for task in tasks:
            task.add_done_callback(_consume_result)
        if token is not None:
            token.attach(*tasks)

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            # A cancellation of this call itself always propagates.
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            if token is not None and token.cancelled:
                raise GenerationSuperseded(
                    f"Generation #{token.serial} was superseded"
                ) from None
            raise
        except Exception as exc:
            error = classify_provider_error(exc, request_count=request.count)
            logger.error(
                "Generation failed (%s): status=%s, requested n=%d, mode=%s, message=%s",
                error.kind.value,
                error.original_status,
                request.count,
                request.effective_mode.value,
                error.original_message,
                exc_info=error.original_status is None,
            )
            return GenerationFailure(error)

        logger.info("Generated %d image(s) for %s.", request.count, request.effective_mode.value)
        return GenerationSuccess(tuple(batch.results))

    async def _run_task(
        self,
        index: int,
        batch: _Batch,
        semaphore: asyncio.Semaphore,
        prompt: str,
        references: tuple[str, ...],
        metadata: dict,
    ) -> None:
        async with semaphore:
            if batch.failed:
                return
            try:
                payload = await with_retry(
                    lambda: self._provider.invoke(self._model, prompt, references or None),
                    policy=self._retry_policy,
                )
                stored = await asyncio.to_thread(self._cache.store, payload, metadata)
            except Exception:
                batch.failed = True
                raise
            batch.results[index] = stored.public_path
