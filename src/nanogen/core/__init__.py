"""Core generation pipeline for the Nano Generator backend.

Architecture Overview
---------------------
The core module follows a layered architecture, leaves first:

1. **Retry Layer** (retry.py):
   - Bounded attempts with exponential backoff and jitter
   - Only transient statuses (408, 429, 502, 503) are retried

2. **Error Classification** (errors.py):
   - Nine stable error kinds with user messages and suggestions
   - Exception hierarchy shared by the whole package

3. **Provider Layer** (provider.py):
   - Vertex AI adapter built on the google-genai SDK
   - Strict response schema validation

4. **Orchestration** (orchestrator.py, sessions.py, canvas.py):
   - Bounded-concurrency fan-out of N generation tasks
   - Per-session supersession tokens
   - Blank aspect-ratio canvases

5. **Persistence** (cache.py):
   - Append-only image cache with embedded EXIF metadata

6. **Configuration** (config.py):
   - Environment-based settings using Pydantic Settings (NANOGEN_ prefix)

Usage Example
-------------
    from nanogen.core import (
        GenerationOrchestrator,
        GenerationRequest,
        ImageCache,
        VertexImageProvider,
        config,
    )

    orchestrator = GenerationOrchestrator(
        VertexImageProvider(config.provider_settings()),
        ImageCache(config.cache_dir),
        model=config.image_model,
    )
    outcome = await orchestrator.generate(GenerationRequest(prompt="a red fox", count=2))
"""

from nanogen.core.cache import ImageCache, StoredImage
from nanogen.core.config import NanogenConfig, ProviderSettings, config
from nanogen.core.errors import (
    ClassifiedError,
    ErrorKind,
    GenerationSuperseded,
    InvalidRequestError,
    NanogenError,
    ProviderError,
    classify_provider_error,
)
from nanogen.core.orchestrator import (
    GenerationFailure,
    GenerationMode,
    GenerationOrchestrator,
    GenerationOutcome,
    GenerationRequest,
    GenerationSuccess,
)
from nanogen.core.provider import ImagePayload, ImageProvider, VertexImageProvider
from nanogen.core.retry import RetryPolicy, with_retry
from nanogen.core.sessions import GenerationSessions, GenerationToken

__all__ = [
    "ClassifiedError",
    "ErrorKind",
    "GenerationFailure",
    "GenerationMode",
    "GenerationOrchestrator",
    "GenerationOutcome",
    "GenerationRequest",
    "GenerationSessions",
    "GenerationSuccess",
    "GenerationSuperseded",
    "GenerationToken",
    "ImageCache",
    "ImagePayload",
    "ImageProvider",
    "InvalidRequestError",
    "NanogenConfig",
    "NanogenError",
    "ProviderError",
    "ProviderSettings",
    "RetryPolicy",
    "StoredImage",
    "VertexImageProvider",
    "classify_provider_error",
    "config",
    "with_retry",
]
