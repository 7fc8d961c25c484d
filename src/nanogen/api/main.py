"""Nano Generator — FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
The application is a thin proxy in front of a Gemini image model:

- **Configuration** comes from :data:`nanogen.core.config.config`
  (``NANOGEN_*`` environment variables and ``.env``).
- **Image generation** is delegated to
  :class:`~nanogen.core.orchestrator.GenerationOrchestrator`, which fans out
  one provider call per requested image with retries and classifies any
  failure.
- **Persistence** is the cache directory; images are served from it by
  FastAPI's ``StaticFiles`` at ``/cache``.
- **Supersession**: requests carrying an ``X-Session-Id`` header cancel the
  previous in-flight generation of the same session.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/health``                   Liveness check
POST      ``/api/generate``             Generate an image batch
GET       ``/api/gallery``              Paginated gallery listing
DELETE    ``/api/gallery/{filename}``   Delete a cached image (admin token)
GET       ``/debug/cache``              Cache summary (debug mode only)
GET       ``/cache/{filename}``         Cached image files
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    nanogen

Direct invocation::

    python -m nanogen.api.main
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from nanogen import __version__
from nanogen.api.gallery_store import (
    attach_metadata,
    load_gallery_entries,
    paginate_gallery_entries,
)
from nanogen.api.models import GalleryResponse, GenerateBody, GenerateResponse
from nanogen.api.rate_limit import FixedWindowRateLimiter, get_client_ip
from nanogen.core.cache import PUBLIC_PREFIX, ImageCache
from nanogen.core.config import NanogenConfig, config
from nanogen.core.errors import GenerationSuperseded, InvalidRequestError
from nanogen.core.orchestrator import (
    GenerationFailure,
    GenerationOrchestrator,
    GenerationRequest,
)
from nanogen.core.provider import ImageProvider, VertexImageProvider
from nanogen.core.retry import RetryPolicy
from nanogen.core.sessions import GenerationSessions

logger = logging.getLogger(__name__)

# Paths exempt from the global rate limit: static images, gallery browsing,
# and the health check.
RATE_LIMIT_EXEMPT_PREFIXES = (f"{PUBLIC_PREFIX}/", "/api/gallery", "/health")

CACHE_CONTROL = "public, max-age=86400"

router = APIRouter()


# ---------------------------------------------------------------------------
# Application lifecycle.
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log startup and shutdown with the effective settings.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control back to the application for the duration of its lifetime.
    """
    settings: NanogenConfig = app.state.config
    logger.info(
        "Server started (model=%s, location=%s, cache=%s, site=%s %s).",
        settings.image_model,
        settings.location,
        settings.cache_dir,
        settings.site_name,
        settings.site_url,
    )

    yield  # Application runs here.

    logger.info("Server stopped; %d generation session(s) still open.", len(app.state.sessions))


# ---------------------------------------------------------------------------
# Middleware.
# ---------------------------------------------------------------------------


async def global_rate_limit(request: Request, call_next):
    """Apply the per-client global rate limit to non-exempt paths."""
    path = request.url.path
    if not path.startswith(RATE_LIMIT_EXEMPT_PREFIXES):
        limiter: FixedWindowRateLimiter = request.app.state.global_limiter
        client_ip = get_client_ip(request)
        if not limiter.hit(client_ip):
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests. Try again later."},
                headers={"Retry-After": str(limiter.retry_after(client_ip))},
            )
    return await call_next(request)


async def cache_headers(request: Request, call_next):
    """Let browsers keep cached images for a day."""
    response = await call_next(request)
    if request.url.path.startswith(f"{PUBLIC_PREFIX}/") and response.status_code == 200:
        response.headers["Cache-Control"] = CACHE_CONTROL
    return response


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


@router.get("/health")
async def health() -> dict:
    """Liveness check."""
    return {"status": "ok"}


@router.post("/api/generate")
async def generate_images(
    request: Request,
    body: GenerateBody | None = None,
    x_session_id: str | None = Header(default=None),
):
    """Generate a batch of images.

    This endpoint:

    1. Applies the per-client generation rate limit.
    2. Validates prompt, ``n`` (1–6), mode, and reference images.
    3. Supersedes the previous generation of the same ``X-Session-Id``.
    4. Runs the batch through the orchestrator.

    Args:
        request: Incoming request (client address, app state).
        body: Parsed :class:`GenerateBody` payload; a missing body is
            treated as an empty one.
        x_session_id: Optional caller session for supersession.

    Returns:
        ``{"images": [...], "error": null}`` on success.  Failures return the
        classified error with the upstream status (500 when unknown); invalid
        input returns 400, a superseded request 409, rate limiting 429.
    """
    state = request.app.state
    client_ip = get_client_ip(request)
    if not state.generate_limiter.hit(client_ip):
        return JSONResponse(
            status_code=429,
            content={"images": [], "error": "Too many generation requests. Try again later."},
            headers={"Retry-After": str(state.generate_limiter.retry_after(client_ip))},
        )

    body = body or GenerateBody()
    logger.info(
        "Generation request: model=%s, mode=%s, n=%s, prompt_length=%d, images=%d, aspect=%s.",
        state.config.image_model,
        body.mode,
        body.n,
        len(body.prompt) if isinstance(body.prompt, str) else 0,
        len(body.image_data_urls) if isinstance(body.image_data_urls, list) else 0,
        body.aspect_ratio,
    )

    try:
        gen_request = GenerationRequest.from_payload(body.model_dump(by_alias=True))
    except InvalidRequestError as e:
        return JSONResponse(
            status_code=InvalidRequestError.status_code,
            content={"images": [], "error": str(e)},
        )

    sessions: GenerationSessions = state.sessions
    token = sessions.begin(x_session_id) if x_session_id else None
    try:
        outcome = await state.orchestrator.generate(gen_request, token=token)
        if token is not None and not sessions.is_current(token):
            raise GenerationSuperseded(f"Generation #{token.serial} was superseded")
    except GenerationSuperseded as e:
        logger.info("Discarding superseded generation: %s", e)
        return JSONResponse(
            status_code=409,
            content={
                "images": [],
                "error": "Superseded by a newer generation request",
                "errorType": "superseded",
                "suggestions": [],
                "retryable": False,
            },
        )
    finally:
        if token is not None:
            sessions.release(token)

    if isinstance(outcome, GenerationFailure):
        error = outcome.error
        content = GenerateResponse(
            images=[],
            error=error.full_message,
            error_type=error.kind.value,
            suggestions=list(error.suggestions),
            retryable=error.retryable,
        ).model_dump(by_alias=True)
        return JSONResponse(status_code=outcome.http_status, content=content)

    return GenerateResponse(images=list(outcome.images)).model_dump(include={"images", "error"})


@router.get("/api/gallery")
async def get_gallery(request: Request, page: int = 1, limit: int | None = None):
    """Return a paginated listing of cached images, newest first.

    Args:
        request: Incoming request (app state).
        page: Page number (1-indexed).
        limit: Images per page; defaults to ``gallery_page_size``.

    Returns:
        Dictionary with keys ``images``, ``totalPages``, and ``currentPage``.
    """
    cache: ImageCache = request.app.state.cache
    limit = limit or request.app.state.config.gallery_page_size

    if not cache.cache_dir.is_dir():
        return GalleryResponse().model_dump(by_alias=True, exclude_none=True)

    try:
        entries = load_gallery_entries(cache)
    except OSError:
        logger.exception("Failed to list cache directory %s.", cache.cache_dir)
        return JSONResponse(
            status_code=500,
            content=GalleryResponse(error="Failed to load gallery").model_dump(by_alias=True),
        )

    result = paginate_gallery_entries(entries, page, limit)
    result["images"] = attach_metadata(result["images"], cache)
    return GalleryResponse.model_validate(result).model_dump(by_alias=True, exclude_none=True)


@router.delete("/api/gallery/{filename}")
async def delete_image(
    filename: str,
    request: Request,
    x_admin_token: str | None = Header(default=None),
) -> dict:
    """Delete a cached image.

    Deletion is never part of the generation path; it requires the
    configured admin token in the ``X-Admin-Token`` header and is disabled
    entirely when no token is configured.

    Raises:
        HTTPException: 403 without a valid token, 400 for an invalid
            filename, 404 if the image does not exist.
    """
    expected = request.app.state.config.admin_token
    if not expected or not secrets.compare_digest(x_admin_token or "", expected):
        raise HTTPException(status_code=403, detail="Deletion is not authorized")

    cache: ImageCache = request.app.state.cache
    try:
        cache.delete(filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except FileNotFoundError as e:
        raise HTTPException(status_code=404, detail="Image not found") from e

    return {"success": True, "deleted": filename}


@router.get("/debug/cache")
async def debug_cache(request: Request) -> dict:
    """Summarise the cache directory (only available with ``debug`` on).

    Raises:
        HTTPException: 404 when debug mode is off.
    """
    if not request.app.state.config.debug:
        raise HTTPException(status_code=404, detail="Not Found")

    cache: ImageCache = request.app.state.cache
    try:
        files = sorted(p for p in cache.cache_dir.iterdir() if p.is_file())
    except OSError as e:
        return {"error": str(e), "cacheDir": str(cache.cache_dir)}

    return {
        "cacheDir": str(cache.cache_dir),
        "totalFiles": len(files),
        "sampleFiles": [
            {"name": p.name, "size": p.stat().st_size, "url": cache.public_path(p.name)}
            for p in files[:5]
        ],
    }


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    settings: NanogenConfig = config,
    provider: ImageProvider | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Configuration to run with.
        provider: Image provider; defaults to :class:`VertexImageProvider`
            built from ``settings``.

    Returns:
        The configured application.
    """
    application = FastAPI(
        title="Nano Generator",
        description="Image generation API proxying Gemini image models on Vertex AI.",
        version=__version__,
        lifespan=lifespan,
    )

    cache = ImageCache(settings.cache_dir)
    application.state.config = settings
    application.state.cache = cache
    application.state.sessions = GenerationSessions()
    application.state.orchestrator = GenerationOrchestrator(
        provider or VertexImageProvider(settings.provider_settings()),
        cache,
        model=settings.image_model,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay,
        ),
    )
    application.state.generate_limiter = FixedWindowRateLimiter(
        settings.generate_rate_limit, settings.rate_limit_window_seconds
    )
    application.state.global_limiter = FixedWindowRateLimiter(
        settings.global_rate_limit, settings.rate_limit_window_seconds
    )

    # Middleware added last runs first: rate limiting wraps everything.
    application.middleware("http")(cache_headers)
    application.middleware("http")(global_rate_limit)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    application.mount(PUBLIC_PREFIX, StaticFiles(directory=str(cache.cache_dir)), name="cache")
    return application


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~nanogen.core.config.config` (which
    loads from ``NANOGEN_SERVER_HOST`` and ``NANOGEN_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:3000``.

    This function is registered as the ``nanogen`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=logging.INFO if config.debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "nanogen.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
