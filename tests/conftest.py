"""Shared pytest fixtures for Nano Generator tests."""

import asyncio
import base64
import io
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from PIL import Image

from nanogen.core.cache import ImageCache
from nanogen.core.config import NanogenConfig
from nanogen.core.errors import ProviderError
from nanogen.core.provider import ImagePayload


def make_png(size: tuple[int, int] = (8, 8), color: str = "red") -> bytes:
    """Render a tiny PNG for use as provider output."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_data_url(size: tuple[int, int] = (8, 8)) -> str:
    return "data:image/png;base64," + base64.b64encode(make_png(size)).decode("ascii")


class FakeProvider:
    """Scriptable stand-in for the Vertex AI adapter.

    Each call pops the next entry of ``script``: an exception is raised, an
    :class:`ImagePayload` is returned.  When the script is exhausted a fresh
    PNG is returned.  Every call is recorded in ``calls``.

    Args:
        script: Outcomes to play back, in call order.
        delay: Seconds each call waits before answering.
    """

    def __init__(self, script=None, delay: float = 0.0) -> None:
        self.script = list(script or [])
        self.delay = delay
        self.calls: list[dict] = []
        self.active = 0
        self.max_active = 0

    async def invoke(self, model, prompt, reference_images=None, response_modalities=("TEXT", "IMAGE")):
        self.calls.append(
            {"model": model, "prompt": prompt, "reference_images": list(reference_images or [])}
        )
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            outcome = self.script.pop(0) if self.script else None
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome or ImagePayload(mime_type="image/png", data=make_png())
        finally:
            self.active -= 1


def provider_error(status: int | None, message: str = "boom", **kwargs) -> ProviderError:
    return ProviderError(message, status=status, **kwargs)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> NanogenConfig:
    """Create a test configuration with a temporary cache directory.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        NanogenConfig instance for testing
    """
    return NanogenConfig(
        _env_file=None,
        project_id="test-project",
        cache_dir=temp_dir / "cache",
        retry_initial_delay_ms=0,
        admin_token="secret-token",
        debug=True,
    )


@pytest.fixture
def image_cache(temp_dir: Path) -> ImageCache:
    return ImageCache(temp_dir / "cache")


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def test_app(test_config: NanogenConfig, fake_provider: FakeProvider):
    """FastAPI application wired to the fake provider and a temporary cache."""
    from nanogen.api.main import create_app

    return create_app(test_config, provider=fake_provider)


@pytest.fixture
def test_client(test_app):
    """TestClient running the application lifespan."""
    from fastapi.testclient import TestClient

    with TestClient(test_app) as client:
        yield client


@pytest.fixture
def make_provider():
    """Factory for scripted :class:`FakeProvider` instances."""
    return FakeProvider


@pytest.fixture
def make_error():
    """Factory for :class:`ProviderError` instances with a given status."""
    return provider_error


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def reference_data_url() -> str:
    return png_data_url()
