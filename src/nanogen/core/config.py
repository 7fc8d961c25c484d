"""Configuration management for the Nano Generator backend.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the NANOGEN_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (NANOGEN_* prefix)
2. .env file in the project root
3. Default values defined in NanogenConfig

Example .env file:
    NANOGEN_PROJECT_ID=my-gcp-project
    NANOGEN_LOCATION=us-central1
    NANOGEN_IMAGE_MODEL=gemini-2.5-flash-image-preview
    NANOGEN_CACHE_DIR=public/cache

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time and
is the value the HTTP layer reads.  The provider adapter never reads it
directly: it receives an explicit :class:`ProviderSettings` built by
:meth:`NanogenConfig.provider_settings`, so no credentials or project values
are pushed into the process environment.

Usage Example
-------------
    from nanogen.core.config import config

    print(config.image_model)
    print(config.cache_dir)

    settings = config.provider_settings()
"""

from dataclasses import dataclass
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class ProviderSettings:
    """Explicit connection settings for the image provider adapter.

    Attributes:
        project_id: Google Cloud project that owns the Vertex AI quota.
        location: Vertex AI region, e.g. ``us-central1``.
        timeout_ms: Per-request HTTP timeout in milliseconds.
    """

    project_id: str | None
    location: str
    timeout_ms: int


class NanogenConfig(BaseSettings):
    """Main configuration for the Nano Generator backend.

    Values are loaded from environment variables with the NANOGEN_ prefix,
    with fallback to the defaults defined here.  The cache directory is
    created automatically on initialisation.

    Attributes
    ----------
    Provider Settings:
        project_id : str | None
            Google Cloud project ID.  Required to actually reach Vertex AI.
        location : str
            Vertex AI region.
        image_model : str
            Model used for every generation request.
        request_timeout_ms : int
            HTTP timeout for a single provider call.

    Retry Settings:
        retry_max_attempts : int
            Attempts per image before the failure is classified.
        retry_initial_delay_ms : int
            First backoff delay; doubled on every further attempt.

    Server Settings:
        server_host, server_port, debug, site_url, site_name, cors_origins

    Gallery and Cache:
        cache_dir : Path
            Directory where generated images are written and served from.
        gallery_page_size : int
            Default page size for ``GET /api/gallery``.
        admin_token : str | None
            Token required by ``DELETE /api/gallery/{filename}``.  Deletion is
            disabled when unset.

    Rate Limiting:
        generate_rate_limit : int
            Generation requests per client per window.
        global_rate_limit : int
            Requests per client per window for all other rate-limited routes.
        rate_limit_window_seconds : int
            Length of the fixed rate-limit window.

    Examples
    --------
        >>> custom = NanogenConfig(project_id="demo", cache_dir="/tmp/cache")
        >>> custom.provider_settings().location
        'us-central1'
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="NANOGEN_",
        case_sensitive=False,
    )

    # Provider settings
    project_id: str | None = Field(
        default=None,
        description="Google Cloud project ID used for Vertex AI",
    )
    location: str = Field(
        default="us-central1",
        description="Vertex AI region",
    )
    image_model: str = Field(
        default="gemini-2.5-flash-image-preview",
        description="Image generation model identifier",
    )
    request_timeout_ms: int = Field(
        default=60_000,
        description="Timeout for a single provider request in milliseconds",
        ge=1,
    )

    # Retry policy
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_initial_delay_ms: int = Field(default=600, ge=0)

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1,
        le=65535,
    )
    debug: bool = Field(
        default=False,
        description="Verbose logging and the /debug/cache route",
    )
    site_url: str | None = Field(default=None)
    site_name: str | None = Field(default=None)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Cache and gallery
    cache_dir: Path = Field(
        default=Path("public/cache"),
        description="Directory to save generated images",
    )
    gallery_page_size: int = Field(default=12, ge=1, le=100)
    admin_token: str | None = Field(
        default=None,
        description="Token that authorizes gallery deletions (disabled when unset)",
    )

    # Rate limiting
    generate_rate_limit: int = Field(default=10, ge=1)
    global_rate_limit: int = Field(default=100, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1)

    def __init__(self, **kwargs):
        """Initialize configuration and create the cache directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.cache_dir.mkdir(parents=True, exist_ok=True)

    @property
    def retry_initial_delay(self) -> float:
        """Initial retry delay in seconds."""
        return self.retry_initial_delay_ms / 1000

    def provider_settings(self) -> ProviderSettings:
        """Build the explicit settings object injected into the provider adapter."""
        return ProviderSettings(
            project_id=self.project_id,
            location=self.location,
            timeout_ms=self.request_timeout_ms,
        )


# Global configuration instance
# Loads values from environment variables (NANOGEN_* prefix) and .env file.
config = NanogenConfig()
