"""Nano Generator — FastAPI REST API layer.

This package contains the FastAPI application, Pydantic request/response
models, and the gallery listing helpers.

Modules
-------
main
    FastAPI application with all route handlers and the ``main()`` CLI
    entry point.
models
    Pydantic models for API request and response validation.
gallery_store
    Cache directory scanning and pagination helpers.
rate_limit
    In-memory fixed-window rate limiting per client address.
"""
