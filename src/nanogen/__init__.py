"""Nano Generator - web backend for Gemini image generation on Vertex AI."""

__version__ = "0.3.0"
