"""Tests for nanogen.core.provider — the Vertex AI adapter.

The ``genai.Client`` is replaced by a stub exposing
``aio.models.generate_content``, so no credentials or network are needed.
"""

from __future__ import annotations

import base64
from types import SimpleNamespace

import httpx
import pytest
from google.genai import errors as genai_errors

from nanogen.core.config import ProviderSettings
from nanogen.core.errors import ErrorKind, ProviderError, classify_provider_error
from nanogen.core.provider import (
    ImagePayload,
    VertexImageProvider,
    map_provider_status,
    parse_provider_response,
)

SETTINGS = ProviderSettings(project_id="demo", location="us-central1", timeout_ms=1000)


def _image_response(data: bytes, mime_type: str = "image/png") -> dict:
    return {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"text": "Here is your image."},
                        {"inline_data": {"mime_type": mime_type, "data": data}},
                    ]
                }
            }
        ]
    }


class _StubModels:
    def __init__(self, result):
        self.result = result
        self.requests: list[dict] = []

    async def generate_content(self, **kwargs):
        self.requests.append(kwargs)
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


def _stub_client(result):
    models = _StubModels(result)
    return SimpleNamespace(aio=SimpleNamespace(models=models)), models


# ---------------------------------------------------------------------------
# Data URLs.
# ---------------------------------------------------------------------------


class TestImagePayload:
    def test_from_data_url(self, png_bytes):
        url = "data:image/png;base64," + base64.b64encode(png_bytes).decode()
        payload = ImagePayload.from_data_url(url)
        assert payload.mime_type == "image/png"
        assert payload.data == png_bytes

    def test_round_trip_url(self, png_bytes):
        payload = ImagePayload(mime_type="image/jpeg", data=png_bytes)
        assert ImagePayload.from_data_url(payload.to_data_url()) == payload

    @pytest.mark.parametrize(
        "url",
        ["", "http://example.com/a.png", "data:text/plain;base64,aGk=", "data:image/png;base64,***"],
    )
    def test_invalid_urls(self, url):
        with pytest.raises(ValueError):
            ImagePayload.from_data_url(url)


# ---------------------------------------------------------------------------
# Response parsing.
# ---------------------------------------------------------------------------


class TestParseProviderResponse:
    def test_first_inline_image(self, png_bytes):
        payload = parse_provider_response(_image_response(png_bytes))
        assert payload == ImagePayload(mime_type="image/png", data=png_bytes)

    def test_sdk_object_with_model_dump(self, png_bytes):
        response = SimpleNamespace(model_dump=lambda exclude_none: _image_response(png_bytes))
        assert parse_provider_response(response).data == png_bytes

    def test_text_only_response(self):
        response = {"candidates": [{"content": {"parts": [{"text": "I can't draw that."}]}}]}
        with pytest.raises(ProviderError) as excinfo:
            parse_provider_response(response)
        assert excinfo.value.status is None
        assert excinfo.value.code == "unexpected_response"

    def test_malformed_response(self):
        with pytest.raises(ProviderError) as excinfo:
            parse_provider_response({"candidates": "nope"})
        assert excinfo.value.code == "unexpected_response"
        assert classify_provider_error(excinfo.value).kind is ErrorKind.UNKNOWN_ERROR

    def test_blocked_prompt_is_censorship(self):
        response = {"candidates": [], "prompt_feedback": {"block_reason": "SAFETY"}}
        with pytest.raises(ProviderError) as excinfo:
            parse_provider_response(response)
        assert excinfo.value.status == 400
        assert "SAFETY" in excinfo.value.message
        assert classify_provider_error(excinfo.value).kind is ErrorKind.CONTENT_CENSORSHIP


class TestMapProviderStatus:
    @pytest.mark.parametrize(
        "code, status, expected",
        [
            (401, None, 401),
            (None, "PERMISSION_DENIED", 403),
            (429, "RESOURCE_EXHAUSTED", 429),
            (400, "INVALID_ARGUMENT", 400),
            (503, None, 503),
            (None, "DEADLINE_EXCEEDED", 408),
            (504, None, 408),
            (418, None, 500),
        ],
    )
    def test_mapping(self, code, status, expected):
        assert map_provider_status(SimpleNamespace(code=code, status=status)) == expected


# ---------------------------------------------------------------------------
# Adapter.
# ---------------------------------------------------------------------------


class TestVertexImageProvider:
    @pytest.mark.asyncio
    async def test_invoke_returns_image(self, png_bytes, reference_data_url):
        client, models = _stub_client(_image_response(png_bytes))
        provider = VertexImageProvider(SETTINGS, client=client)

        payload = await provider.invoke("gemini-image", "a fox", [reference_data_url])

        assert payload.data == png_bytes
        request = models.requests[0]
        assert request["model"] == "gemini-image"
        parts = request["contents"][0].parts
        assert parts[0].text == "a fox"
        assert parts[1].inline_data.mime_type == "image/png"
        assert request["config"].response_modalities == ["TEXT", "IMAGE"]

    @pytest.mark.asyncio
    async def test_invalid_reference_is_skipped(self, png_bytes):
        client, models = _stub_client(_image_response(png_bytes))
        provider = VertexImageProvider(SETTINGS, client=client)

        await provider.invoke("gemini-image", "a fox", ["not-a-data-url"])

        assert len(models.requests[0]["contents"][0].parts) == 1

    @pytest.mark.asyncio
    async def test_api_error_is_normalised(self):
        error = genai_errors.ClientError(
            429,
            {"error": {"code": 429, "message": "Resource exhausted.", "status": "RESOURCE_EXHAUSTED"}},
        )
        client, _ = _stub_client(error)
        provider = VertexImageProvider(SETTINGS, client=client)

        with pytest.raises(ProviderError) as excinfo:
            await provider.invoke("gemini-image", "a fox")

        assert excinfo.value.status == 429
        assert excinfo.value.code == "RESOURCE_EXHAUSTED"
        assert excinfo.value.body["error"]["message"] == "Resource exhausted."
        assert classify_provider_error(excinfo.value).kind is ErrorKind.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_timeout_maps_to_408(self):
        client, _ = _stub_client(httpx.ReadTimeout("read timed out"))
        provider = VertexImageProvider(SETTINGS, client=client)

        with pytest.raises(ProviderError) as excinfo:
            await provider.invoke("gemini-image", "a fox")
        assert excinfo.value.status == 408

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_503(self):
        client, _ = _stub_client(httpx.ConnectError("connection refused"))
        provider = VertexImageProvider(SETTINGS, client=client)

        with pytest.raises(ProviderError) as excinfo:
            await provider.invoke("gemini-image", "a fox")
        assert excinfo.value.status == 503

    @pytest.mark.asyncio
    async def test_missing_project_fails_before_network(self):
        provider = VertexImageProvider(
            ProviderSettings(project_id=None, location="us-central1", timeout_ms=1000)
        )
        with pytest.raises(ProviderError) as excinfo:
            await provider.invoke("gemini-image", "a fox")
        assert excinfo.value.code == "missing_project"
        assert excinfo.value.status is None
