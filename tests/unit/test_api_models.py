"""Tests for nanogen.api.models — request and response schemas."""

from __future__ import annotations

from nanogen.api.models import GalleryResponse, GenerateBody, GenerateResponse


class TestGenerateBody:
    def test_defaults(self):
        body = GenerateBody(prompt="a fox")
        assert body.n == 1
        assert body.mode == "text-to-image"
        assert body.image_data_urls is None
        assert body.aspect_ratio is None

    def test_camel_case_aliases(self):
        body = GenerateBody.model_validate(
            {
                "prompt": "a fox",
                "n": 2,
                "mode": "image-to-image",
                "imageDataUrls": ["data:image/png;base64,AAAA"],
                "aspectRatio": "4:3",
            }
        )
        assert body.image_data_urls == ["data:image/png;base64,AAAA"]
        assert body.aspect_ratio == "4:3"

    def test_out_of_range_values_are_not_rejected_here(self):
        """Range checks happen in GenerationRequest so they answer 400, not 422."""
        body = GenerateBody.model_validate({"prompt": "", "n": 99})
        assert body.n == 99

    def test_wrongly_typed_fields_are_kept_as_given(self):
        body = GenerateBody.model_validate(
            {"prompt": "a fox", "mode": 5, "imageDataUrls": "x", "aspectRatio": 5}
        )
        assert body.mode == 5
        assert body.image_data_urls == "x"
        assert body.aspect_ratio == 5


class TestGenerateResponse:
    def test_failure_serialises_with_aliases(self):
        response = GenerateResponse(
            error="⏰ Slow down.",
            error_type="rate_limit",
            suggestions=["Wait a few minutes"],
            retryable=True,
        )
        assert response.model_dump(by_alias=True) == {
            "images": [],
            "error": "⏰ Slow down.",
            "errorType": "rate_limit",
            "suggestions": ["Wait a few minutes"],
            "retryable": True,
        }

    def test_success_shape(self):
        response = GenerateResponse(images=["/cache/1-a.png"])
        assert response.model_dump(include={"images", "error"}) == {
            "images": ["/cache/1-a.png"],
            "error": None,
        }


class TestGalleryResponse:
    def test_page_aliases(self):
        response = GalleryResponse.model_validate(
            {
                "images": [
                    {"filename": "1-a.png", "path": "/cache/1-a.png", "timestamp": 1, "size": 10}
                ],
                "totalPages": 1,
                "currentPage": 1,
            }
        )
        dumped = response.model_dump(by_alias=True, exclude_none=True)
        assert dumped["totalPages"] == 1
        assert dumped["images"][0]["metadata"] == {}
        assert "error" not in dumped

    def test_empty_defaults(self):
        assert GalleryResponse().model_dump(by_alias=True, exclude_none=True) == {
            "images": [],
            "totalPages": 0,
            "currentPage": 1,
        }
