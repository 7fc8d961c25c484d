"""Provider error taxonomy and classification.

Every failed generation ends up here exactly once: after the retry executor
has given up (or immediately, for a non-retryable status), the raw failure is
mapped onto one of nine :class:`ErrorKind` values.  The resulting
:class:`ClassifiedError` carries everything the HTTP layer needs to answer
the client: a user-facing message, remediation suggestions, a ``retryable``
flag for a one-click retry button, and the original upstream status and text
for diagnostics.

Classification order matters because several categories share HTTP
statuses.  The first matching rule wins:

1. content censorship (400/422 with policy wording, or a policy code/type)
2. authentication (401/403)
3. insufficient credits or quota (402 or quota wording)
4. rate limit (429 or rate-limit wording)
5. server overload (502/503/504 or overload wording)
6. geo restriction (country/location/region + "not supported")
7. timeout (408 or timeout wording)
8. system error (any other 5xx)
9. unknown (everything else)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from nanogen.core.retry import extract_status


class NanogenError(Exception):
    """Base class for all errors raised by the generation core."""


class ProviderError(NanogenError):
    """A failed call to the external image provider.

    Attributes:
        message: Raw upstream error text.
        status: HTTP-equivalent status, or ``None`` when the failure did not
            come with one.
        code: Provider error code (string or numeric), if any.
        error_type: Provider error type token, if any.
        body: Parsed provider error body, shaped ``{"error": {...}}``.
        response: Optional nested response object exposing ``status``.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | int | None = None,
        error_type: str | None = None,
        body: dict | None = None,
        response: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.error_type = error_type
        self.body = body
        self.response = response


class InvalidRequestError(NanogenError):
    """A generation request failed validation before reaching the provider."""

    status_code = 400


class GenerationSuperseded(NanogenError):
    """A newer generation for the same session replaced this one."""


class ErrorKind(str, Enum):
    """Stable, machine-readable error categories exposed to clients."""

    SYSTEM_ERROR = "system_error"
    CONTENT_CENSORSHIP = "content_censorship"
    SERVER_OVERLOAD = "server_overload"
    RATE_LIMIT = "rate_limit"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    GEO_RESTRICTION = "geo_restriction"
    AUTH_ERROR = "auth_error"
    TIMEOUT = "timeout"
    UNKNOWN_ERROR = "unknown_error"


@dataclass(frozen=True)
class ClassifiedError:
    """Taxonomy-tagged representation of an upstream failure.

    Attributes:
        kind: One of the nine :class:`ErrorKind` values.
        user_message: Human-readable message, prefixed by a severity marker.
        suggestions: Ordered remediation hints.  Never contains empty strings.
        retryable: Whether the client may usefully retry the same request.
        original_status: Upstream HTTP status, when known.
        original_message: Raw upstream error text.
    """

    kind: ErrorKind
    user_message: str
    suggestions: tuple[str, ...]
    retryable: bool
    original_status: int | None = None
    original_message: str = ""

    @property
    def http_status(self) -> int:
        """Status to answer the HTTP request with (500 when unknown)."""
        return self.original_status if self.original_status is not None else 500

    @property
    def full_message(self) -> str:
        """User message followed by a bulleted suggestion list."""
        if not self.suggestions:
            return self.user_message
        return self.user_message + "\n\nSuggestions:\n• " + "\n• ".join(self.suggestions)


# ---------------------------------------------------------------------------
# Keyword tables.
# ---------------------------------------------------------------------------

CENSORSHIP_STATUSES = frozenset({400, 422})

CENSORSHIP_KEYWORDS = (
    "content policy",
    "policy violation",
    "unsafe content",
    "inappropriate content",
    "content filter",
    "content blocked",
    "content rejected",
    "moderation",
    "safety filter",
    "content safety",
    "violates our",
    "against our policy",
    "content guidelines",
    "safety guidelines",
    "harmful content",
    "inappropriate request",
    "content not allowed",
    "prohibited content",
    "content violation",
    "safety violation",
)

CENSORSHIP_CODES = frozenset(
    {
        "content_policy_violation",
        "safety_violation",
        "content_filtered",
        "inappropriate_content",
    }
)

CENSORSHIP_TYPES = frozenset(
    {
        "content_policy_violation",
        "safety_filter",
        "content_filter",
    }
)

OVERLOAD_STATUSES = frozenset({502, 503, 504})

OVERLOAD_KEYWORDS = (
    "server overload",
    "too many concurrent",
    "service unavailable",
    "capacity exceeded",
    "temporarily unavailable",
    "server busy",
    "high demand",
    "resource limit",
    "queue full",
    "processing limit",
)

API_DISABLED_MARKERS = ("consumer_invalid", "permission denied")

GEO_SUBJECTS = ("country", "location", "region")


# ---------------------------------------------------------------------------
# Detail extraction.
# ---------------------------------------------------------------------------


def _error_details(error: Any) -> tuple[str, Any, Any]:
    """Return ``(message, code, type)`` for an arbitrary failure object.

    The provider's structured error body takes precedence over the exception
    text, mirroring how the upstream service reports the most specific
    message there.
    """
    body = getattr(error, "body", None)
    nested = body.get("error") if isinstance(body, dict) else None
    if not isinstance(nested, dict):
        nested = {}

    message = nested.get("message") or getattr(error, "message", None)
    if not message or not isinstance(message, str):
        message = str(error) if error is not None else ""
    if not message:
        message = "Unknown error"

    code = nested.get("code", getattr(error, "code", None))
    error_type = nested.get("type", getattr(error, "error_type", None))
    return message, code, error_type


def _is_censorship(status: int | None, message: str, code: Any, error_type: Any) -> bool:
    if status in CENSORSHIP_STATUSES and any(k in message for k in CENSORSHIP_KEYWORDS):
        return True
    if isinstance(code, str) and code.lower() in CENSORSHIP_CODES:
        return True
    if isinstance(error_type, str) and error_type.lower() in CENSORSHIP_TYPES:
        return True
    return False


def _is_server_overload(status: int | None, message: str) -> bool:
    if status in OVERLOAD_STATUSES:
        return True
    return any(k in message for k in OVERLOAD_KEYWORDS)


def _is_geo_restricted(message: str) -> bool:
    return "not supported" in message and any(s in message for s in GEO_SUBJECTS)


def _suggestions(*items: str | None) -> tuple[str, ...]:
    """Drop suggestions whose condition did not hold."""
    return tuple(item for item in items if item)


def _halved(request_count: int) -> int:
    return max(1, request_count // 2)


# ---------------------------------------------------------------------------
# Classifier.
# ---------------------------------------------------------------------------


def classify_provider_error(error: Any, request_count: int | None = None) -> ClassifiedError:
    """Map a raw provider failure onto the fixed error taxonomy.

    Pure function: the same failure and ``request_count`` always produce the
    same result, and it never raises.

    Args:
        error: The last failure observed for a generation task.
        request_count: Number of images in the originating request.  Used to
            tailor batch-size suggestions.

    Returns:
        The :class:`ClassifiedError` for the failure.
    """
    status = extract_status(error)
    original_message, code, error_type = _error_details(error)
    msg = original_message.lower()
    n = request_count or 0

    def result(kind, user_message, suggestions, retryable):
        return ClassifiedError(
            kind=kind,
            user_message=user_message,
            suggestions=suggestions,
            retryable=retryable,
            original_status=status,
            original_message=original_message,
        )

    # 1. Content policy / moderation.
    if _is_censorship(status, msg, code, error_type):
        return result(
            ErrorKind.CONTENT_CENSORSHIP,
            "🚫 The content did not pass Vertex AI moderation. Try changing the prompt.",
            _suggestions(
                "Rephrase the prompt",
                "Remove potentially objectionable words",
                "Try a more neutral description",
            ),
            False,
        )

    # 2. Authentication and API access.
    if status in (401, 403):
        if any(marker in msg for marker in API_DISABLED_MARKERS):
            return result(
                ErrorKind.AUTH_ERROR,
                "🔑 The Vertex AI API is not enabled in your Google Cloud project.",
                _suggestions(
                    "Open Google Cloud Console → APIs & Services → Library",
                    'Find "Vertex AI API" and click "Enable"',
                    "Wait 2-3 minutes after enabling the API",
                    "Make sure billing is enabled for the project",
                ),
                False,
            )
        return result(
            ErrorKind.AUTH_ERROR,
            "🔑 Vertex AI authentication failed.",
            _suggestions(
                "Check the service account key file",
                'Make sure the service account has the "Vertex AI User" role',
                "Check the project settings in Google Cloud",
            ),
            False,
        )

    # 3. Credits and quota.
    if status == 402 or "insufficient" in msg or "credits" in msg or "quota" in msg:
        return result(
            ErrorKind.INSUFFICIENT_CREDITS,
            "💳 Quota exceeded or insufficient credits in Google Cloud.",
            _suggestions(
                "Check billing in the Google Cloud Console",
                "Make sure the Vertex AI quotas are not exceeded",
                "Check your usage limits",
            ),
            False,
        )

    # 4. Rate limiting.
    if status == 429 or "rate limit" in msg or "too many requests" in msg:
        return result(
            ErrorKind.RATE_LIMIT,
            "⏰ Request limit exceeded. Try again a little later.",
            _suggestions(
                "Wait a few minutes",
                "Reduce the number of simultaneous requests",
                f"Try reducing the image count to {_halved(n)}" if n > 2 else None,
            ),
            True,
        )

    # 5. Server overload.
    if _is_server_overload(status, msg):
        return result(
            ErrorKind.SERVER_OVERLOAD,
            "🖥️ Vertex AI servers are overloaded. Try again later.",
            _suggestions(
                "Wait 5-10 minutes",
                "Try another region (us-east1, europe-west1)",
                "Reduce the number of images" if n > 1 else None,
            ),
            True,
        )

    # 6. Geographic restrictions.
    if _is_geo_restricted(msg):
        return result(
            ErrorKind.GEO_RESTRICTION,
            "🌍 Geo restriction. The service is not available in your region.",
            _suggestions(
                "Use a VPN (US or Europe)",
                "Try another model",
                "Contact the administrator",
            ),
            False,
        )

    # 7. Timeouts.
    if status == 408 or "timeout" in msg or "time out" in msg:
        return result(
            ErrorKind.TIMEOUT,
            "⏱️ The response took too long.",
            _suggestions(
                "Try again",
                f"Reduce the image count to {_halved(n)}" if n > 2 else None,
                "Check your internet connection",
            ),
            True,
        )

    # 8. Any other server-side failure.
    if status is not None and 500 <= status < 600:
        return result(
            ErrorKind.SYSTEM_ERROR,
            "⚠️ System error on the Vertex AI side.",
            _suggestions(
                "Try again in a few minutes",
                "Check the Google Cloud status page",
                "Try another region",
            ),
            True,
        )

    # 9. Fallback.
    return result(
        ErrorKind.UNKNOWN_ERROR,
        f"❓ Unknown Vertex AI error: {original_message}",
        _suggestions(
            "Try again",
            "Check that the prompt is valid",
            "Contact Google Cloud support",
        ),
        True,
    )
