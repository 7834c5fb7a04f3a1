"""Backend error mapping to user-friendly messages.

Maps raw failures from text-generation backends (HTTP errors, API error
payloads, network exceptions) onto a fixed set of categories, each with a
stable message naming the backend. The failover engine uses the category
to decide whether switching model variants is worthwhile.

Example:
    ```python
    from calendarplus.ai.error_mapping import classify

    try:
        text = await backend.generate(prompt, api_key)
    except Exception as e:
        classified = classify(e, ProviderKind.GEMINI)
        # Technical: "[429] Resource has been exhausted (e.g. check quota)."
        # User-friendly: "Gemini: Quota or rate limit reached. ..."
        return {"error": classified.message}
    ```
"""

from __future__ import annotations

import socket
from collections.abc import Callable

import httpx

from calendarplus.ai.errors import ClassifiedError, ErrorCategory
from calendarplus.models import ProviderKind
from calendarplus.utils.logging import sanitize_text

MAX_DETAIL_LENGTH = 500

# Category to user-friendly message; {backend} is the display name
ERROR_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.AUTH_ERROR: "{backend}: Invalid or expired API key. Please check your key in Settings.",
    ErrorCategory.QUOTA_OR_RATE_LIMIT: "{backend}: Quota or rate limit reached. Please wait a moment or add another provider.",
    ErrorCategory.REGION_RESTRICTED: "{backend}: This service is not available in your region.",
    ErrorCategory.TRANSIENT_SERVER: "{backend}: The service is temporarily unavailable. Please try again shortly.",
    ErrorCategory.CONTENT_SAFETY: "{backend}: The request was blocked by the provider's safety filters.",
    ErrorCategory.CONTEXT_TOO_LONG: "{backend}: The request is too long for this model. Try shortening it.",
    ErrorCategory.NETWORK_UNREACHABLE: "{backend}: Could not reach the service. Please check your internet connection.",
    ErrorCategory.UNKNOWN: "{backend} could not generate a response. Please try again later.",
}

# Categories where trying another model of the same backend cannot help
_MODEL_SWITCH_FUTILE = frozenset(
    {
        ErrorCategory.AUTH_ERROR,
        ErrorCategory.QUOTA_OR_RATE_LIMIT,
        ErrorCategory.REGION_RESTRICTED,
    }
)

_NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
    socket.gaierror,
    socket.herror,
)


def _status_code(error: object) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def _error_text(error: object) -> str:
    """``str(error)`` that never raises."""
    try:
        return f"{type(error).__name__}: {error}"
    except Exception:
        return type(error).__name__


def _backend_name(backend: ProviderKind | str) -> str:
    if isinstance(backend, ProviderKind):
        return backend.display_name
    return str(backend) or "The AI service"


def _matches(text: str, substrings: tuple[str, ...]) -> bool:
    return any(s in text for s in substrings)


_Rule = tuple[ErrorCategory, Callable[[object, int | None, str], bool]]

# Evaluated in order; first match wins
_RULES: list[_Rule] = [
    (
        ErrorCategory.REGION_RESTRICTED,
        lambda e, status, text: status == 451
        or _matches(
            text,
            (
                "location is not supported",
                "not available in your country",
                "not available in your region",
                "unsupported_country",
                "unsupported country",
                "unsupported region",
            ),
        ),
    ),
    (
        ErrorCategory.AUTH_ERROR,
        lambda e, status, text: status in (401, 403)
        or _matches(
            text,
            (
                "api key not valid",
                "api_key_invalid",
                "invalid api key",
                "invalid_api_key",
                "incorrect api key",
                "invalid x-api-key",
                "unauthenticated",
                "unauthorized",
                "permission_denied",
                "permission denied",
                "authentication_error",
            ),
        ),
    ),
    (
        ErrorCategory.QUOTA_OR_RATE_LIMIT,
        lambda e, status, text: status == 429
        or _matches(
            text,
            (
                "quota",
                "rate limit",
                "rate_limit",
                "resource_exhausted",
                "resource has been exhausted",
                "too many requests",
                "billing",
            ),
        ),
    ),
    (
        ErrorCategory.CONTEXT_TOO_LONG,
        lambda e, status, text: status == 413
        or _matches(
            text,
            (
                "context length",
                "context_length_exceeded",
                "maximum context",
                "context window",
                "too many tokens",
                "token limit",
                "prompt is too long",
                "request too large",
            ),
        ),
    ),
    (
        ErrorCategory.CONTENT_SAFETY,
        lambda e, status, text: _matches(
            text,
            (
                "safety",
                "blocked",
                "content_filter",
                "content policy",
                "harm_category",
                "recitation",
            ),
        ),
    ),
    (
        ErrorCategory.NETWORK_UNREACHABLE,
        lambda e, status, text: isinstance(e, _NETWORK_EXCEPTIONS)
        or _matches(
            text,
            (
                "fetch failed",
                "enotfound",
                "econnrefused",
                "econnreset",
                "etimedout",
                "getaddrinfo",
                "name or service not known",
                "network is unreachable",
                "connection refused",
                "timed out",
            ),
        ),
    ),
    (
        ErrorCategory.TRANSIENT_SERVER,
        lambda e, status, text: (status is not None and 500 <= status < 600)
        or _matches(
            text,
            (
                "overloaded",
                "service unavailable",
                "unavailable",
                "internal server error",
                "internal error",
                "bad gateway",
                "deadline_exceeded",
                "try again later",
            ),
        ),
    ),
]


def classify(error: object, backend: ProviderKind | str) -> ClassifiedError:
    """Map a raw backend failure to a category and user-facing message.

    Pure and total: any input (exception or not) yields a result.

    Args:
        error: Raw failure (usually an exception from a backend call)
        backend: Backend kind or display name, used in the message

    Returns:
        ClassifiedError with category, message, backend and sanitized detail

    Examples:
        >>> classify(ProviderError("quota exceeded", 429), ProviderKind.OPENAI).category
        <ErrorCategory.QUOTA_OR_RATE_LIMIT: 'quota_or_rate_limit'>
    """
    name = _backend_name(backend)
    raw = _error_text(error)
    text = raw.lower()
    status = _status_code(error)

    category = ErrorCategory.UNKNOWN
    for candidate, predicate in _RULES:
        if predicate(error, status, text):
            category = candidate
            break

    return ClassifiedError(
        category=category,
        message=ERROR_MESSAGES[category].format(backend=name),
        backend=name,
        detail=sanitize_text(raw)[:MAX_DETAIL_LENGTH],
    )


def is_model_switch_futile(category: ErrorCategory) -> bool:
    """Whether another model of the same backend cannot fix this failure."""
    return category in _MODEL_SWITCH_FUTILE
