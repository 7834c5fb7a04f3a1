"""Error types of the text-generation layer."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Fixed taxonomy of backend failures."""

    AUTH_ERROR = "auth_error"
    QUOTA_OR_RATE_LIMIT = "quota_or_rate_limit"
    REGION_RESTRICTED = "region_restricted"
    TRANSIENT_SERVER = "transient_server"
    CONTENT_SAFETY = "content_safety"
    CONTEXT_TOO_LONG = "context_too_long"
    NETWORK_UNREACHABLE = "network_unreachable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedError:
    """A backend failure mapped onto :class:`ErrorCategory`.

    Attributes:
        category: Failure category
        message: Stable user-facing message naming the backend
        backend: Display name of the backend that failed
        detail: Raw error text with secrets masked (for logs)
    """

    category: ErrorCategory
    message: str
    backend: str
    detail: str = ""


class ProviderError(Exception):
    """A backend answered with a non-success response.

    Attributes:
        message: Error text reported by the backend API
        status_code: HTTP status of the response (None if not HTTP-related)
        backend: Name of the backend that failed
    """

    def __init__(self, message: str, status_code: int | None = None, backend: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.backend = backend

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.status_code}] {self.message}"
        return self.message


class GenerationError(Exception):
    """Text generation failed; ``str(err)`` is the user-facing message."""

    def __init__(self, classified: ClassifiedError) -> None:
        super().__init__(classified.message)
        self.classified = classified

    @property
    def category(self) -> ErrorCategory:
        return self.classified.category


class ConfigurationError(GenerationError):
    """No usable backend or credential is configured."""

    MESSAGE = "Please add your AI API key in settings! Make sure not to share it with anyone."

    def __init__(self, backend: str = "") -> None:
        super().__init__(
            ClassifiedError(
                category=ErrorCategory.AUTH_ERROR,
                message=self.MESSAGE,
                backend=backend,
                detail="no credential configured",
            )
        )
