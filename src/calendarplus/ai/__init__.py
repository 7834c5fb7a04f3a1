"""Multi-backend text generation with failover."""

from calendarplus.ai.error_mapping import classify, is_model_switch_futile
from calendarplus.ai.errors import (
    ClassifiedError,
    ConfigurationError,
    ErrorCategory,
    GenerationError,
    ProviderError,
)
from calendarplus.ai.failover import FailoverEngine
from calendarplus.ai.fallback_log import FallbackLog
from calendarplus.ai.providers import (
    AnthropicBackend,
    Backend,
    BackendRegistry,
    GeminiBackend,
    GroqBackend,
    OpenAIBackend,
)

__all__ = [
    "AnthropicBackend",
    "Backend",
    "BackendRegistry",
    "ClassifiedError",
    "ConfigurationError",
    "ErrorCategory",
    "FailoverEngine",
    "FallbackLog",
    "GeminiBackend",
    "GenerationError",
    "GroqBackend",
    "OpenAIBackend",
    "ProviderError",
    "classify",
    "is_model_switch_futile",
]
