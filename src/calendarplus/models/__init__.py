"""Domain models for CalendarPlus.

Models:
    ProviderKind: Enum of text-generation backends
    ProviderConfig: One configured backend in the failover list
    GenerationMode: Single-backend (legacy) or multi-backend generation
    FallbackEvent: Record of one backend-to-backend transition
"""

from .fallback import FallbackEvent
from .provider import GenerationMode, ProviderConfig, ProviderKind, usable_configs

__all__ = [
    "FallbackEvent",
    "GenerationMode",
    "ProviderConfig",
    "ProviderKind",
    "usable_configs",
]
