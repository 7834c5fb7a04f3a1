"""Text-generation provider configuration models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProviderKind(str, Enum):
    """Supported text-generation backends."""

    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GROQ = "groq"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    ProviderKind.GEMINI: "Gemini",
    ProviderKind.OPENAI: "OpenAI",
    ProviderKind.ANTHROPIC: "Claude",
    ProviderKind.GROQ: "Groq",
}


class GenerationMode(str, Enum):
    """How a generation request picks its backend."""

    SINGLE = "single"  # legacy: one backend with the device API key
    MULTI = "multi"  # configured providers in priority order


class ProviderConfig(BaseModel):
    """One configured backend in the failover list.

    Attributes:
        kind: Backend variant.
        credential: API key. Decrypted in memory; encrypted only at rest.
        enabled: Whether the backend takes part in failover.
        priority: Lower values are tried first.

    Example:
        >>> cfg = ProviderConfig(kind="openai", credential="sk-...", priority=2)
        >>> cfg.is_usable
        True
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    kind: ProviderKind
    credential: str = ""
    enabled: bool = True
    priority: int = Field(default=0)

    @field_validator("credential")
    @classmethod
    def strip_credential(cls, v: str) -> str:
        """Keys pasted from dashboards often carry stray whitespace."""
        return v.strip()

    @property
    def is_usable(self) -> bool:
        return self.enabled and bool(self.credential)


def usable_configs(configs: list[ProviderConfig]) -> list[ProviderConfig]:
    """Enabled configs with a credential, by ascending priority.

    The sort is stable, so equal priorities keep their stored order.
    """
    return sorted((c for c in configs if c.is_usable), key=lambda c: c.priority)
