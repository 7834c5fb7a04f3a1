"""Fallback event model."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class FallbackEvent(BaseModel):
    """Audit record of one backend-to-backend transition.

    Stored and returned with camelCase keys:
    ``{"timestamp", "fromBackend", "toBackend", "reason"}``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    from_backend: str = Field(alias="fromBackend")
    to_backend: str = Field(alias="toBackend")
    reason: str = ""

    def to_record(self) -> dict[str, str]:
        return self.model_dump(mode="json", by_alias=True)
