"""Utility functions and helpers."""

from __future__ import annotations

from calendarplus.utils.logging import (
    CorrelationIDFilter,
    LogSanitizer,
    SanitizingFormatter,
    TimingContext,
    correlation_scope,
    generate_correlation_id,
    get_correlation_id,
    sanitize_text,
)

__all__ = [
    "CorrelationIDFilter",
    "LogSanitizer",
    "SanitizingFormatter",
    "TimingContext",
    "correlation_scope",
    "generate_correlation_id",
    "get_correlation_id",
    "sanitize_text",
]
