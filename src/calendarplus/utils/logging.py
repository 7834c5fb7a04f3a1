"""Logging utilities with secret masking and correlation IDs.

This module provides:
- Sanitization of API keys, bearer tokens and encrypted secrets in log output
- Correlation IDs for following one generation request across backends
- SanitizingFormatter for complete output sanitization including exceptions
- TimingContext for measuring backend call durations
"""

from __future__ import annotations

import contextvars
import logging
import re
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, ClassVar

# Context variable for storing correlation IDs
correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

# Shared patterns for sensitive data detection
# Used by LogSanitizer, SanitizingFormatter and the error classifier
SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Fernet tokens (encrypted secrets at rest) - check before generic keys
    (re.compile(r"gAAAAA[A-Za-z0-9_\-=]{20,}"), "***ENCRYPTED***"),
    # Google API keys
    (re.compile(r"AIza[0-9A-Za-z_\-]{30,}"), "***GOOGLE_KEY***"),
    # Anthropic, OpenAI and Groq keys
    (re.compile(r"sk-ant-[A-Za-z0-9_\-]{10,}"), "***ANTHROPIC_KEY***"),
    (re.compile(r"sk-[A-Za-z0-9_\-]{16,}"), "***OPENAI_KEY***"),
    (re.compile(r"gsk_[A-Za-z0-9]{16,}"), "***GROQ_KEY***"),
    # GitHub tokens
    (re.compile(r"(?:ghp|gho|ghu|ghs|github_pat)_[A-Za-z0-9_]{20,}"), "***GITHUB_TOKEN***"),
    # Keys passed as query parameters
    (re.compile(r"([?&]key=)[^&\s\"']+"), r"\1***"),
    # API tokens (various formats)
    (
        re.compile(
            r"(api[_-]?key|apiKey|x-api-key|token)['\"]?\s*[:=]\s*['\"]?([A-Za-z0-9_\-]{20,})",
            re.IGNORECASE,
        ),
        r"\1=***TOKEN***",
    ),
    # Authorization headers
    (re.compile(r"(Authorization|Bearer)\s*:?\s*([A-Za-z0-9_\-\.=]{8,})"), r"\1: ***AUTH***"),
    # Generic hex secrets (machine-derived keys)
    (re.compile(r"['\"]?[a-f0-9]{32,}['\"]?"), "***HEX_SECRET***"),
]


def sanitize_text(text: str) -> str:
    """Apply all sanitization patterns to text.

    Args:
        text: The text to sanitize

    Returns:
        Sanitized text with sensitive data masked
    """
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class LogSanitizer(logging.Filter):
    """Filter that sanitizes sensitive data from log records.

    Note: This filter sanitizes msg and args, but exception tracebacks
    are sanitized by SanitizingFormatter at format time.
    """

    PATTERNS: ClassVar[list[tuple[re.Pattern[str], str]]] = SENSITIVE_PATTERNS

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = sanitize_text(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._sanitize_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._sanitize_value(arg) for arg in record.args)

        return True

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return sanitize_text(value)
        elif isinstance(value, dict):
            return {k: self._sanitize_value(v) for k, v in value.items()}
        elif isinstance(value, list | tuple):
            sanitized = [self._sanitize_value(item) for item in value]
            return type(value)(sanitized)
        return value


class SanitizingFormatter(logging.Formatter):
    """Formatter that sanitizes the final formatted output.

    Catches secrets that only appear after formatting, such as request
    URLs inside httpx exception messages and tracebacks.
    """

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        return sanitize_text(formatted)


class CorrelationIDFilter(logging.Filter):
    """Filter that adds the current correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        cid = correlation_id.get()
        record.correlation_id = cid if cid else "-"
        return True


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return correlation_id.get()


def set_correlation_id(cid: str) -> None:
    correlation_id.set(cid)


def clear_correlation_id() -> None:
    correlation_id.set(None)


def generate_correlation_id() -> str:
    """Generate a new 16-character correlation ID."""
    return uuid.uuid4().hex[:16]


@contextmanager
def correlation_scope(cid: str | None = None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block.

    An ID already bound by the caller is kept, so nested scopes log under
    the outermost request.
    """
    existing = correlation_id.get()
    if existing:
        yield existing
        return

    token = correlation_id.set(cid or generate_correlation_id())
    try:
        yield correlation_id.get() or ""
    finally:
        correlation_id.reset(token)


class TimingContext:
    """Context manager for measuring operation duration.

    Usage:
        with TimingContext("gemini generate") as timing:
            ...
        logger.info(f"Done in {timing.duration_ms:.0f}ms")
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None) -> None:
        self.operation_name = operation_name
        self.logger = logger
        self.start_time: float | None = None
        self.end_time: float | None = None

    def __enter__(self) -> TimingContext:
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = time.perf_counter()
        if self.logger:
            level = logging.WARNING if exc_type else logging.DEBUG
            self.logger.log(
                level,
                f"{self.operation_name} completed",
                extra={
                    "operation": self.operation_name,
                    "duration_ms": self.duration_ms,
                    "success": exc_type is None,
                },
            )

    @property
    def duration_ms(self) -> float:
        """Duration in milliseconds, or 0 if not started."""
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time else time.perf_counter()
        return (end - self.start_time) * 1000
