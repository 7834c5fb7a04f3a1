"""Assistant features built on the failover engine.

Each task picks multi-backend generation when providers are configured and
falls back to the legacy single API key otherwise. Tasks never raise for
generation failures; they return the documented fallback value instead.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any

import httpx

from calendarplus.ai.errors import ConfigurationError, GenerationError, ProviderError
from calendarplus.ai.failover import FailoverEngine
from calendarplus.ai.providers import GeminiBackend

logger = logging.getLogger(__name__)

SUMMARY_FALLBACK_LENGTH = 50
API_KEY_MISSING = {
    "error": "API_KEY_MISSING",
    "message": "Please configure your Gemini API key in Settings",
}

OVERVIEW_PROMPT = """\
You are a helpful personal assistant.
Analyze the following notes and provide a comforting briefing for the user.
Focus on priorities and timelines.
Tell the user what to focus on first based on the dates and importance.

For example if there is a revision for an exam in 2 weeks and a society event in 1 week, \
say roughly something about focusing on the society as it is the soonest and making sure \
to revise every day for the upcoming exam!

Keep the tone comforting and encouraging.
IMPORTANT:
1. Keep the response strictly under 80 words.
2. Use **bold** markdown for key words (like event names, dates, or priorities).
3. Use British English spelling and terminology (e.g. 'colour', 'centre', 'programme', 'organise').

Here are the notes:
{notes}
"""

NOTE_PROMPT = """\
You are a smart calendar assistant.
Current Date/Time: {now} ({weekday})

User Input: "{text}"

Extract the event details into a JSON object with these fields:
- title: Short summary (max 5 words). Use British English.
- descriptionOptions: Generate 3 distinct, helpful, professional, and slightly detailed \
description options based on the input context. Do not just copy the input. Use British \
English spelling (e.g. 'colour', 'centre', 'programme', 'organise').
- date: YYYY-MM-DD format. NOTE: If the user says "next week" without a specific day, \
assume it means exactly 7 days from today.
- time: HH:mm format (24h). Default to "09:00" if not specified.
- importance: "low", "medium", or "high" (infer from urgency/tone)

Return ONLY the JSON object. No markdown formatting.
"""

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def _truncate(text: str) -> str:
    return text[:SUMMARY_FALLBACK_LENGTH] + "..."


async def summarize_text(engine: FailoverEngine, text: str) -> str:
    """Summarize ``text``; on any failure return its first 50 characters + ``...``."""
    try:
        return await engine.generate(text, engine.preferred_mode())
    except GenerationError as e:
        logger.info(f"Summary unavailable, truncating instead: {e}")
        return _truncate(text)


async def generate_overview(engine: FailoverEngine, notes: Any) -> str:
    """Short briefing over ``notes`` (any JSON-serializable structure)."""
    prompt = OVERVIEW_PROMPT.format(notes=json.dumps(notes, ensure_ascii=False, default=str))
    try:
        return await engine.generate(prompt, engine.preferred_mode())
    except ConfigurationError as e:
        return str(e)
    except GenerationError as e:
        logger.error(f"Overview generation failed: {e.classified.detail}")
        return str(e)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences around a model's JSON answer."""
    return _FENCE_RE.sub("", text).strip()


async def parse_natural_language_note(
    engine: FailoverEngine,
    text: str,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Turn free text into ``{title, descriptionOptions, date, time, importance}``.

    Returns:
        The parsed object, ``API_KEY_MISSING`` when no backend is configured,
        or None when generation or parsing fails
    """
    now = now or datetime.now().astimezone()
    prompt = NOTE_PROMPT.format(now=now.isoformat(), weekday=now.strftime("%A"), text=text)

    try:
        answer = await engine.generate(prompt, engine.preferred_mode())
    except ConfigurationError:
        return dict(API_KEY_MISSING)
    except GenerationError as e:
        logger.error(f"Note parsing failed: {e.classified.detail}")
        return None

    try:
        parsed = json.loads(strip_code_fences(answer))
    except ValueError as e:
        logger.warning(f"Model returned invalid JSON for note: {e}")
        return None

    if not isinstance(parsed, dict):
        logger.warning(f"Model returned {type(parsed).__name__} instead of an object")
        return None
    return parsed


async def validate_api_key(key: str, backend: GeminiBackend | None = None) -> dict[str, Any]:
    """Check a Gemini key by listing the models it can see.

    Returns:
        ``{"valid": True}`` or ``{"valid": False, "error": <reason>}``
    """
    if not key or not key.strip():
        return {"valid": False, "error": "API Key is empty"}

    backend = backend or GeminiBackend()
    try:
        models = await backend.list_models(key.strip())
    except ProviderError as e:
        return {"valid": False, "error": e.message or "Invalid API Key"}
    except httpx.HTTPError as e:
        logger.warning(f"API key validation request failed: {e}")
        return {"valid": False, "error": str(e) or "Validation failed"}

    logger.info(f"API key valid, {len(models)} models available")
    return {"valid": True}
