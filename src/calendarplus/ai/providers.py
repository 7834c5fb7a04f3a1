"""Text-generation backends.

One class per backend kind, all async over ``httpx``. A backend turns a
prompt and an API key into text, or raises: :class:`ProviderError` for an
API-level failure (non-2xx or unusable response), ``httpx`` transport
errors for network failures. Classification happens in the caller.

Example:
    ```python
    registry = BackendRegistry()
    text = await registry[ProviderKind.OPENAI].generate("Hello", api_key)
    ```
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any, ClassVar

import httpx

from calendarplus.ai.error_mapping import classify, is_model_switch_futile
from calendarplus.ai.errors import ProviderError
from calendarplus.config import Settings, get_settings
from calendarplus.models import ProviderKind
from calendarplus.utils.logging import TimingContext

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"
GROQ_API_URL = "https://api.groq.com/openai/v1/chat/completions"
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 1024


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of the API's own error text.

    Keeps the machine-readable status/type (e.g. ``RESOURCE_EXHAUSTED``,
    ``rate_limit_error``) so the classifier can match on it.
    """
    try:
        data = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        message = str(error.get("message") or "")
        code = error.get("status") or error.get("type") or error.get("code")
        return f"{code}: {message}" if code else message
    return response.text[:500] or response.reason_phrase


class Backend(ABC):
    """Base class for a text-generation backend.

    Args:
        settings: Application settings (models, timeout)
        client: Shared ``httpx.AsyncClient``; a short-lived client per
            request is used when omitted
    """

    kind: ClassVar[ProviderKind]

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._http = client

    @property
    def display_name(self) -> str:
        return self.kind.display_name

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self._settings.ai_request_timeout) as client:
            yield client

    async def _post_json(self, url: str, *, headers: dict[str, str], body: dict[str, Any]) -> Any:
        async with self._client() as client:
            response = await client.post(url, headers=headers, json=body)
        return self._parse(response)

    def _parse(self, response: httpx.Response) -> Any:
        if not response.is_success:
            raise ProviderError(
                _error_message(response),
                status_code=response.status_code,
                backend=self.display_name,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"Malformed response body: {e}",
                status_code=response.status_code,
                backend=self.display_name,
            ) from e

    def _unexpected(self, what: str) -> ProviderError:
        return ProviderError(f"Unexpected response format: {what}", backend=self.display_name)

    @abstractmethod
    async def generate(self, prompt: str, api_key: str) -> str:
        """Generate text for ``prompt``.

        Raises:
            ProviderError: The API rejected the request or returned no text
            httpx.TransportError: The API could not be reached
        """


class GeminiBackend(Backend):
    """Google Gemini, with a sub-retry across model variants.

    Variants are tried in the configured order. A failure that another
    model cannot fix (auth, quota, region) ends the sub-retry at once;
    otherwise the next variant is tried and, when all fail, the last
    error is raised.
    """

    kind = ProviderKind.GEMINI

    @property
    def models(self) -> list[str]:
        return list(self._settings.gemini_models)

    async def generate(self, prompt: str, api_key: str) -> str:
        last_error: Exception | None = None

        for model in self.models:
            try:
                with TimingContext(f"Gemini {model}", logger):
                    return await self.generate_with_model(prompt, api_key, model)
            except Exception as e:
                classified = classify(e, self.kind)
                if is_model_switch_futile(classified.category):
                    logger.warning(
                        f"Gemini model {model} failed ({classified.category.value}), "
                        f"not trying other models"
                    )
                    raise
                logger.warning(
                    f"Gemini model {model} failed ({classified.category.value}): "
                    f"{classified.detail}"
                )
                last_error = e

        if last_error is None:
            raise ProviderError("No Gemini models configured", backend=self.display_name)
        raise last_error

    async def generate_with_model(self, prompt: str, api_key: str, model: str) -> str:
        data = await self._post_json(
            f"{GEMINI_API_BASE}/models/{model}:generateContent",
            headers={"x-goog-api-key": api_key},
            body={"contents": [{"parts": [{"text": prompt}]}]},
        )
        return self._extract_text(data)

    def _extract_text(self, data: Any) -> str:
        if not isinstance(data, dict):
            raise self._unexpected("not an object")

        candidates = data.get("candidates") or []
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason")
            if reason:
                raise ProviderError(
                    f"Prompt blocked by safety filters: {reason}", backend=self.display_name
                )
            raise self._unexpected("no candidates")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        if not text:
            finish = candidate.get("finishReason", "")
            if finish in ("SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT"):
                raise ProviderError(
                    f"Response blocked by safety filters: {finish}", backend=self.display_name
                )
            raise self._unexpected(f"empty candidate (finishReason={finish or 'none'})")
        return text

    async def list_models(self, api_key: str) -> list[str]:
        """List model names visible to ``api_key`` (used to validate keys)."""
        async with self._client() as client:
            response = await client.get(
                f"{GEMINI_API_BASE}/models",
                headers={"x-goog-api-key": api_key},
            )
        data = self._parse(response)
        models = data.get("models", []) if isinstance(data, dict) else []
        return [m.get("name", "") for m in models if isinstance(m, dict)]


class OpenAIBackend(Backend):
    """OpenAI chat completions."""

    kind = ProviderKind.OPENAI
    url = OPENAI_API_URL

    @property
    def model(self) -> str:
        return self._settings.openai_model

    async def generate(self, prompt: str, api_key: str) -> str:
        data = await self._post_json(
            self.url,
            headers={"Authorization": f"Bearer {api_key}"},
            body={
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise self._unexpected("missing choices[0].message.content") from e

        if not content:
            finish = data["choices"][0].get("finish_reason")
            if finish == "content_filter":
                raise ProviderError(
                    "Response blocked by content_filter", backend=self.display_name
                )
            raise self._unexpected("empty completion")
        return content


class GroqBackend(OpenAIBackend):
    """Groq's OpenAI-compatible chat completions."""

    kind = ProviderKind.GROQ
    url = GROQ_API_URL

    @property
    def model(self) -> str:
        return self._settings.groq_model


class AnthropicBackend(Backend):
    """Anthropic messages API."""

    kind = ProviderKind.ANTHROPIC

    async def generate(self, prompt: str, api_key: str) -> str:
        data = await self._post_json(
            ANTHROPIC_API_URL,
            headers={
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            body={
                "model": self._settings.anthropic_model,
                "max_tokens": ANTHROPIC_MAX_TOKENS,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise self._unexpected("missing content")

        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        if not text:
            raise self._unexpected(f"no text blocks (stop_reason={data.get('stop_reason')})")
        return text


BACKEND_CLASSES: dict[ProviderKind, type[Backend]] = {
    ProviderKind.GEMINI: GeminiBackend,
    ProviderKind.OPENAI: OpenAIBackend,
    ProviderKind.ANTHROPIC: AnthropicBackend,
    ProviderKind.GROQ: GroqBackend,
}


class BackendRegistry:
    """Backend instances by kind.

    Args:
        settings: Application settings passed to every backend
        client: Shared ``httpx.AsyncClient`` passed to every backend
        backends: Replacements for the default instances
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        backends: Iterable[Backend] = (),
    ) -> None:
        self._backends: dict[ProviderKind, Backend] = {
            kind: cls(settings, client) for kind, cls in BACKEND_CLASSES.items()
        }
        for backend in backends:
            self.register(backend)

    def register(self, backend: Backend) -> None:
        self._backends[backend.kind] = backend

    def __getitem__(self, kind: ProviderKind) -> Backend:
        return self._backends[kind]

    def __contains__(self, kind: object) -> bool:
        return kind in self._backends

    @property
    def kinds(self) -> list[ProviderKind]:
        return list(self._backends)
