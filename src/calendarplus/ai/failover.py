"""Priority-ordered failover across text-generation backends.

Multi-backend mode walks the usable provider configs in priority order.
Any failure on a backend that is not the last one records a
:class:`FallbackEvent` and moves on to the next backend, whatever its
category. The last backend's failure is raised as a
:class:`GenerationError` carrying its classification.

Single-backend mode uses one backend with the device API key and never
moves to another backend.
"""

from __future__ import annotations

import logging

from calendarplus.ai.error_mapping import classify
from calendarplus.ai.errors import ConfigurationError, GenerationError
from calendarplus.ai.fallback_log import FallbackLog
from calendarplus.ai.providers import BackendRegistry
from calendarplus.config import Settings, get_settings
from calendarplus.models import (
    FallbackEvent,
    GenerationMode,
    ProviderConfig,
    ProviderKind,
    usable_configs,
)
from calendarplus.settings.store import DeviceSettingsStore
from calendarplus.utils.logging import TimingContext, correlation_scope

logger = logging.getLogger(__name__)


class FailoverEngine:
    """Generate text with the first backend that succeeds.

    Args:
        device: Opened device settings (provider configs and API keys)
        registry: Backends by kind (defaults built from ``settings``)
        settings: Application settings
        fallback_log: History receiving fallback events (defaults to one
            persisted in ``device``)

    Example:
        ```python
        engine = FailoverEngine(device_settings)
        text = await engine.generate("Summarize my week")
        ```
    """

    def __init__(
        self,
        device: DeviceSettingsStore,
        registry: BackendRegistry | None = None,
        settings: Settings | None = None,
        fallback_log: FallbackLog | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._device = device
        self._registry = registry or BackendRegistry(self._settings)
        self._fallback_log = fallback_log or FallbackLog(
            device,
            limit=self._settings.fallback_log_limit,
            query_limit=self._settings.fallback_query_limit,
        )

    @property
    def fallback_log(self) -> FallbackLog:
        return self._fallback_log

    def preferred_mode(self) -> GenerationMode:
        """Multi-backend when any provider is usable, else the legacy single key."""
        if usable_configs(self._device.get_provider_configs()):
            return GenerationMode.MULTI
        return GenerationMode.SINGLE

    async def generate(self, prompt: str, mode: GenerationMode = GenerationMode.MULTI) -> str:
        """Generate text for ``prompt``.

        Raises:
            ConfigurationError: No usable backend or credential
            GenerationError: Every eligible backend failed
        """
        with correlation_scope():
            if mode is GenerationMode.SINGLE:
                return await self._generate_single(prompt)
            return await self._generate_multi(prompt)

    def _single_key(self, kind: ProviderKind) -> str:
        key = self._device.get_api_keys().get(kind.value, "")
        if not key and kind is ProviderKind.GEMINI:
            key = self._device.get_api_key() or self._settings.gemini_api_key
        return key.strip()

    async def _generate_single(self, prompt: str) -> str:
        kind = self._settings.default_provider
        api_key = self._single_key(kind)
        if not api_key:
            raise ConfigurationError(kind.display_name)

        try:
            return await self._attempt(kind, api_key, prompt)
        except Exception as e:
            classified = classify(e, kind)
            logger.error(
                f"{kind.display_name} failed in single-backend mode "
                f"({classified.category.value}): {classified.detail}"
            )
            raise GenerationError(classified) from e

    async def _generate_multi(self, prompt: str) -> str:
        configs: list[ProviderConfig] = usable_configs(self._device.get_provider_configs())
        if not configs:
            raise ConfigurationError()

        logger.debug(f"Failover order: {', '.join(c.kind.value for c in configs)}")

        for i, config in enumerate(configs):
            try:
                return await self._attempt(config.kind, config.credential, prompt)
            except Exception as e:
                classified = classify(e, config.kind)
                logger.warning(
                    f"{config.kind.display_name} failed "
                    f"(attempt {i + 1}/{len(configs)}, {classified.category.value}): "
                    f"{classified.detail}"
                )

                if i == len(configs) - 1:
                    logger.error(f"All {len(configs)} backends failed")
                    raise GenerationError(classified) from e

                next_config = configs[i + 1]
                await self._fallback_log.append(
                    FallbackEvent(
                        from_backend=config.kind.value,
                        to_backend=next_config.kind.value,
                        reason=classified.message,
                    )
                )
                logger.info(
                    f"Falling back from {config.kind.display_name} "
                    f"to {next_config.kind.display_name}"
                )

        # Unreachable: the loop returns or raises on its last iteration
        raise ConfigurationError()

    async def _attempt(self, kind: ProviderKind, api_key: str, prompt: str) -> str:
        backend = self._registry[kind]
        logger.info(f"Generating with {backend.display_name}")
        with TimingContext(f"{backend.display_name} generate", logger) as timing:
            text = await backend.generate(prompt, api_key)
        logger.info(f"{backend.display_name} succeeded in {timing.duration_ms:.0f}ms")
        return text
