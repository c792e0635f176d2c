"""LLM provider factory/registry."""

from __future__ import annotations

import logging

from knowledgeoracle.config import AppConfig
from knowledgeoracle.infra.providers.anthropic import AnthropicProvider
from knowledgeoracle.infra.providers.base import LLMProvider
from knowledgeoracle.infra.providers.openai import OpenAIProvider
from knowledgeoracle.infra.providers.openrouter import OpenRouterProvider
from knowledgeoracle.models.provider import ProviderType

logger = logging.getLogger(__name__)


def _build_provider(provider_type: ProviderType, config: AppConfig) -> LLMProvider:
    """Build a single provider instance."""
    prov_config = config.providers.get(provider_type.value)
    api_key = prov_config.api_key if prov_config else ""
    model = prov_config.default_model if prov_config else ""
    base_url = prov_config.base_url if prov_config else ""

    if provider_type == ProviderType.OPENAI:
        return OpenAIProvider(api_key=api_key, model=model, base_url=base_url)
    elif provider_type == ProviderType.ANTHROPIC:
        return AnthropicProvider(api_key=api_key, model=model)
    elif provider_type == ProviderType.OPENROUTER:
        return OpenRouterProvider(api_key=api_key, model=model, base_url=base_url)
    else:
        raise ValueError(f"Unknown provider type: {provider_type}")


def get_provider(provider_type: ProviderType | str, config: AppConfig) -> LLMProvider:
    """Get an LLM provider instance by type, configured from AppConfig."""
    if isinstance(provider_type, str):
        provider_type = ProviderType(provider_type)
    return _build_provider(provider_type, config)


class ProviderRegistry:
    """Builds providers on first use and reuses them for later candidates."""

    def __init__(self, config: AppConfig, providers: dict[str, LLMProvider] | None = None) -> None:
        self._config = config
        self._providers: dict[str, LLMProvider] = dict(providers or {})

    def get(self, name: str) -> LLMProvider:
        if name not in self._providers:
            logger.debug("Building provider %s", name)
            self._providers[name] = get_provider(name, self._config)
        return self._providers[name]

    async def close(self) -> None:
        for provider in self._providers.values():
            close = getattr(provider, "close", None)
            if close is not None:
                await close()
        self._providers.clear()
