"""LLM provider protocol definition."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from knowledgeoracle.models.provider import LLMConfig, LLMMessage, LLMResponse


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for LLM providers.

    Adapters normalize their response shape into ``LLMResponse`` and raise
    the exceptions from ``knowledgeoracle.infra.providers.errors``.
    """

    async def complete(
        self,
        messages: list[LLMMessage],
        config: LLMConfig | None = None,
    ) -> LLMResponse:
        """Generate a completion from the model."""
        ...
