"""Anthropic LLM provider using the anthropic SDK."""

from __future__ import annotations

import json
import logging

import anthropic

from knowledgeoracle.infra.providers.errors import (
    TransientProviderError,
    classify_failure,
)
from knowledgeoracle.models.provider import LLMConfig, LLMMessage, LLMResponse

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"


class AnthropicProvider:
    """LLM provider using the Anthropic API.

    Reasoning effort and verbosity have no Anthropic equivalent and are
    not sent.
    """

    def __init__(self, api_key: str = "", model: str = "", client=None) -> None:
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key or None)
        self._default_model = model or DEFAULT_MODEL

    @staticmethod
    def _convert_messages(messages: list[LLMMessage]) -> tuple[str | None, list[dict]]:
        """Convert LLMMessages to Anthropic format, extracting system prompt."""
        system_parts = []
        converted: list[dict] = []
        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.content)
            elif converted and converted[-1]["role"] == msg.role:
                # Anthropic requires alternating roles
                converted[-1]["content"] += "\n\n" + msg.content
            else:
                converted.append({"role": msg.role, "content": msg.content})
        return ("\n\n".join(system_parts) or None), converted

    async def complete(
        self,
        messages: list[LLMMessage],
        config: LLMConfig | None = None,
    ) -> LLMResponse:
        """Generate a completion using the Anthropic API."""
        config = config or LLMConfig()
        model = config.model or self._default_model
        system_prompt, converted = self._convert_messages(messages)

        kwargs: dict = {
            "model": model,
            "max_tokens": config.max_tokens,
            "messages": converted,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if config.temperature is not None:
            kwargs["temperature"] = config.temperature
        if config.timeout:
            kwargs["timeout"] = config.timeout

        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APITimeoutError as e:
            raise TransientProviderError(f"Request timed out: {e}", code="timeout") from e
        except anthropic.APIConnectionError as e:
            raise TransientProviderError(str(e) or type(e).__name__) from e
        except anthropic.APIStatusError as e:
            raw = json.dumps(e.body) if isinstance(e.body, dict) else str(e.message)
            raise classify_failure(e.status_code, raw) from e

        content_text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        return LLMResponse(
            content=content_text,
            model=response.model,
            finish_reason=response.stop_reason or "",
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )
