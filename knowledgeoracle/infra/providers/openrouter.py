"""OpenRouter LLM provider using httpx."""

from __future__ import annotations

import json
import logging

import httpx

from knowledgeoracle.infra.providers.errors import (
    TransientProviderError,
    classify_failure,
)
from knowledgeoracle.models.provider import LLMConfig, LLMMessage, LLMResponse

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "openai/gpt-4.1-mini"
DEFAULT_TIMEOUT = 60.0


class OpenRouterProvider:
    """LLM provider using the OpenRouter API (OpenAI-compatible)."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        base_url: str = "",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._default_model = model or DEFAULT_MODEL
        self._client = client or httpx.AsyncClient(
            base_url=base_url or OPENROUTER_BASE_URL,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=DEFAULT_TIMEOUT,
        )

    def _resolve_model(self, model: str) -> str:
        """Use the given model if it looks like an OpenRouter model, else default.

        OpenRouter models use 'provider/model' format (e.g. 'openai/gpt-4.1-mini').
        """
        if model and "/" in model:
            return model
        return self._default_model

    async def complete(
        self,
        messages: list[LLMMessage],
        config: LLMConfig | None = None,
    ) -> LLMResponse:
        """Generate a completion via OpenRouter."""
        config = config or LLMConfig()
        model = self._resolve_model(config.model)

        payload: dict = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "max_tokens": config.max_tokens,
        }
        if config.temperature is not None:
            payload["temperature"] = config.temperature
        if config.reasoning_effort:
            payload["reasoning"] = {"effort": config.reasoning_effort}
        if config.verbosity:
            payload["verbosity"] = config.verbosity

        logger.debug("Sending request to OpenRouter with model: %s", model)
        try:
            response = await self._client.post(
                "/chat/completions", json=payload, timeout=config.timeout or DEFAULT_TIMEOUT
            )
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"Request timed out: {e}", code="timeout") from e
        except httpx.TransportError as e:
            raise TransientProviderError(str(e) or type(e).__name__) from e

        logger.debug("OpenRouter response status: %s", response.status_code)
        if response.status_code >= 400:
            raise classify_failure(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as e:
            raise TransientProviderError(
                f"Response body is not JSON (status {response.status_code})",
                code="invalid_response", status=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise TransientProviderError("Response body is not a JSON object", code="invalid_response")
        if data.get("error"):
            raise classify_failure(None, json.dumps({"error": data["error"]}))

        choices = data.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}

        # Map OpenAI-style usage keys to expected format
        raw_usage = data.get("usage") or {}
        return LLMResponse(
            content=message.get("content", "") or "",
            model=data.get("model", model),
            finish_reason=choice.get("finish_reason", "") or "",
            usage={
                "input_tokens": raw_usage.get("prompt_tokens", 0),
                "output_tokens": raw_usage.get("completion_tokens", 0),
            },
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
