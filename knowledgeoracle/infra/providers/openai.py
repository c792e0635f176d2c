"""OpenAI provider using the Responses API over httpx."""

from __future__ import annotations

import json
import logging

import httpx

from knowledgeoracle.infra.providers.errors import (
    TransientProviderError,
    classify_failure,
)
from knowledgeoracle.models.provider import LLMConfig, LLMMessage, LLMResponse
from knowledgeoracle.models.research import WebSource

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-5-nano-2025-08-07"
DEFAULT_TIMEOUT = 60.0


def _output_text(data: dict) -> str:
    if isinstance(data.get("output_text"), str) and data["output_text"].strip():
        return data["output_text"]
    parts = []
    for item in data.get("output") or []:
        if not isinstance(item, dict):
            continue
        for block in item.get("content") or []:
            if isinstance(block, dict) and block.get("type") in ("output_text", "text"):
                parts.append(str(block.get("text") or ""))
    return "".join(parts)


def _citations(data: dict) -> tuple[WebSource, ...]:
    seen: set[str] = set()
    out = []
    for item in data.get("output") or []:
        if not isinstance(item, dict):
            continue
        for block in item.get("content") or []:
            if not isinstance(block, dict):
                continue
            for ann in block.get("annotations") or []:
                if not isinstance(ann, dict) or ann.get("type") != "url_citation":
                    continue
                url = str(ann.get("url") or "").strip()
                if url and url not in seen:
                    seen.add(url)
                    out.append(WebSource(url=url, title=str(ann.get("title") or "")))
    return tuple(out)


def normalize_response(data: dict, model: str = "") -> LLMResponse:
    """Reduce a Responses API payload to an ``LLMResponse``."""
    if data.get("status") == "failed" and data.get("error"):
        raise classify_failure(None, json.dumps({"error": data["error"]}))

    finish_reason = "stop"
    if data.get("status") == "incomplete":
        details = data.get("incomplete_details") or {}
        finish_reason = str(details.get("reason") or "incomplete")

    raw_usage = data.get("usage") or {}
    return LLMResponse(
        content=_output_text(data),
        model=data.get("model", model),
        finish_reason=finish_reason,
        usage={
            "input_tokens": raw_usage.get("input_tokens", 0),
            "output_tokens": raw_usage.get("output_tokens", 0),
        },
        citations=_citations(data),
    )


class OpenAIProvider:
    """LLM provider using the OpenAI Responses API."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        base_url: str = "",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._default_model = model or DEFAULT_MODEL
        self._client = client or httpx.AsyncClient(
            base_url=base_url or OPENAI_BASE_URL,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=DEFAULT_TIMEOUT,
        )

    def _build_payload(self, messages: list[LLMMessage], config: LLMConfig) -> dict:
        instructions = "\n\n".join(m.content for m in messages if m.role == "system")
        payload: dict = {
            "model": config.model or self._default_model,
            "input": [m.to_dict() for m in messages if m.role != "system"],
            "max_output_tokens": config.max_tokens,
        }
        if instructions:
            payload["instructions"] = instructions
        if config.temperature is not None:
            payload["temperature"] = config.temperature
        if config.reasoning_effort:
            payload["reasoning"] = {"effort": config.reasoning_effort}
        if config.verbosity:
            payload["text"] = {"verbosity": config.verbosity}
        if config.tools:
            payload["tools"] = config.tools
        return payload

    async def complete(
        self,
        messages: list[LLMMessage],
        config: LLMConfig | None = None,
    ) -> LLMResponse:
        """Generate a completion via the Responses API."""
        config = config or LLMConfig()
        payload = self._build_payload(messages, config)
        logger.debug("Sending request to OpenAI with model: %s", payload["model"])
        try:
            response = await self._client.post(
                "/responses", json=payload, timeout=config.timeout or DEFAULT_TIMEOUT
            )
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"Request timed out: {e}", code="timeout") from e
        except httpx.TransportError as e:
            raise TransientProviderError(str(e) or type(e).__name__) from e

        logger.debug("OpenAI response status: %s", response.status_code)
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
        return normalize_response(data, payload["model"])

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
