"""Web search through an OpenAI model with a hosted web search tool."""

from __future__ import annotations

import logging
import re

from knowledgeoracle.infra.providers.base import LLMProvider
from knowledgeoracle.models.provider import LLMConfig, LLMMessage
from knowledgeoracle.models.research import WebSearchPayload, WebSource

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"https?://[^\s)\]>\"']+")
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")

SEARCH_INSTRUCTIONS = (
    "Search the web and reply with up to 5 short factual bullet lines about the query. "
    "End each line with the URL of the page that supports it. Do not add an introduction."
)


def parse_bullets(text: str, max_facts: int = 6) -> list[str]:
    facts = []
    for line in text.splitlines():
        if not _BULLET_RE.match(line):
            continue
        fact = _BULLET_RE.sub("", line).strip()
        if fact:
            facts.append(fact)
        if len(facts) >= max_facts:
            break
    return facts


class OpenAIWebSearchTool:
    """One model + hosted tool combination (e.g. ``gpt-5-mini`` with ``web_search``)."""

    def __init__(
        self,
        provider: LLMProvider,
        model: str,
        tool_type: str = "web_search",
        max_output_tokens: int = 260,
        usage=None,
    ) -> None:
        self._provider = provider
        self._model = model
        self._tool_type = tool_type
        self._max_output_tokens = max_output_tokens
        self._usage = usage
        self.name = f"{model}:{tool_type}"

    async def search(self, query: str, timeout: float) -> WebSearchPayload:
        config = LLMConfig(
            model=self._model,
            max_tokens=self._max_output_tokens,
            temperature=None,
            tools=[{"type": self._tool_type}],
            timeout=timeout,
        )
        response = await self._provider.complete(
            [
                LLMMessage(role="system", content=SEARCH_INSTRUCTIONS),
                LLMMessage(role="user", content=query),
            ],
            config,
        )
        if self._usage:
            self._usage.record("search", response)

        sources = list(response.citations)
        seen = {s.url for s in sources}
        for url in _URL_RE.findall(response.content):
            url = url.rstrip(".,;")
            if url not in seen:
                seen.add(url)
                sources.append(WebSource(url=url))

        facts = parse_bullets(response.content)
        if not facts and response.content.strip():
            facts = [response.content.strip()[:400]]
        logger.debug("%s returned %d facts, %d sources", self.name, len(facts), len(sources))
        return WebSearchPayload(facts=tuple(facts), sources=tuple(sources), tool=self.name)
