"""Tests for web search tools."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from knowledgeoracle.infra.search.brave import BraveSearchTool
from knowledgeoracle.infra.search.openai_web import OpenAIWebSearchTool, parse_bullets
from knowledgeoracle.models.provider import LLMResponse
from knowledgeoracle.models.research import WebSource


def _brave(handler) -> BraveSearchTool:
    client = httpx.AsyncClient(
        base_url="https://brave.test/search", transport=httpx.MockTransport(handler)
    )
    return BraveSearchTool(api_key="key", max_results=2, client=client)


class TestBraveSearchTool:
    @pytest.mark.asyncio
    async def test_search(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"web": {"results": [
                {"title": "NR-10", "url": "https://gov.br/nr10", "description": "Electrical safety rule",
                 "extra_snippets": ["More detail"]},
                {"title": "SPDA", "url": "https://abnt.org/spda", "description": "Lightning protection"},
                {"title": "Third", "url": "https://x.com", "description": "dropped by max_results"},
            ]}})

        payload = await _brave(handler).search("nr10 spda", timeout=2.0)

        assert seen["params"]["q"] == "nr10 spda"
        assert seen["params"]["count"] == "2"
        assert payload.tool == "brave"
        assert payload.facts == (
            "Electrical safety rule (https://gov.br/nr10)",
            "Lightning protection (https://abnt.org/spda)",
        )
        assert [s.url for s in payload.sources] == ["https://gov.br/nr10", "https://abnt.org/spda"]

    @pytest.mark.asyncio
    async def test_http_error_returns_empty(self):
        payload = await _brave(lambda r: httpx.Response(500)).search("q", timeout=1.0)
        assert payload.facts == ()
        assert payload.sources == ()


class TestParseBullets:
    def test_bullets_and_numbers(self):
        text = "Intro line\n- first fact\n* second\n1. third\n2) fourth\nplain"
        assert parse_bullets(text) == ["first fact", "second", "third", "fourth"]

    def test_max_facts(self):
        text = "\n".join(f"- fact {i}" for i in range(10))
        assert len(parse_bullets(text, max_facts=3)) == 3


class TestOpenAIWebSearchTool:
    @pytest.mark.asyncio
    async def test_search_collects_citations_and_urls(self):
        provider = AsyncMock()
        provider.complete.return_value = LLMResponse(
            content="- NR-10 applies to all electrical work https://gov.br/nr10.\n- See also https://abnt.org",
            model="gpt-5-mini",
            citations=(WebSource(url="https://gov.br/nr10", title="NR-10"),),
        )
        usage = MagicMock()
        tool = OpenAIWebSearchTool(provider, "gpt-5-mini", tool_type="web_search_preview", usage=usage)

        payload = await tool.search("nr10 scope", timeout=3.0)

        assert tool.name == "gpt-5-mini:web_search_preview"
        assert [s.url for s in payload.sources] == ["https://gov.br/nr10", "https://abnt.org"]
        assert len(payload.facts) == 2
        config = provider.complete.call_args.args[1]
        assert config.tools == [{"type": "web_search_preview"}]
        assert config.timeout == 3.0
        assert config.temperature is None
        usage.record.assert_called_once()

    @pytest.mark.asyncio
    async def test_prose_reply_becomes_single_fact(self):
        provider = AsyncMock()
        provider.complete.return_value = LLMResponse(content="No bullets here.", model="m")
        payload = await OpenAIWebSearchTool(provider, "m").search("q", timeout=1.0)
        assert payload.facts == ("No bullets here.",)
        assert payload.usable_sources == ()
