"""Brave Search tool."""

from __future__ import annotations

import logging

import httpx

from knowledgeoracle.models.research import SearchResult, WebSearchPayload, WebSource

logger = logging.getLogger(__name__)

BRAVE_API_URL = "https://api.search.brave.com/res/v1/web/search"


class BraveSearchTool:
    """Web search tool using the Brave Search API."""

    name = "brave"

    def __init__(
        self,
        api_key: str,
        max_results: int = 5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._max_results = max_results
        self._client = client or httpx.AsyncClient(
            base_url=BRAVE_API_URL,
            headers={
                "Accept": "application/json",
                "Accept-Encoding": "gzip",
                "X-Subscription-Token": api_key,
            },
            timeout=30.0,
        )

    async def fetch(self, query: str, timeout: float) -> list[SearchResult]:
        """Execute a search via Brave Search API."""
        params = {
            "q": query,
            "count": min(self._max_results, 20),  # Brave max is 20 per request
            "extra_snippets": True,
        }

        try:
            response = await self._client.get("", params=params, timeout=timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.warning("Brave search failed: %s", e)
            return []

        results = []
        web = data.get("web", {})
        for item in web.get("results", []):
            description = item.get("description", "")
            extra = item.get("extra_snippets", [])
            if extra:
                description = description + "\n" + "\n".join(extra)

            results.append(SearchResult(
                title=item.get("title", ""),
                url=item.get("url", ""),
                content=description,
            ))

        return results[: self._max_results]

    async def search(self, query: str, timeout: float) -> WebSearchPayload:
        results = await self.fetch(query, timeout)
        facts = []
        for r in results:
            first = r.content.split("\n", 1)[0].strip()
            if first:
                facts.append(f"{first} ({r.url})" if r.url else first)
        return WebSearchPayload(
            facts=tuple(facts),
            sources=tuple(WebSource(url=r.url, title=r.title) for r in results if r.url),
            tool=self.name,
        )

    async def close(self) -> None:
        await self._client.aclose()
