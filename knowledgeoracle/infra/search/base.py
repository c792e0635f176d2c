"""Web search tool protocol definition."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from knowledgeoracle.models.research import WebSearchPayload


@runtime_checkable
class WebSearchTool(Protocol):
    """One interchangeable way of searching the web.

    Implementations return an empty payload (or raise) when they found
    nothing usable; the research planner moves on to the next tool.
    """

    name: str

    async def search(self, query: str, timeout: float) -> WebSearchPayload:
        """Search for ``query`` within ``timeout`` seconds."""
        ...
