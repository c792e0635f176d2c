"""Web research domain models."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class WebResearchQuery:
    """A derived sub-query. Ephemeral, generated per request."""

    text: str

    def __post_init__(self) -> None:
        if not self.text or not self.text.strip():
            raise ValueError("Research query cannot be empty")


@dataclass(frozen=True)
class WebSource:
    url: str
    title: str = ""

    @property
    def usable(self) -> bool:
        return self.url.startswith(("http://", "https://"))


@dataclass(frozen=True)
class SearchResult:
    """A single raw result from a search provider."""

    title: str
    url: str
    content: str
    score: float = 0.0


@dataclass(frozen=True)
class WebSearchPayload:
    """Normalized output of any web search tool."""

    facts: tuple[str, ...] = ()
    sources: tuple[WebSource, ...] = ()
    tool: str = ""

    @property
    def usable_sources(self) -> tuple[WebSource, ...]:
        return tuple(s for s in self.sources if s.usable)


@dataclass(frozen=True)
class WebResearchFinding:
    """Result of one successfully completed sub-query."""

    query: str
    key_facts: tuple[str, ...] = ()
    sources: tuple[WebSource, ...] = ()
    tool: str = ""


def dedupe_sources(findings) -> tuple[WebSource, ...]:
    """Union of finding sources in order, deduplicated by URL."""
    seen: set[str] = set()
    out: list[WebSource] = []
    for finding in findings:
        for source in finding.sources:
            if not source.usable or source.url in seen:
                continue
            seen.add(source.url)
            out.append(source)
    return tuple(out)


@dataclass(frozen=True)
class ResearchBrief:
    """Synthesized, citation-bearing summary of all findings."""

    synthesized_text: str
    sources: tuple[WebSource, ...] = ()
    findings: tuple[WebResearchFinding, ...] = ()
    queries: tuple[str, ...] = ()
    synthesized: bool = True
    planned_by_model: bool = False

    def __post_init__(self) -> None:
        if not self.synthesized_text:
            raise ValueError("Research brief text cannot be empty")

    @property
    def source_urls(self) -> list[str]:
        return [s.url for s in self.sources]
