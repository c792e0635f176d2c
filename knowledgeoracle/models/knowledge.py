"""Knowledge catalog and retrieval domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class KnowledgeOrigin(str, Enum):
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    COMPENDIUM = "curated-compendium"
    DISCUSSION = "tagged-discussion"
    SELECTED = "selected"


class CatalogName(str, Enum):
    STUDY = "study"
    COMPENDIUM = "compendium"
    DISCUSSIONS = "discussions"


@dataclass(frozen=True)
class CatalogCandidate:
    """A document offered by a keyword catalog; ranking happens locally."""

    id: str
    searchable_text: str
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ChunkHit:
    """A semantic index hit."""

    source_id: str
    chunk_text: str
    similarity: float
    title: str = ""


@dataclass(frozen=True)
class KnowledgeItem:
    """A ranked excerpt kept for the context. Produced fresh per query."""

    source_id: str
    title: str
    excerpt_text: str
    relevance_score: float
    origin: KnowledgeOrigin
    url: str = ""
    details: tuple[str, ...] = ()


@dataclass(frozen=True)
class RetrievalResult:
    """Everything the retrieval stage gathered, plus its confidence score."""

    items: tuple[KnowledgeItem, ...] = ()
    confidence: float = 0.0
    keywords: tuple[str, ...] = ()
    catalog_counts: dict[str, int] = field(default_factory=dict)
    context_text: str = ""
    skipped: bool = False

    @property
    def used_semantic(self) -> bool:
        return any(i.origin == KnowledgeOrigin.SEMANTIC for i in self.items)

    @property
    def keyword_source_count(self) -> int:
        return sum(1 for i in self.items if i.origin != KnowledgeOrigin.SEMANTIC)

    @classmethod
    def empty(cls, skipped: bool = False) -> RetrievalResult:
        return cls(skipped=skipped)
