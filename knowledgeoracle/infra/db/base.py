"""Catalog and index protocol definitions."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from knowledgeoracle.models.answer import AnswerRecord
from knowledgeoracle.models.knowledge import CatalogCandidate, ChunkHit
from knowledgeoracle.models.query import CatalogScope


@runtime_checkable
class KeywordCatalog(Protocol):
    """A named collection of documents ranked locally by keyword overlap."""

    async def list_candidates(self, scope: CatalogScope) -> list[CatalogCandidate]:
        """Return candidate documents visible in ``scope``."""
        ...


@runtime_checkable
class SemanticIndex(Protocol):
    """Pre-computed vector index over chunked knowledge."""

    async def search(
        self, vector: list[float], k: int, similarity_floor: float
    ) -> list[ChunkHit]:
        """Return at most ``k`` chunks with similarity >= ``similarity_floor``."""
        ...


@runtime_checkable
class AnswerStore(Protocol):
    async def insert(self, record: AnswerRecord) -> AnswerRecord:
        ...
