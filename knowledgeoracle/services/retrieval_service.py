"""Retrieval service: fuses semantic search and keyword-ranked catalogs.

Every lookup is bounded by a timeout taken from the request budget and
degrades to an empty contribution on failure. ``retrieve`` never raises.
"""

from __future__ import annotations

import asyncio
import logging

from knowledgeoracle.budget import Budget
from knowledgeoracle.config import RetrievalConfig
from knowledgeoracle.infra.db.base import KeywordCatalog, SemanticIndex
from knowledgeoracle.models.knowledge import (
    CatalogCandidate,
    CatalogName,
    ChunkHit,
    KnowledgeItem,
    KnowledgeOrigin,
    RetrievalResult,
)
from knowledgeoracle.models.query import CatalogScope, Query
from knowledgeoracle.services.keywords import (
    centered_excerpt,
    extract_keywords,
    looks_incident_related,
    score_text,
)

logger = logging.getLogger(__name__)

SEMANTIC_CONFIDENCE = 2.0

_SECTION_TITLES = {
    KnowledgeOrigin.SELECTED: "### Selected source",
    KnowledgeOrigin.SEMANTIC: "### Related excerpts",
    KnowledgeOrigin.KEYWORD: "### Study catalog (excerpts)",
    KnowledgeOrigin.COMPENDIUM: "### Incident compendium (summaries)",
    KnowledgeOrigin.DISCUSSION: "### Knowledge base (tagged discussions)",
}


def rank_candidates(
    candidates: list[CatalogCandidate], keywords: list[str], top_n: int
) -> list[tuple[int, CatalogCandidate]]:
    """Top ``top_n`` candidates by keyword score.

    Without keywords the first ``top_n`` candidates are kept with score 0;
    with keywords, candidates that match nothing are dropped.
    """
    if not keywords:
        return [(0, c) for c in candidates[:top_n]]
    scored = [(score_text(c.searchable_text, keywords), c) for c in candidates]
    scored = [pair for pair in scored if pair[0] > 0]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return scored[:top_n]


def group_chunk_hits(
    hits: list[ChunkHit], per_source: int = 2, max_sources: int = 3
) -> list[tuple[str, list[ChunkHit]]]:
    """Group hits by source, keep the best chunks per source and the best sources by peak."""
    by_source: dict[str, list[ChunkHit]] = {}
    for hit in hits:
        by_source.setdefault(hit.source_id, []).append(hit)
    groups = []
    for source_id, source_hits in by_source.items():
        source_hits.sort(key=lambda h: h.similarity, reverse=True)
        groups.append((source_id, source_hits[:per_source]))
    groups.sort(key=lambda g: g[1][0].similarity, reverse=True)
    return groups[:max_sources]


def compute_confidence(semantic_items: list[KnowledgeItem], keyword_scores: list[float]) -> float:
    semantic = SEMANTIC_CONFIDENCE if semantic_items else 0.0
    return max([semantic, *keyword_scores])


def render_context(items: list[KnowledgeItem], max_chars: int) -> str:
    """Render items grouped by origin, dropping whole items once ``max_chars`` is reached."""
    sections: dict[KnowledgeOrigin, list[str]] = {}
    used = 0
    for item in items:
        lines = [f"- {item.title or item.source_id}"]
        lines.extend(f"  {d}" for d in item.details if d)
        if item.excerpt_text:
            lines.append(f"  Excerpt: {item.excerpt_text}")
        if item.url:
            lines.append(f"  Link: {item.url}")
        block = "\n".join(lines)
        header_cost = 0 if item.origin in sections else len(_SECTION_TITLES[item.origin]) + 2
        if used + header_cost + len(block) + 1 > max_chars:
            logger.debug("Context full, dropping %s item %s", item.origin.value, item.source_id)
            continue
        used += header_cost + len(block) + 1
        sections.setdefault(item.origin, []).append(block)

    parts = []
    for origin, title in _SECTION_TITLES.items():
        if origin in sections:
            parts.append(title + "\n" + "\n".join(sections[origin]))
    return "\n\n".join(parts)


class RetrievalService:
    """Builds the knowledge context and confidence score for one query."""

    def __init__(
        self,
        config: RetrievalConfig,
        study: KeywordCatalog | None = None,
        compendium: KeywordCatalog | None = None,
        discussions: KeywordCatalog | None = None,
        semantic_index: SemanticIndex | None = None,
        embedder=None,
    ) -> None:
        self._config = config
        self._study = study
        self._compendium = compendium
        self._discussions = discussions
        self._index = semantic_index
        self._embedder = embedder

    async def retrieve(self, query: Query, budget: Budget) -> RetrievalResult:
        cfg = self._config
        if budget.exhausted:
            return RetrievalResult.empty(skipped=True)

        keywords = extract_keywords(query.raw_text, cfg.acronyms, cfg.max_keywords)
        scope = CatalogScope(user_id=query.user_id, tags=query.topic_tags, limit=cfg.candidate_limit)

        if budget.remaining() >= cfg.parallel_min_seconds:
            selected, semantic, ranked = await asyncio.gather(
                self._selected(query, keywords, scope, budget),
                self._semantic(query, keywords, budget),
                self._keyword(query, keywords, scope, budget),
            )
        else:
            # Tight budget: keyword lookups before embedding, they are cheaper.
            selected = await self._selected(query, keywords, scope, budget)
            ranked = await self._keyword(query, keywords, scope, budget)
            semantic = await self._semantic(query, keywords, budget)

        covered = {i.source_id for i in semantic} | {i.source_id for i in selected}
        keyword_items: list[KnowledgeItem] = []
        catalog_counts: dict[str, int] = {}
        keyword_scores: list[float] = []
        for name, items in ranked.items():
            kept = [i for i in items if not (name == CatalogName.STUDY and i.source_id in covered)]
            keyword_scores.extend(i.relevance_score for i in items)
            if kept:
                catalog_counts[name.value] = len(kept)
            keyword_items.extend(kept)
        if semantic:
            catalog_counts["semantic"] = len(semantic)
        if selected:
            catalog_counts["selected"] = len(selected)

        items = [*selected, *semantic, *keyword_items]
        confidence = compute_confidence(semantic, keyword_scores)
        logger.info(
            "Retrieval: %d items, confidence %.1f, keywords %s", len(items), confidence, keywords
        )
        return RetrievalResult(
            items=tuple(items),
            confidence=confidence,
            keywords=tuple(keywords),
            catalog_counts=catalog_counts,
            context_text=render_context(items, cfg.max_context_chars),
        )

    async def _bounded(self, label: str, coro, budget: Budget):
        """Await ``coro`` within the catalog timeout; None on timeout or failure."""
        timeout = budget.slice(self._config.catalog_timeout)
        if timeout <= 0:
            coro.close()
            logger.info("Skipping %s lookup: budget exhausted", label)
            return None
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("%s lookup timed out after %.1fs", label, timeout)
        except Exception as e:
            logger.warning("%s lookup failed: %s", label, e)
        return None

    async def _semantic(self, query: Query, keywords: list[str], budget: Budget) -> list[KnowledgeItem]:
        cfg = self._config
        if not (self._index and self._embedder):
            return []
        if budget.remaining() < cfg.min_semantic_seconds:
            logger.info("Skipping semantic retrieval: %.1fs left", budget.remaining())
            return []

        vectors = await self._bounded(
            "embedding",
            self._embedder.embed([query.raw_text], timeout=budget.slice(cfg.catalog_timeout)),
            budget,
        )
        if not vectors:
            return []
        hits = await self._bounded(
            "semantic", self._index.search(vectors[0], cfg.semantic_k, cfg.similarity_floor), budget
        )
        if not hits:
            return []

        items = []
        for source_id, chunks in group_chunk_hits(hits, cfg.chunks_per_source, cfg.semantic_sources):
            text = "\n…\n".join(c.chunk_text for c in chunks)
            items.append(KnowledgeItem(
                source_id=source_id,
                title=next((c.title for c in chunks if c.title), ""),
                excerpt_text=centered_excerpt(text, keywords, cfg.excerpt_chars),
                relevance_score=chunks[0].similarity,
                origin=KnowledgeOrigin.SEMANTIC,
            ))
        return items

    async def _keyword(
        self, query: Query, keywords: list[str], scope: CatalogScope, budget: Budget
    ) -> dict[CatalogName, list[KnowledgeItem]]:
        cfg = self._config
        lookups = []
        if self._study:
            lookups.append((CatalogName.STUDY, self._study, cfg.top_study))
        if self._compendium and looks_incident_related(query.raw_text):
            lookups.append((CatalogName.COMPENDIUM, self._compendium, cfg.top_compendium))
        if self._discussions and scope.tags:
            lookups.append((CatalogName.DISCUSSIONS, self._discussions, cfg.top_discussions))
        if not lookups:
            return {}

        results = await asyncio.gather(*(
            self._bounded(name.value, catalog.list_candidates(scope), budget)
            for name, catalog, _ in lookups
        ))

        ranked: dict[CatalogName, list[KnowledgeItem]] = {}
        for (name, _, top_n), candidates in zip(lookups, results):
            top = rank_candidates(candidates or [], keywords, top_n)
            if name == CatalogName.STUDY:
                ranked[name] = await self._study_items(top, keywords, budget)
            elif name == CatalogName.COMPENDIUM:
                ranked[name] = [self._compendium_item(s, c, keywords) for s, c in top]
            else:
                ranked[name] = [self._discussion_item(s, c, keywords) for s, c in top]
        return ranked

    async def _study_items(
        self, top: list[tuple[int, CatalogCandidate]], keywords: list[str], budget: Budget
    ) -> list[KnowledgeItem]:
        cfg = self._config
        full_texts: dict[str, str] = {}
        fetch = getattr(self._study, "fetch_full_texts", None)
        if top and fetch is not None:
            full_texts = await self._bounded("study full text", fetch([c.id for _, c in top]), budget) or {}

        items = []
        for score, cand in top:
            summary = str(cand.payload.get("summary") or "").strip()
            text = full_texts.get(cand.id, "")
            items.append(KnowledgeItem(
                source_id=cand.id,
                title=str(cand.payload.get("title") or ""),
                excerpt_text=centered_excerpt(text, keywords, cfg.excerpt_chars) if text else "",
                relevance_score=float(score),
                origin=KnowledgeOrigin.KEYWORD,
                url=str(cand.payload.get("url") or ""),
                details=(
                    (f"Summary: {centered_excerpt(summary, keywords, cfg.excerpt_chars)}",) if summary else ()
                ),
            ))
        return items

    def _compendium_item(self, score: int, cand: CatalogCandidate, keywords: list[str]) -> KnowledgeItem:
        cat = cand.payload
        header = " • ".join(
            f"{label}: {cat[key]}"
            for label, key in (
                ("area", "asset_area"),
                ("asset", "asset_type"),
                ("failure", "failure_mode"),
                ("cause", "root_cause"),
            )
            if cat.get(key)
        )
        learnings = [str(x) for x in (cat.get("learning_points") or [])[:6]]
        details = tuple(d for d in (header, "Learnings: " + " | ".join(learnings) if learnings else "") if d)
        return KnowledgeItem(
            source_id=cand.id,
            title=str(cat.get("title") or ""),
            excerpt_text=centered_excerpt(
                str(cat.get("summary") or "").strip(), keywords, self._config.excerpt_chars
            ),
            relevance_score=float(score),
            origin=KnowledgeOrigin.COMPENDIUM,
            details=details,
        )

    def _discussion_item(self, score: int, cand: CatalogCandidate, keywords: list[str]) -> KnowledgeItem:
        row = cand.payload
        flags = " • ".join(f for f in (
            "study" if row.get("source_type") == "study" else "",
            "solution" if row.get("is_solution") else "",
            "featured" if row.get("is_featured") else "",
            f"{row['likes_count']} likes" if row.get("likes_count") else "",
        ) if f)
        hashtags = " ".join(f"#{h}" for h in (row.get("hashtags") or [])[:8])
        return KnowledgeItem(
            source_id=cand.id,
            title=str(row.get("title") or ""),
            excerpt_text=centered_excerpt(
                str(row.get("text") or ""), keywords, self._config.discussion_excerpt_chars
            ),
            relevance_score=float(score),
            origin=KnowledgeOrigin.DISCUSSION,
            url=str(row.get("url") or ""),
            details=tuple(d for d in (flags, hashtags) if d),
        )

    async def _selected(
        self, query: Query, keywords: list[str], scope: CatalogScope, budget: Budget
    ) -> list[KnowledgeItem]:
        find = getattr(self._study, "find_by_id", None)
        if not query.selected_source_id or find is None:
            return []
        cand = await self._bounded("selected source", find(query.selected_source_id, scope), budget)
        if not cand or not cand.searchable_text.strip():
            return []
        return [KnowledgeItem(
            source_id=cand.id,
            title=str(cand.payload.get("title") or ""),
            excerpt_text=centered_excerpt(
                cand.searchable_text, keywords, self._config.selected_excerpt_chars
            ),
            relevance_score=0.0,
            origin=KnowledgeOrigin.SELECTED,
            url=str(cand.payload.get("url") or ""),
        )]
