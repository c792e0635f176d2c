"""Tests for retrieval ranking and the RetrievalService."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from knowledgeoracle.budget import Budget
from knowledgeoracle.config import RetrievalConfig
from knowledgeoracle.models.knowledge import (
    CatalogCandidate,
    ChunkHit,
    KnowledgeItem,
    KnowledgeOrigin,
)
from knowledgeoracle.models.query import Query
from knowledgeoracle.services.retrieval_service import (
    SEMANTIC_CONFIDENCE,
    RetrievalService,
    compute_confidence,
    group_chunk_hits,
    rank_candidates,
    render_context,
)


def _cand(id_: str, text: str, /, **payload) -> CatalogCandidate:
    return CatalogCandidate(id=id_, searchable_text=text, payload={"title": id_.upper(), **payload})


def _item(origin, source_id="s", excerpt="text", title="T") -> KnowledgeItem:
    return KnowledgeItem(
        source_id=source_id, title=title, excerpt_text=excerpt, relevance_score=1.0, origin=origin
    )


class TestRankCandidates:
    def test_sorted_by_score_zero_dropped(self):
        cands = [
            _cand("a", "disjuntor"),
            _cand("b", "nothing relevant"),
            _cand("c", "disjuntor disjuntor disjuntor"),
        ]
        ranked = rank_candidates(cands, ["disjuntor"], top_n=3)
        assert [(s, c.id) for s, c in ranked] == [(3, "c"), (1, "a")]

    def test_top_n(self):
        cands = [_cand(str(i), "spda " * i) for i in range(1, 6)]
        assert [c.id for _, c in rank_candidates(cands, ["spda"], top_n=2)] == ["5", "4"]

    def test_no_keywords_keeps_first_n(self):
        cands = [_cand(str(i), "x") for i in range(5)]
        ranked = rank_candidates(cands, [], top_n=3)
        assert [(s, c.id) for s, c in ranked] == [(0, "0"), (0, "1"), (0, "2")]


class TestGroupChunkHits:
    def test_groups_and_caps(self):
        hits = [
            ChunkHit("s1", "a", 0.60),
            ChunkHit("s2", "b", 0.90),
            ChunkHit("s1", "c", 0.80),
            ChunkHit("s1", "d", 0.70),
            ChunkHit("s3", "e", 0.56),
            ChunkHit("s4", "f", 0.58),
        ]
        groups = group_chunk_hits(hits, per_source=2, max_sources=3)
        assert [g[0] for g in groups] == ["s2", "s1", "s4"]
        assert [h.chunk_text for h in groups[1][1]] == ["c", "d"]


class TestConfidence:
    def test_semantic_floor(self):
        assert compute_confidence([_item(KnowledgeOrigin.SEMANTIC)], []) == SEMANTIC_CONFIDENCE

    def test_keyword_scores_win_when_higher(self):
        assert compute_confidence([_item(KnowledgeOrigin.SEMANTIC)], [1.0, 5.0]) == 5.0

    def test_nothing(self):
        assert compute_confidence([], []) == 0.0


class TestRenderContext:
    def test_sections_in_fixed_order(self):
        items = [
            _item(KnowledgeOrigin.KEYWORD, "k1", title="Study doc"),
            _item(KnowledgeOrigin.SEMANTIC, "s1", title="Chunk doc"),
        ]
        text = render_context(items, 10_000)
        assert text.index("### Related excerpts") < text.index("### Study catalog")
        assert "Excerpt: text" in text

    def test_drops_whole_items_over_cap(self):
        items = [
            _item(KnowledgeOrigin.KEYWORD, "k1", excerpt="a" * 50),
            _item(KnowledgeOrigin.KEYWORD, "k2", excerpt="b" * 500),
            _item(KnowledgeOrigin.KEYWORD, "k3", excerpt="c" * 10),
        ]
        text = render_context(items, 200)
        assert "a" * 50 in text
        assert "b" * 500 not in text
        assert "c" * 10 in text
        assert len(text) <= 200


def _service(config=None, **kwargs) -> RetrievalService:
    return RetrievalService(config or RetrievalConfig(), **kwargs)


@pytest.fixture
def study():
    repo = AsyncMock()
    repo.list_candidates.return_value = [
        _cand("s1", "Manual de manutenção de disjuntores", summary="Disjuntores de média tensão"),
        _cand("s2", "Guia de SPDA"),
    ]
    repo.fetch_full_texts.return_value = {"s1": "Texto completo sobre disjuntores. " * 20}
    repo.find_by_id.return_value = None
    return repo


class TestRetrievalService:
    @pytest.mark.asyncio
    async def test_keyword_retrieval(self, study, clock):
        service = _service(study=study)
        result = await service.retrieve(
            Query(raw_text="manutenção de disjuntores"), Budget.from_limit(30.0, clock=clock)
        )
        assert [i.source_id for i in result.items] == ["s1"]
        assert result.items[0].origin == KnowledgeOrigin.KEYWORD
        assert result.catalog_counts == {"study": 1}
        assert result.confidence >= 2
        assert "### Study catalog" in result.context_text
        assert len(result.items[0].excerpt_text) <= RetrievalConfig().excerpt_chars
        study.fetch_full_texts.assert_awaited_once_with(["s1"])

    @pytest.mark.asyncio
    async def test_compendium_only_for_incident_queries(self, study, clock):
        compendium = AsyncMock()
        compendium.list_candidates.return_value = [
            _cand("i1", "acidente com disjuntor", summary="Arc flash", learning_points=["Use EPI"]),
        ]
        service = _service(study=study, compendium=compendium)

        await service.retrieve(Query(raw_text="disjuntores"), Budget.from_limit(30.0, clock=clock))
        compendium.list_candidates.assert_not_called()

        result = await service.retrieve(
            Query(raw_text="acidente com disjuntor"), Budget.from_limit(30.0, clock=clock)
        )
        compendium_items = [i for i in result.items if i.origin == KnowledgeOrigin.COMPENDIUM]
        assert len(compendium_items) == 1
        assert "Learnings: Use EPI" in compendium_items[0].details

    @pytest.mark.asyncio
    async def test_long_summaries_centred_on_keyword(self, clock):
        long_summary = "x " * 1000 + "transformador explodiu durante a manobra. " + "y " * 500
        study = AsyncMock()
        study.list_candidates.return_value = [_cand("s9", "transformador de potência", summary=long_summary)]
        study.fetch_full_texts.return_value = {}
        study.find_by_id.return_value = None
        compendium = AsyncMock()
        compendium.list_candidates.return_value = [
            _cand("i9", "acidente com transformador", summary=long_summary),
        ]
        cap = RetrievalConfig().excerpt_chars
        service = _service(study=study, compendium=compendium)

        result = await service.retrieve(
            Query(raw_text="acidente com transformador"), Budget.from_limit(30.0, clock=clock)
        )

        incident = next(i for i in result.items if i.origin == KnowledgeOrigin.COMPENDIUM)
        assert "transformador explodiu" in incident.excerpt_text
        assert len(incident.excerpt_text) <= cap
        study_item = next(i for i in result.items if i.origin == KnowledgeOrigin.KEYWORD)
        summary = study_item.details[0]
        assert "transformador explodiu" in summary
        assert len(summary) <= cap + len("Summary: ")

    @pytest.mark.asyncio
    async def test_discussions_need_tags(self, study, clock):
        discussions = AsyncMock()
        discussions.list_candidates.return_value = [
            _cand("d1", "disjuntor travado", text="O disjuntor travou", is_solution=True, hashtags=["subestacao"]),
        ]
        service = _service(study=study, discussions=discussions)

        result = await service.retrieve(
            Query(raw_text="disjuntor travado", topic_tags=("subestacao",)),
            Budget.from_limit(30.0, clock=clock),
        )
        item = next(i for i in result.items if i.origin == KnowledgeOrigin.DISCUSSION)
        assert "solution" in item.details[0]
        assert "#subestacao" in item.details

    @pytest.mark.asyncio
    async def test_semantic_results_and_dedupe(self, study, clock):
        embedder = AsyncMock()
        embedder.embed.return_value = [[0.1, 0.2]]
        index = AsyncMock()
        index.search.return_value = [
            ChunkHit("s1", "Disjuntores devem ser inspecionados.", 0.82, title="Manual"),
            ChunkHit("s9", "Outro trecho", 0.61),
        ]
        service = _service(study=study, semantic_index=index, embedder=embedder)

        result = await service.retrieve(
            Query(raw_text="manutenção de disjuntores"), Budget.from_limit(30.0, clock=clock)
        )
        semantic = [i for i in result.items if i.origin == KnowledgeOrigin.SEMANTIC]
        assert [i.source_id for i in semantic] == ["s1", "s9"]
        # s1 already came from the semantic index; the keyword copy is dropped
        assert not any(i.origin == KnowledgeOrigin.KEYWORD for i in result.items)
        assert result.used_semantic
        assert result.catalog_counts["semantic"] == 2
        index.search.assert_awaited_once_with([0.1, 0.2], 12, 0.55)

    @pytest.mark.asyncio
    async def test_semantic_skipped_when_budget_short(self, study, clock):
        embedder = AsyncMock()
        service = _service(study=study, semantic_index=AsyncMock(), embedder=embedder)
        await service.retrieve(Query(raw_text="disjuntores"), Budget.from_limit(1.5, clock=clock))
        embedder.embed.assert_not_called()
        study.list_candidates.assert_awaited()

    @pytest.mark.asyncio
    async def test_catalog_failure_degrades(self, clock):
        study = AsyncMock()
        study.list_candidates.side_effect = RuntimeError("connection reset")
        study.find_by_id.return_value = None
        result = await _service(study=study).retrieve(
            Query(raw_text="disjuntores"), Budget.from_limit(30.0, clock=clock)
        )
        assert result.items == ()
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_catalog_timeout_degrades(self, clock):
        async def slow(scope):
            await asyncio.sleep(5)
            return []

        study = AsyncMock()
        study.list_candidates.side_effect = slow
        study.find_by_id.return_value = None
        config = RetrievalConfig(catalog_timeout=0.05)
        result = await _service(config, study=study).retrieve(
            Query(raw_text="disjuntores"), Budget.from_limit(30.0, clock=clock)
        )
        assert result.items == ()

    @pytest.mark.asyncio
    async def test_selected_source_always_first(self, study, clock):
        study.find_by_id.return_value = CatalogCandidate(
            id="sel", searchable_text="Documento escolhido. " * 400 + "disjuntores aqui",
            payload={"title": "Chosen"},
        )
        result = await _service(study=study).retrieve(
            Query(raw_text="disjuntores", selected_source_id="sel"),
            Budget.from_limit(30.0, clock=clock),
        )
        first = result.items[0]
        assert first.origin == KnowledgeOrigin.SELECTED
        assert "disjuntores" in first.excerpt_text
        assert len(first.excerpt_text) <= RetrievalConfig().selected_excerpt_chars
        assert result.catalog_counts["selected"] == 1

    @pytest.mark.asyncio
    async def test_exhausted_budget(self, study, clock):
        budget = Budget.from_limit(1.0, clock=clock)
        clock.advance(2.0)
        result = await _service(study=study).retrieve(Query(raw_text="x"), budget)
        assert result.skipped
        study.list_candidates.assert_not_called()
