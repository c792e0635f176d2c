"""Answer orchestration: budget, retrieval, research, generation, assembly.

One ``AnswerService.answer`` call owns a single request: it creates the
request ``Budget``, runs each stage only when the budget can afford it,
and hands the finished answer to the answer store in the background.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable

from knowledgeoracle.budget import Budget
from knowledgeoracle.config import AppConfig
from knowledgeoracle.infra.db.base import AnswerStore
from knowledgeoracle.models.answer import Answer, AnswerRecord, Provenance
from knowledgeoracle.models.generation import CascadeRequest, PromptVariant
from knowledgeoracle.models.knowledge import RetrievalResult
from knowledgeoracle.models.query import ConversationTurn, Intent, Query, QualityTier, cap_history
from knowledgeoracle.models.research import ResearchBrief
from knowledgeoracle.services.cascade_service import ModelCascadeExecutor
from knowledgeoracle.services.keywords import clip, normalize_for_match
from knowledgeoracle.services.model_selection import build_candidates
from knowledgeoracle.services.research_service import WebResearchPlanner
from knowledgeoracle.services.response_assembler import (
    assemble_answer,
    build_provenance,
    build_record,
)
from knowledgeoracle.services.retrieval_service import RetrievalService

logger = logging.getLogger(__name__)

ATTACHMENT_CHARS = 3500

_ROLE_INSTRUCTIONS = {
    Intent.STUDY: (
        "You are a study assistant for field and engineering teams. Ground your answer "
        "in the reference material below. When something is not covered by it, say so "
        "and answer from general knowledge without inventing specifics."
    ),
    Intent.ORACLE: (
        "You are the organisation's knowledge oracle. Treat the knowledge base below as "
        "the primary reference, name the sources you rely on, and be concise and practical."
    ),
    Intent.OPEN_CHAT: (
        "You are a helpful assistant. Use the reference material below when it is relevant."
    ),
}


class GenerationFailedError(Exception):
    """Every generation attempt failed; no answer text is available."""

    def __init__(self, code: str, message: str, attempts: int, provenance: Provenance) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.attempts = attempts
        self.provenance = provenance

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "attempts": self.attempts,
            "provenance": self.provenance.to_dict(),
        }


def build_instructions(query: Query, used_research: bool = False) -> str:
    parts = [_ROLE_INSTRUCTIONS[query.intent], f"Answer in {query.language}."]
    if query.focus:
        parts.append(f"Focus: {query.focus}")
    if used_research:
        parts.append("When you use the web research brief, cite the URLs you relied on.")
    return "\n".join(parts)


def render_attachments(query: Query, chars: int = ATTACHMENT_CHARS) -> str:
    if not query.attachments:
        return ""
    blocks = []
    for a in query.attachments:
        lines = [f"- {a.name or a.url} ({a.url})"]
        if a.text.strip():
            lines.append(f"  {clip(a.text.strip(), chars)}")
        blocks.append("\n".join(lines))
    return "### Attachments\n" + "\n".join(blocks)


def pinned_section(config: AppConfig, question: str) -> str:
    """The pinned article when the question mentions one of its keywords."""
    pinned = config.pinned
    if not pinned.body.strip() or not pinned.keywords:
        return ""
    text = normalize_for_match(question)
    if not any(k and normalize_for_match(k) in text for k in pinned.keywords):
        return ""
    return f"### {pinned.title or 'Pinned rules'}\n{pinned.body.strip()}"


def build_context(
    query: Query, retrieval: RetrievalResult, brief: ResearchBrief | None, pinned: str = ""
) -> str:
    sections = [
        render_attachments(query),
        retrieval.context_text,
        f"### Web research brief\n{brief.synthesized_text}" if brief else "",
        pinned,
    ]
    return "\n\n".join(s for s in sections if s)


class AnswerService:
    """Runs one question through the full pipeline under a single deadline."""

    def __init__(
        self,
        config: AppConfig,
        retrieval: RetrievalService,
        cascade: ModelCascadeExecutor,
        research: WebResearchPlanner | None = None,
        answer_store: AnswerStore | None = None,
        usage=None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._retrieval = retrieval
        self._cascade = cascade
        self._research = research
        self._answers = answer_store
        self._usage = usage
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    @property
    def generation_floor(self) -> float:
        """Seconds that must stay free for at least one generation attempt."""
        return self._config.budget.min_attempt_seconds + self._config.generation.persistence_reserve_seconds

    async def answer(
        self,
        query: Query,
        history: list[ConversationTurn] | tuple[ConversationTurn, ...] = (),
        budget: Budget | None = None,
    ) -> Answer:
        """Answer ``query``. Raises ``GenerationFailedError`` when no model produced text."""
        cfg = self._config
        budget = budget or Budget.from_config(cfg.budget, clock=self._clock)
        session_id = query.session_id or uuid.uuid4().hex
        turns = cap_history(list(history), cfg.generation.history_turns)
        skipped: list[str] = []

        retrieval = await self._retrieve(query, budget, skipped)
        brief = await self._maybe_research(query, retrieval, budget, skipped, session_id)

        prefer_premium = (
            query.intent == Intent.ORACLE or brief is not None or query.quality_tier == QualityTier.DEEP
        )
        request = CascadeRequest(
            instructions=build_instructions(query, used_research=brief is not None),
            question=query.raw_text,
            context=build_context(query, retrieval, brief, pinned_section(cfg, query.raw_text)),
            history=tuple(turns),
            candidates=tuple(build_candidates(cfg.generation, query.quality_tier, prefer_premium)),
            tier=query.quality_tier,
            used_research=brief is not None,
            initial_variant=PromptVariant.MINIMAL if "retrieval" in skipped else PromptVariant.FULL,
            session_id=session_id,
        )
        result = await self._cascade.run(request, budget)

        if not result.succeeded:
            provenance = build_provenance(retrieval, brief, result, skipped, budget.elapsed())
            logger.error(
                "Generation failed after %d attempts (%s): %s",
                result.attempt_count, result.failure_code, result.last_error,
            )
            raise GenerationFailedError(
                result.failure_code, result.last_error, result.attempt_count, provenance
            )

        answer = assemble_answer(retrieval, brief, result, skipped, budget.elapsed(), session_id)
        logger.info(
            "Answered with %s in %.1fs (%d attempts, web=%s)",
            answer.provenance.model_used, answer.provenance.elapsed_seconds,
            answer.provenance.attempts, answer.provenance.used_web_research,
        )
        self._persist(build_record(query, turns, answer))
        return answer

    async def _retrieve(self, query: Query, budget: Budget, skipped: list[str]) -> RetrievalResult:
        cfg = self._config
        if not budget.can_afford(cfg.budget.min_retrieval_seconds, reserve=self.generation_floor):
            logger.info("Skipping retrieval, %.1fs left", budget.remaining())
            skipped.append("retrieval")
            return RetrievalResult.empty(skipped=True)
        stage = budget.child(cfg.retrieval.max_seconds, reserve=self.generation_floor)
        try:
            return await self._retrieval.retrieve(query, stage)
        except Exception:
            logger.warning("Retrieval failed, answering without local knowledge", exc_info=True)
            return RetrievalResult.empty()

    async def _maybe_research(
        self,
        query: Query,
        retrieval: RetrievalResult,
        budget: Budget,
        skipped: list[str],
        session_id: str,
    ) -> ResearchBrief | None:
        if self._research is None:
            return None
        if retrieval.skipped:
            skipped.append("research")
            return None
        run, reason = self._research.should_research(query, retrieval.confidence, budget)
        if not run:
            if reason == "budget":
                logger.info("Skipping web research, %.1fs left", budget.remaining())
                skipped.append("research")
            return None
        logger.info("Running web research (%s)", reason)
        try:
            return await self._research.research(query, budget, session_id)
        except Exception:
            logger.warning("Web research failed, answering without it", exc_info=True)
            return None

    def _persist(self, record: AnswerRecord) -> None:
        if self._answers is None:
            return
        task = asyncio.create_task(self._insert(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _insert(self, record: AnswerRecord) -> None:
        try:
            await self._answers.insert(record)
        except Exception:
            logger.warning("Failed to store answer for session %s", record.session_id, exc_info=True)

    async def wait_for_persistence(self) -> None:
        """Wait for background answer and usage writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        if self._usage is not None:
            await self._usage.drain()
