"""Web research planner: plan sub-queries, search them, synthesize a brief.

Pattern: an LLM proposes sub-queries, each sub-query goes to web search,
and the findings are compiled into one brief. Every step is time-boxed
from the request budget and has a deterministic fallback, so research
either yields a brief or ``None`` and never fails the request.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re

from knowledgeoracle.budget import Budget
from knowledgeoracle.config import ResearchConfig
from knowledgeoracle.infra.providers.base import LLMProvider
from knowledgeoracle.infra.providers.errors import ProviderError
from knowledgeoracle.infra.search.base import WebSearchTool
from knowledgeoracle.models.provider import LLMConfig, LLMMessage
from knowledgeoracle.models.query import Query
from knowledgeoracle.models.research import (
    ResearchBrief,
    WebResearchFinding,
    WebResearchQuery,
    WebSource,
    dedupe_sources,
)
from knowledgeoracle.services.keywords import has_research_trigger, looks_incident_related
from knowledgeoracle.services.model_selection import supports_reasoning_effort

logger = logging.getLogger(__name__)

MIN_QUERIES = 2
MAX_QUERIES = 5
MAX_BRIEF_FACTS = 12

_STANDARD_RE = re.compile(r"\b(NR|IEC|IEEE|ABNT|NBR|ISO)\s*-?\s*(\d{1,5})\b", re.IGNORECASE)
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")

PLAN_INSTRUCTIONS = (
    "Propose {n} short web search queries (max 12 words each) that together "
    "answer the user's question. Return a JSON array of strings only."
)

SYNTH_INSTRUCTIONS = (
    "Write a compact research brief (5 to 8 bullets) answering the question. "
    "Use ONLY the facts and links supplied below; do not add knowledge of your own. "
    "Finish with a 'Sources' list containing the URLs you relied on."
)


def _strip_fences(text: str) -> str:
    text = text.strip()
    if "```" in text:
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


def parse_query_list(text: str, max_queries: int = 4) -> list[str]:
    """Sub-queries from a planner reply: a JSON array, ``{"queries": [...]}`` or bullet lines."""
    raw: list = []
    body = _strip_fences(text or "")
    try:
        parsed = json.loads(body)
        if isinstance(parsed, dict):
            parsed = parsed.get("queries", [])
        if isinstance(parsed, list):
            raw = parsed
        else:
            logger.warning("Plan response is not a list: %s", type(parsed).__name__)
    except json.JSONDecodeError:
        raw = [_BULLET_RE.sub("", line) for line in body.splitlines() if _BULLET_RE.match(line)]

    out: list[str] = []
    for item in raw:
        q = " ".join(str(item or "").split())[:200]
        if q and q.lower() not in {x.lower() for x in out}:
            out.append(q)
    return out[:max_queries]


def heuristic_queries(question: str, config: ResearchConfig) -> list[str]:
    """Deterministic expansion used when planning fails or is skipped."""
    base = " ".join(question.split())[:200]
    queries = []
    if config.domain_qualifier:
        queries.append(f"{base} {config.domain_qualifier}")
    queries.append(f"{base} official sources")
    for m in _STANDARD_RE.finditer(question):
        queries.append(f"{m.group(1).upper()} {m.group(2)} official text")
    if looks_incident_related(question):
        queries.append(f"{base} safety incident lessons learned")

    out: list[str] = []
    for q in queries:
        if q not in out:
            out.append(q)
    if len(out) < MIN_QUERIES:
        out.append(base)
    return out[: max(MIN_QUERIES, min(config.max_queries, MAX_QUERIES))]


def mechanical_brief(findings: list[WebResearchFinding], sources: tuple[WebSource, ...]) -> str:
    """Bullet list straight from the findings, used when synthesis is unavailable."""
    facts: list[str] = []
    for finding in findings:
        for fact in finding.key_facts:
            if fact and fact not in facts:
                facts.append(fact)
    lines = ["Web findings:"]
    lines.extend(f"- {f}" for f in facts[:MAX_BRIEF_FACTS])
    if not facts:
        lines.extend(f"- {s.title or s.url}" for s in sources)
    if sources:
        lines.append("")
        lines.append("Sources:")
        lines.extend(f"- {s.url}" for s in sources)
    return "\n".join(lines)


class WebResearchPlanner:
    """Bounded web research for one request."""

    def __init__(
        self,
        config: ResearchConfig,
        search_tools: list[WebSearchTool],
        planner: LLMProvider | None = None,
        synthesizer: LLMProvider | None = None,
        usage=None,
    ) -> None:
        self._config = config
        self._tools = list(search_tools)
        self._planner = planner
        self._synthesizer = synthesizer or planner
        self._usage = usage

    @property
    def available(self) -> bool:
        return bool(self._tools)

    def is_explicit(self, query: Query) -> bool:
        return query.use_web or has_research_trigger(query.raw_text, self._config.trigger_phrases)

    def should_research(self, query: Query, confidence: float, budget: Budget) -> tuple[bool, str]:
        """Activation rule. Returns (run, reason)."""
        cfg = self._config
        explicit = self.is_explicit(query)
        low_confidence = confidence < cfg.confidence_floor and query.intent.value in cfg.web_intents
        if not (explicit or low_confidence):
            return False, "not_needed"
        if not self._tools:
            return False, "no_search_tools"
        if not budget.can_afford(cfg.min_slice_seconds, reserve=cfg.generation_reserve_seconds):
            return False, "budget"
        return True, "explicit" if explicit else "low_confidence"

    async def research(self, query: Query, budget: Budget, session_id: str = "") -> ResearchBrief | None:
        """Plan, search and synthesize inside a stage budget that spares the generation reserve."""
        cfg = self._config
        stage = budget.child(cfg.max_seconds, reserve=cfg.generation_reserve_seconds)
        logger.info("Starting web research with %.1fs", stage.remaining())

        queries, planned = await self.plan(query.raw_text, stage, session_id)
        findings = await self.search(queries, stage)
        if not findings:
            logger.info("Web research found nothing usable for %d queries", len(queries))
            return None
        return await self.synthesize(query.raw_text, findings, queries, stage, planned, session_id)

    async def plan(self, question: str, budget: Budget, session_id: str = "") -> tuple[list[str], bool]:
        """Sub-queries for ``question`` and whether a model proposed them."""
        cfg = self._config
        timeout = budget.slice(cfg.plan_timeout)
        if self._planner and timeout > 0:
            n = min(cfg.max_queries, MAX_QUERIES)
            llm_config = LLMConfig(
                model=cfg.plan_model,
                max_tokens=200,
                temperature=None,
                reasoning_effort="minimal" if supports_reasoning_effort(cfg.plan_model) else None,
                timeout=timeout,
            )
            try:
                response = await asyncio.wait_for(
                    self._planner.complete(
                        [
                            LLMMessage(role="system", content=PLAN_INSTRUCTIONS.format(n=n)),
                            LLMMessage(role="user", content=question),
                        ],
                        llm_config,
                    ),
                    timeout=timeout,
                )
                if self._usage:
                    self._usage.record("planner", response, session_id)
                queries = parse_query_list(response.content, n)
                if len(queries) >= MIN_QUERIES:
                    return [WebResearchQuery(q).text for q in queries], True
                logger.warning("Planner proposed %d queries, using heuristic expansion", len(queries))
            except asyncio.TimeoutError:
                logger.warning("Research plan timed out after %.1fs", timeout)
            except ProviderError as e:
                logger.warning("Research plan failed (%s): %s", e.code, e)
            except Exception as e:
                # any planner failure falls back to heuristic expansion
                logger.warning("Research plan failed: %s", e)
        return heuristic_queries(question, cfg), False

    async def search(self, queries: list[str], budget: Budget) -> list[WebResearchFinding]:
        """Run sub-queries with bounded parallelism; order of results follows ``queries``."""
        cfg = self._config
        semaphore = asyncio.Semaphore(max(1, cfg.workers))

        async def run(q: str) -> WebResearchFinding | None:
            async with semaphore:
                if budget.remaining() < cfg.min_per_query_seconds:
                    logger.info("Skipping sub-query, %.1fs left: %s", budget.remaining(), q)
                    return None
                return await self._search_one(q, budget)

        results = await asyncio.gather(*(run(q) for q in queries))
        return [f for f in results if f is not None]

    async def _search_one(self, query: str, budget: Budget) -> WebResearchFinding | None:
        cfg = self._config
        for tool in self._tools:
            timeout = budget.slice(cfg.per_query_timeout)
            if timeout < cfg.min_per_query_seconds:
                logger.info("No time left for %s on: %s", tool.name, query)
                break
            try:
                payload = await asyncio.wait_for(tool.search(query, timeout=timeout), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("%s timed out after %.1fs", tool.name, timeout)
                continue
            except Exception as e:
                # Tools are interchangeable; any failure moves on to the next one.
                logger.warning("%s failed: %s", tool.name, e)
                continue
            sources = payload.usable_sources
            if sources:
                logger.debug("%s answered '%s' with %d sources", tool.name, query, len(sources))
                return WebResearchFinding(
                    query=query, key_facts=payload.facts, sources=sources, tool=tool.name
                )
        return None

    async def synthesize(
        self,
        question: str,
        findings: list[WebResearchFinding],
        queries: list[str],
        budget: Budget,
        planned: bool = False,
        session_id: str = "",
    ) -> ResearchBrief:
        """Model-written brief, or the mechanical bullet list when that is not possible."""
        cfg = self._config
        sources = dedupe_sources(findings)
        common = {
            "sources": sources,
            "findings": tuple(findings),
            "queries": tuple(queries),
            "planned_by_model": planned,
        }

        timeout = budget.slice(cfg.synth_timeout)
        if self._synthesizer and timeout >= cfg.synth_min_seconds:
            material = "\n\n".join(
                f"Query: {f.query}\n"
                + "\n".join(f"- {fact}" for fact in f.key_facts)
                + "\nLinks:\n"
                + "\n".join(f"- {s.title + ': ' if s.title else ''}{s.url}" for s in f.sources)
                for f in findings
            )
            try:
                response = await asyncio.wait_for(
                    self._synthesizer.complete(
                        [
                            LLMMessage(role="system", content=SYNTH_INSTRUCTIONS),
                            LLMMessage(role="user", content=f"Question: {question}\n\n{material}"),
                        ],
                        LLMConfig(
                            model=cfg.synth_model, max_tokens=450, temperature=None, timeout=timeout
                        ),
                    ),
                    timeout=timeout,
                )
                if self._usage:
                    self._usage.record("synthesis", response, session_id)
                text = response.content.strip()
                if text:
                    return ResearchBrief(synthesized_text=text, synthesized=True, **common)
                logger.warning("Synthesis returned empty text, using mechanical brief")
            except asyncio.TimeoutError:
                logger.warning("Synthesis timed out after %.1fs", timeout)
            except ProviderError as e:
                logger.warning("Synthesis failed (%s): %s", e.code, e)
            except Exception as e:
                logger.warning("Synthesis failed: %s", e)
        else:
            logger.info("Skipping synthesis, %.1fs left", timeout)

        return ResearchBrief(
            synthesized_text=mechanical_brief(findings, sources), synthesized=False, **common
        )
