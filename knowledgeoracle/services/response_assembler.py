"""Final answer packaging. Pure functions, no I/O."""

from __future__ import annotations

from knowledgeoracle.models.answer import Answer, AnswerRecord, Provenance
from knowledgeoracle.models.generation import CascadeResult
from knowledgeoracle.models.knowledge import RetrievalResult
from knowledgeoracle.models.query import Attachment, ConversationTurn, Query
from knowledgeoracle.models.research import ResearchBrief

TITLE_CHARS = 80
SUMMARY_CHARS = 220
TRANSCRIPT_CHARS = 40000
DEFAULT_TITLE = "Knowledge chat"
TRUNCATION_MARKER = "[answer cut off]"


def final_truncated(cascade: CascadeResult) -> bool:
    """True only when the answer was cut off and continuation did not finish it."""
    if not cascade.truncated:
        return False
    return not cascade.continued or cascade.continuation_truncated


def append_sources(
    text: str, brief: ResearchBrief | None, heading: str = "Sources", truncated: bool = False
) -> str:
    """Append brief URLs that the answer does not already cite.

    A cut-off answer gets a marker line so the list does not read as part of it.
    """
    if brief is None:
        return text
    missing = [url for url in brief.source_urls if url not in text]
    if not missing:
        return text
    lines = "\n".join(f"- {url}" for url in missing)
    body = text.rstrip()
    if truncated:
        body = f"{body}\n{TRUNCATION_MARKER}"
    return f"{body}\n\n{heading}:\n{lines}"


def build_provenance(
    retrieval: RetrievalResult,
    brief: ResearchBrief | None,
    cascade: CascadeResult,
    skipped_stages: list[str] | tuple[str, ...] = (),
    elapsed_seconds: float = 0.0,
) -> Provenance:
    history = [a.to_dict() for a in cascade.attempts]
    if cascade.continuation is not None:
        history.append({**cascade.continuation.to_dict(), "continuation": True})
    return Provenance(
        used_semantic=retrieval.used_semantic,
        used_keyword_sources=retrieval.keyword_source_count,
        catalogs=dict(retrieval.catalog_counts),
        confidence=retrieval.confidence,
        used_web_research=brief is not None,
        web_sources=tuple(brief.source_urls) if brief else (),
        research_queries=len(brief.queries) if brief else 0,
        truncated=final_truncated(cascade),
        continued=cascade.continued,
        model_used=cascade.model_used,
        attempts=cascade.attempt_count,
        attempt_history=tuple(history),
        skipped_stages=tuple(skipped_stages),
        elapsed_seconds=elapsed_seconds,
    )


def assemble_answer(
    retrieval: RetrievalResult,
    brief: ResearchBrief | None,
    cascade: CascadeResult,
    skipped_stages: list[str] | tuple[str, ...] = (),
    elapsed_seconds: float = 0.0,
    session_id: str = "",
) -> Answer:
    return Answer(
        text=append_sources(cascade.text, brief, truncated=final_truncated(cascade)),
        provenance=build_provenance(retrieval, brief, cascade, skipped_stages, elapsed_seconds),
        session_id=session_id,
    )


def _shorten(text: str, limit: int) -> str:
    text = str(text or "").strip()
    return text if len(text) <= limit else text[: limit - 3] + "..."


def build_chat_title(history: list[ConversationTurn], question: str) -> str:
    first = next((t.content for t in history if t.role == "user" and t.content.strip()), question)
    return _shorten(first, TITLE_CHARS) or DEFAULT_TITLE


def build_chat_summary(question: str, answer: str) -> str:
    return _shorten(answer or question, SUMMARY_CHARS)


def build_transcript(
    history: list[ConversationTurn],
    question: str,
    answer: str,
    attachments: tuple[Attachment, ...] = (),
) -> str:
    turns = [*history, ConversationTurn("user", question), ConversationTurn("assistant", answer)]
    parts = [
        f"{'Assistant' if t.role == 'assistant' else 'User'}:\n{t.content.strip()}"
        for t in turns
        if t.content and t.content.strip()
    ]
    urls = [a.url for a in attachments if a.url]
    if urls:
        parts.append("Attachments:\n" + "\n".join(urls))
    joined = "\n\n".join(parts).strip()
    return joined if len(joined) <= TRANSCRIPT_CHARS else joined[: TRANSCRIPT_CHARS - 100] + "..."


def build_record(query: Query, history: list[ConversationTurn], answer: Answer) -> AnswerRecord:
    """Persistable record for the answer log."""
    return AnswerRecord(
        session_id=answer.session_id,
        question=query.raw_text,
        answer=answer.text,
        title=build_chat_title(history, query.raw_text),
        summary=build_chat_summary(query.raw_text, answer.text),
        transcript=build_transcript(history, query.raw_text, answer.text, query.attachments),
        intent=query.intent.value,
        user_id=query.user_id,
        source_id=query.selected_source_id,
        provenance=answer.provenance.to_dict(),
    )
