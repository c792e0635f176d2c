"""Answer, provenance and persisted answer record models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class Provenance:
    """Machine-readable description of what produced an answer."""

    used_semantic: bool = False
    used_keyword_sources: int = 0
    catalogs: dict[str, int] = field(default_factory=dict)
    confidence: float = 0.0
    used_web_research: bool = False
    web_sources: tuple[str, ...] = ()
    research_queries: int = 0
    truncated: bool = False
    continued: bool = False
    model_used: str = ""
    attempts: int = 0
    attempt_history: tuple[dict, ...] = ()
    skipped_stages: tuple[str, ...] = ()
    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "used_semantic": self.used_semantic,
            "used_keyword_sources": self.used_keyword_sources,
            "catalogs": dict(self.catalogs),
            "confidence": self.confidence,
            "used_web_research": self.used_web_research,
            "web_sources": list(self.web_sources),
            "research_queries": self.research_queries,
            "truncated": self.truncated,
            "continued": self.continued,
            "model_used": self.model_used,
            "attempts": self.attempts,
            "attempt_history": [dict(a) for a in self.attempt_history],
            "skipped_stages": list(self.skipped_stages),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass(frozen=True)
class Answer:
    """Final answer text plus provenance."""

    text: str
    provenance: Provenance = field(default_factory=Provenance)
    session_id: str = ""

    def __post_init__(self) -> None:
        if not self.text:
            raise ValueError("Answer text cannot be empty")

    def to_dict(self) -> dict:
        return {
            "answer_text": self.text,
            "session_id": self.session_id,
            "provenance": self.provenance.to_dict(),
        }


@dataclass(frozen=True)
class AnswerRecord:
    """Answer as handed to the persistence collaborator."""

    session_id: str
    question: str
    answer: str
    title: str
    summary: str
    transcript: str
    intent: str
    user_id: str = ""
    source_id: str = ""
    provenance: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str | None = None

    def to_doc(self) -> dict:
        doc: dict = {
            "session_id": self.session_id,
            "question": self.question,
            "answer": self.answer,
            "title": self.title,
            "summary": self.summary,
            "transcript": self.transcript,
            "intent": self.intent,
            "user_id": self.user_id,
            "source_id": self.source_id,
            "provenance": self.provenance,
            "created_at": self.created_at,
        }
        if self.id:
            doc["_id"] = self.id
        return doc

    @classmethod
    def from_doc(cls, doc: dict) -> AnswerRecord:
        return cls(
            id=str(doc["_id"]),
            session_id=doc["session_id"],
            question=doc.get("question", ""),
            answer=doc.get("answer", ""),
            title=doc.get("title", ""),
            summary=doc.get("summary", ""),
            transcript=doc.get("transcript", ""),
            intent=doc.get("intent", ""),
            user_id=doc.get("user_id", ""),
            source_id=doc.get("source_id", ""),
            provenance=doc.get("provenance", {}),
            created_at=doc.get("created_at", datetime.now(timezone.utc)),
        )
