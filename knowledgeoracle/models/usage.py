"""Usage event domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class UsageEvent:
    """Token usage of one model call made while answering a question."""

    source: str  # "planner", "search", "synthesis", "generation", "continuation"
    model: str
    input_tokens: int
    output_tokens: int
    session_id: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str | None = None

    def to_doc(self) -> dict:
        """Serialize to MongoDB document."""
        doc: dict = {
            "source": self.source,
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
        }
        if self.id:
            doc["_id"] = self.id
        return doc

    @classmethod
    def from_doc(cls, doc: dict) -> UsageEvent:
        """Deserialize from MongoDB document."""
        return cls(
            id=str(doc["_id"]),
            source=doc["source"],
            model=doc.get("model", ""),
            input_tokens=doc.get("input_tokens", 0),
            output_tokens=doc.get("output_tokens", 0),
            session_id=doc.get("session_id", ""),
            timestamp=doc.get("timestamp", datetime.now(timezone.utc)),
        )

    @classmethod
    def from_response(cls, source: str, response, session_id: str = "") -> UsageEvent:
        return cls(
            source=source,
            model=response.model,
            input_tokens=response.usage.get("input_tokens", 0),
            output_tokens=response.usage.get("output_tokens", 0),
            session_id=session_id,
        )
