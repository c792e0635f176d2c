"""Query domain models."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum

MAX_TAGS = 24
MAX_ATTACHMENTS = 5
MAX_FOCUS_CHARS = 140


class Intent(str, Enum):
    STUDY = "study"
    ORACLE = "oracle"
    OPEN_CHAT = "open_chat"


class QualityTier(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    DEEP = "deep"


def normalize_tag(raw: str) -> str:
    """Normalize a topic tag: drop leading '#', ASCII-fold, lowercase.

    Returns an empty string for tags shorter than 3 or longer than 50 chars.
    """
    base = str(raw or "").strip().lstrip("#")
    if not base:
        return ""
    ascii_only = unicodedata.normalize("NFD", base).encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^a-zA-Z0-9_.-]+", "_", ascii_only).strip("_").lower()
    if len(cleaned) < 3 or len(cleaned) > 50:
        return ""
    return cleaned


def normalize_tags(raw_tags) -> tuple[str, ...]:
    if isinstance(raw_tags, str):
        raw_tags = raw_tags.split(",")
    out: list[str] = []
    for raw in raw_tags or ():
        tag = normalize_tag(raw)
        if tag and tag not in out:
            out.append(tag)
    return tuple(out[:MAX_TAGS])


@dataclass(frozen=True)
class Attachment:
    """An attachment reference whose text was already extracted upstream."""

    url: str
    name: str = ""
    text: str = ""

    def __post_init__(self) -> None:
        if not self.url:
            raise ValueError("Attachment url cannot be empty")


def unique_attachments(items: list[Attachment]) -> tuple[Attachment, ...]:
    seen: set[str] = set()
    out: list[Attachment] = []
    for item in items:
        url = item.url.strip()
        if not url or url in seen:
            continue
        seen.add(url)
        out.append(item)
    return tuple(out[:MAX_ATTACHMENTS])


@dataclass(frozen=True)
class Query:
    """An incoming question. Immutable once received."""

    raw_text: str
    language: str = "pt-BR"
    intent: Intent = Intent.STUDY
    quality_tier: QualityTier = QualityTier.BALANCED
    selected_source_id: str = ""
    attachments: tuple[Attachment, ...] = ()
    topic_tags: tuple[str, ...] = ()
    focus: str = ""
    use_web: bool = False
    user_id: str = ""
    session_id: str = ""

    def __post_init__(self) -> None:
        if not self.raw_text or not self.raw_text.strip():
            raise ValueError("Query text cannot be empty")
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "intent", Intent(self.intent))
        object.__setattr__(self, "quality_tier", QualityTier(self.quality_tier))
        object.__setattr__(self, "topic_tags", normalize_tags(self.topic_tags))
        object.__setattr__(self, "attachments", unique_attachments(list(self.attachments)))
        object.__setattr__(self, "focus", self.focus.strip()[:MAX_FOCUS_CHARS])


@dataclass(frozen=True)
class ConversationTurn:
    """One prior message in the conversation."""

    role: str  # "user" or "assistant"
    content: str

    def __post_init__(self) -> None:
        if self.role not in ("user", "assistant"):
            object.__setattr__(self, "role", "user")


def cap_history(history: list[ConversationTurn], turns: int) -> list[ConversationTurn]:
    """Keep the last ``turns`` non-empty turns."""
    kept = [t for t in history if t.content and t.content.strip()]
    if turns <= 0:
        return []
    return kept[-turns:]


@dataclass(frozen=True)
class CatalogScope:
    """Visibility filter passed to catalog lookups."""

    user_id: str = ""
    tags: tuple[str, ...] = field(default_factory=tuple)
    limit: int = 80
