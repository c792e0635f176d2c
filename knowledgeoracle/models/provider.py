"""LLM provider domain models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

from knowledgeoracle.models.research import WebSource

TRUNCATION_REASONS = frozenset({"length", "max_tokens", "max_output_tokens"})


class ProviderType(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OPENROUTER = "openrouter"


@dataclass(frozen=True)
class LLMMessage:
    """A single message in a conversation."""

    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class LLMConfig:
    """Configuration for an LLM completion request.

    ``reasoning_effort``, ``verbosity`` and ``temperature`` are optional
    parameters; adapters omit them when None.
    """

    model: str = ""
    max_tokens: int = 4096
    temperature: float | None = 0.7
    reasoning_effort: str | None = None
    verbosity: str | None = None
    tools: list[dict] | None = None
    timeout: float | None = None

    def without(self, parameter: str) -> LLMConfig:
        """Copy of this config with one optional parameter removed."""
        if parameter in ("reasoning", "reasoning_effort", "reasoning.effort"):
            return replace(self, reasoning_effort=None)
        if parameter in ("verbosity", "text.verbosity", "text"):
            return replace(self, verbosity=None)
        if parameter == "temperature":
            return replace(self, temperature=None)
        raise ValueError(f"Parameter is not optional: {parameter}")


@dataclass(frozen=True)
class LLMResponse:
    """Response from an LLM provider, normalized by its adapter."""

    content: str
    model: str = ""
    finish_reason: str = ""
    usage: dict = field(default_factory=dict)
    citations: tuple[WebSource, ...] = ()

    @property
    def truncated(self) -> bool:
        return self.finish_reason in TRUNCATION_REASONS

    @property
    def empty(self) -> bool:
        return not self.content.strip()
