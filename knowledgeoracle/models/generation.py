"""Generation cascade domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from knowledgeoracle.models.query import ConversationTurn, QualityTier


class PromptVariant(str, Enum):
    FULL = "full"
    MINIMAL = "minimal"
    TEXT_ONLY = "text-only"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    TRUNCATED = "truncated"
    TRANSIENT = "transient_error"
    FATAL = "fatal_error"


@dataclass(frozen=True)
class ModelCandidate:
    """One generation backend configuration in the preference-ordered list."""

    identifier: str
    provider: str = "openai"
    supports_reasoning_effort: bool = False
    supports_structured_verbosity: bool = False

    def __post_init__(self) -> None:
        if not self.identifier:
            raise ValueError("ModelCandidate identifier cannot be empty")

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.identifier}"


@dataclass(frozen=True)
class AttemptOutcome:
    """Classified result of one generation attempt.

    ``retry_same`` is False for transient failures that should move straight
    to the next candidate (missing model, exhausted prompt reductions).
    ``dropped_parameter`` and ``reduce_prompt`` request an immediate re-submit.
    """

    kind: OutcomeKind
    text: str = ""
    error: str = ""
    code: str = ""
    model: str = ""
    usage: dict = field(default_factory=dict)
    retry_same: bool = True
    dropped_parameter: str = ""
    reduce_prompt: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.kind in (OutcomeKind.SUCCESS, OutcomeKind.FATAL)


@dataclass(frozen=True)
class GenerationAttempt:
    """One submitted request and how it ended."""

    candidate: str
    prompt_variant: PromptVariant
    max_output_tokens: int
    outcome: OutcomeKind
    error: str = ""
    duration_seconds: float = 0.0
    timeout_seconds: float = 0.0
    dropped_parameters: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        d: dict = {
            "candidate": self.candidate,
            "prompt_variant": self.prompt_variant.value,
            "max_output_tokens": self.max_output_tokens,
            "outcome": self.outcome.value,
            "duration_seconds": round(self.duration_seconds, 3),
            "timeout_seconds": round(self.timeout_seconds, 3),
        }
        if self.error:
            d["error"] = self.error
        if self.dropped_parameters:
            d["dropped_parameters"] = list(self.dropped_parameters)
        return d


@dataclass(frozen=True)
class CascadeResult:
    """Final state of a cascade run."""

    text: str
    model_used: str = ""
    attempts: tuple[GenerationAttempt, ...] = ()
    truncated: bool = False
    continued: bool = False
    continuation_truncated: bool = False
    continuation: GenerationAttempt | None = None
    failure_code: str = ""
    last_error: str = ""

    @property
    def succeeded(self) -> bool:
        return bool(self.text)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)


@dataclass(frozen=True)
class CascadeRequest:
    """Everything the cascade needs to build prompts for one request.

    ``instructions`` is the system prompt without knowledge; ``context`` is
    the rendered knowledge and research material appended to it.
    """

    instructions: str
    question: str
    context: str = ""
    history: tuple[ConversationTurn, ...] = ()
    candidates: tuple[ModelCandidate, ...] = ()
    tier: QualityTier = QualityTier.BALANCED
    used_research: bool = False
    initial_variant: PromptVariant = PromptVariant.FULL
    session_id: str = ""

    def __post_init__(self) -> None:
        if not self.question or not self.question.strip():
            raise ValueError("CascadeRequest question cannot be empty")
