"""Model cascade: ordered generation attempts under a shrinking deadline.

Provider calls and exceptions are reduced to an ``AttemptOutcome`` by
``_call``; ``dispatch`` is the only place that decides what happens
next. Attempts are strictly sequential.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum

from knowledgeoracle.budget import Budget
from knowledgeoracle.config import BudgetConfig, GenerationConfig
from knowledgeoracle.infra.providers.base import LLMProvider
from knowledgeoracle.infra.providers.errors import (
    ContextLengthError,
    FatalProviderError,
    ModelUnavailableError,
    ProviderError,
    UnsupportedParameterError,
)
from knowledgeoracle.models.generation import (
    AttemptOutcome,
    CascadeRequest,
    CascadeResult,
    GenerationAttempt,
    ModelCandidate,
    OutcomeKind,
    PromptVariant,
)
from knowledgeoracle.models.provider import LLMConfig, LLMMessage
from knowledgeoracle.services.keywords import clip
from knowledgeoracle.services.model_selection import TIER_PARAMETERS

logger = logging.getLogger(__name__)

ATTEMPTS_PER_CANDIDATE = 2
MAX_ATTEMPTS = 3
MAX_ATTEMPTS_WITH_RESEARCH = 2

CONTINUE_INSTRUCTION = (
    "Your previous answer was cut off. Continue exactly where it stopped, "
    "without repeating anything already written."
)

_NEXT_VARIANT = {
    PromptVariant.FULL: PromptVariant.MINIMAL,
    PromptVariant.MINIMAL: PromptVariant.TEXT_ONLY,
}


class Action(str, Enum):
    ACCEPT = "accept"
    ABORT = "abort"
    RESUBMIT = "resubmit"  # immediate, not counted as an attempt
    RETRY = "retry"
    NEXT_CANDIDATE = "next_candidate"


@dataclass
class CandidateState:
    """Mutable per-candidate settings, adjusted by ``dispatch``."""

    candidate: ModelCandidate
    llm_config: LLMConfig
    variant: PromptVariant
    max_tokens: int
    token_cap: int
    used_research: bool = False
    reduced_for_empty: bool = False
    dropped: list[str] = field(default_factory=list)


def _has_parameter(config: LLMConfig, parameter: str) -> bool:
    try:
        return config.without(parameter) != config
    except ValueError:
        return False


def dispatch(outcome: AttemptOutcome, state: CandidateState, can_retry: bool = True) -> Action:
    """Decide the next step for ``outcome`` and update ``state`` accordingly."""
    kind = outcome.kind

    if kind == OutcomeKind.SUCCESS:
        return Action.ACCEPT

    if kind == OutcomeKind.FATAL:
        return Action.ABORT

    if kind == OutcomeKind.TRUNCATED:
        if outcome.text and (state.max_tokens >= state.token_cap or not can_retry):
            return Action.ACCEPT
        if state.max_tokens < state.token_cap and can_retry:
            state.max_tokens = min(state.token_cap, state.max_tokens * 2)
            return Action.RETRY
        # Truncated with nothing usable at the cap behaves like an empty reply.
        kind = OutcomeKind.EMPTY

    if kind == OutcomeKind.EMPTY:
        if state.variant == PromptVariant.FULL and not state.reduced_for_empty:
            state.reduced_for_empty = True
            state.variant = PromptVariant.MINIMAL
            return Action.RETRY if can_retry else Action.NEXT_CANDIDATE
        return Action.NEXT_CANDIDATE

    # Transient
    if outcome.dropped_parameter:
        if _has_parameter(state.llm_config, outcome.dropped_parameter):
            state.llm_config = state.llm_config.without(outcome.dropped_parameter)
            state.dropped.append(outcome.dropped_parameter)
            return Action.RESUBMIT
        return Action.NEXT_CANDIDATE
    if outcome.reduce_prompt:
        if state.variant in _NEXT_VARIANT:
            state.variant = _NEXT_VARIANT[state.variant]
            return Action.RETRY if can_retry else Action.NEXT_CANDIDATE
        return Action.NEXT_CANDIDATE
    if not outcome.retry_same or state.used_research or not can_retry:
        return Action.NEXT_CANDIDATE
    return Action.RETRY


def build_messages(
    request: CascadeRequest, variant: PromptVariant, text_only_context_chars: int = 4000
) -> list[LLMMessage]:
    """Prompt for one variant.

    full: instructions, context, history and question. minimal: same system
    prompt, question only. text-only: context clipped hard, question only.
    """
    context = request.context
    if variant == PromptVariant.TEXT_ONLY:
        context = clip(context, text_only_context_chars)
    system = request.instructions + (f"\n\n{context}" if context else "")

    messages = [LLMMessage(role="system", content=system)]
    if variant == PromptVariant.FULL:
        messages.extend(LLMMessage(role=t.role, content=t.content) for t in request.history)
    messages.append(LLMMessage(role="user", content=request.question))
    return messages


class ModelCascadeExecutor:
    """Drives generation across an ordered candidate list.

    ``providers`` is anything with ``get(name) -> LLMProvider``, normally a
    ``ProviderRegistry``.
    """

    def __init__(
        self,
        config: GenerationConfig,
        providers,
        budget_config: BudgetConfig | None = None,
        usage=None,
    ) -> None:
        self._config = config
        self._providers = providers
        self._min_attempt = (budget_config or BudgetConfig()).min_attempt_seconds
        self._usage = usage

    def _initial_state(self, request: CascadeRequest, candidate: ModelCandidate) -> CandidateState:
        cfg = self._config
        effort, verbosity = TIER_PARAMETERS[request.tier]
        max_tokens = cfg.research_max_output_tokens if request.used_research else cfg.max_output_tokens
        max_tokens = min(max_tokens, cfg.token_cap)
        llm_config = LLMConfig(
            model=candidate.identifier,
            max_tokens=max_tokens,
            # reasoning models reject temperature
            temperature=None if candidate.supports_reasoning_effort else cfg.temperature,
            reasoning_effort=effort if candidate.supports_reasoning_effort else None,
            verbosity=verbosity if candidate.supports_structured_verbosity else None,
        )
        return CandidateState(
            candidate=candidate,
            llm_config=llm_config,
            variant=request.initial_variant,
            max_tokens=max_tokens,
            token_cap=cfg.token_cap,
            used_research=request.used_research,
        )

    def _attempt_timeout(self, budget: Budget) -> float:
        return budget.slice(self._config.attempt_timeout, reserve=self._config.persistence_reserve_seconds)

    async def run(self, request: CascadeRequest, budget: Budget) -> CascadeResult:
        max_attempts = MAX_ATTEMPTS_WITH_RESEARCH if request.used_research else MAX_ATTEMPTS
        history: list[GenerationAttempt] = []
        last: AttemptOutcome | None = None
        accepted: tuple[CandidateState, AttemptOutcome] | None = None
        aborted = False

        for candidate in request.candidates:
            if len(history) >= max_attempts or aborted or accepted:
                break
            state = self._initial_state(request, candidate)
            tried = 0
            dropped_before = 0
            while tried < ATTEMPTS_PER_CANDIDATE and len(history) < max_attempts:
                timeout = self._attempt_timeout(budget)
                if timeout < self._min_attempt:
                    logger.info("Generation budget exhausted (%.1fs left)", budget.remaining())
                    aborted = True
                    break

                variant, max_tokens = state.variant, state.max_tokens
                started = time.monotonic()
                outcome = await self._submit(state, request, timeout)
                can_retry = tried + 1 < ATTEMPTS_PER_CANDIDATE and len(history) + 1 < max_attempts
                action = dispatch(outcome, state, can_retry)
                if action == Action.RESUBMIT:
                    logger.info(
                        "%s rejected %s, resubmitting without it",
                        candidate.key, outcome.dropped_parameter,
                    )
                    continue

                tried += 1
                last = outcome
                history.append(GenerationAttempt(
                    candidate=candidate.key,
                    prompt_variant=variant,
                    max_output_tokens=max_tokens,
                    outcome=outcome.kind,
                    error=outcome.error,
                    duration_seconds=time.monotonic() - started,
                    timeout_seconds=timeout,
                    dropped_parameters=tuple(state.dropped[dropped_before:]),
                ))
                dropped_before = len(state.dropped)

                if action == Action.ACCEPT:
                    accepted = (state, outcome)
                    break
                if action == Action.ABORT:
                    logger.error("Fatal provider failure on %s (%s): %s", candidate.key, outcome.code, outcome.error)
                    aborted = True
                    break
                if action == Action.NEXT_CANDIDATE:
                    logger.warning("Moving past %s after %s: %s", candidate.key, outcome.kind.value, outcome.error)
                    break
                logger.warning("Retrying %s after %s", candidate.key, outcome.kind.value)

        if not accepted:
            return CascadeResult(
                text="",
                attempts=tuple(history),
                failure_code=(last.code or last.kind.value) if last else "budget_exhausted",
                last_error=last.error if last else "No generation attempt fit in the remaining time",
            )

        state, outcome = accepted
        text = outcome.text.strip() if outcome.kind == OutcomeKind.SUCCESS else outcome.text
        truncated = outcome.kind == OutcomeKind.TRUNCATED
        result = CascadeResult(
            text=text,
            model_used=outcome.model or state.candidate.identifier,
            attempts=tuple(history),
            truncated=truncated,
        )
        if truncated:
            result = await self._continue(result, state, request, budget)
        return result

    async def _continue(
        self, result: CascadeResult, state: CandidateState, request: CascadeRequest, budget: Budget
    ) -> CascadeResult:
        """One follow-up request asking the model to carry on verbatim."""
        cfg = self._config
        if budget.remaining() - cfg.persistence_reserve_seconds < cfg.continuation_min_seconds:
            logger.info("Skipping continuation, %.1fs left", budget.remaining())
            return result

        timeout = self._attempt_timeout(budget)
        messages = build_messages(request, PromptVariant.MINIMAL, cfg.text_only_context_chars)
        messages.append(LLMMessage(role="assistant", content=result.text))
        messages.append(LLMMessage(role="user", content=CONTINUE_INSTRUCTION))

        started = time.monotonic()
        outcome = await self._call(
            state, messages, timeout, source="continuation", session_id=request.session_id
        )
        record = GenerationAttempt(
            candidate=state.candidate.key,
            prompt_variant=PromptVariant.MINIMAL,
            max_output_tokens=state.max_tokens,
            outcome=outcome.kind,
            error=outcome.error,
            duration_seconds=time.monotonic() - started,
            timeout_seconds=timeout,
        )
        if outcome.kind not in (OutcomeKind.SUCCESS, OutcomeKind.TRUNCATED) or not outcome.text:
            logger.warning("Continuation failed: %s", outcome.error or outcome.kind.value)
            return replace(result, continuation=record)
        return replace(
            result,
            text=result.text + outcome.text,
            continued=True,
            continuation_truncated=outcome.kind == OutcomeKind.TRUNCATED,
            continuation=record,
        )

    async def _submit(self, state: CandidateState, request: CascadeRequest, timeout: float) -> AttemptOutcome:
        messages = build_messages(request, state.variant, self._config.text_only_context_chars)
        return await self._call(state, messages, timeout, session_id=request.session_id)

    async def _call(
        self,
        state: CandidateState,
        messages: list[LLMMessage],
        timeout: float,
        source: str = "generation",
        session_id: str = "",
    ) -> AttemptOutcome:
        """One provider call, reduced to an ``AttemptOutcome``."""
        candidate = state.candidate
        llm_config = replace(state.llm_config, max_tokens=state.max_tokens, timeout=timeout)
        try:
            provider: LLMProvider = self._providers.get(candidate.provider)
            response = await asyncio.wait_for(provider.complete(messages, llm_config), timeout=timeout)
        except asyncio.TimeoutError:
            return AttemptOutcome(OutcomeKind.TRANSIENT, error=f"Timed out after {timeout:.1f}s", code="timeout")
        except FatalProviderError as e:
            return AttemptOutcome(OutcomeKind.FATAL, error=e.message, code=e.code)
        except UnsupportedParameterError as e:
            return AttemptOutcome(
                OutcomeKind.TRANSIENT, error=e.message, code=e.code,
                dropped_parameter=e.parameter or "", retry_same=False,
            )
        except ContextLengthError as e:
            return AttemptOutcome(OutcomeKind.TRANSIENT, error=e.message, code=e.code, reduce_prompt=True)
        except ModelUnavailableError as e:
            return AttemptOutcome(OutcomeKind.TRANSIENT, error=e.message, code=e.code, retry_same=False)
        except ProviderError as e:
            return AttemptOutcome(OutcomeKind.TRANSIENT, error=e.message, code=e.code)
        except ValueError as e:
            # unknown provider name, or a body that is not JSON
            return AttemptOutcome(OutcomeKind.TRANSIENT, error=str(e), code="model", retry_same=False)

        if self._usage:
            self._usage.record(source, response, session_id)

        model = response.model or candidate.identifier
        if response.truncated:
            return AttemptOutcome(
                OutcomeKind.TRUNCATED, text=response.content, model=model, usage=dict(response.usage),
                error="Output truncated by length limit",
            )
        if response.empty:
            return AttemptOutcome(
                OutcomeKind.EMPTY, model=model, usage=dict(response.usage), error="Empty response",
                code="empty",
            )
        return AttemptOutcome(OutcomeKind.SUCCESS, text=response.content, model=model, usage=dict(response.usage))
