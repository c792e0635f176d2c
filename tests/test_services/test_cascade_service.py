"""Tests for the model cascade."""

import asyncio

import pytest

from knowledgeoracle.budget import Budget
from knowledgeoracle.config import BudgetConfig, GenerationConfig
from knowledgeoracle.infra.providers.errors import (
    ContextLengthError,
    FatalProviderError,
    ModelUnavailableError,
    TransientProviderError,
    UnsupportedParameterError,
)
from knowledgeoracle.models.generation import (
    AttemptOutcome,
    CascadeRequest,
    ModelCandidate,
    OutcomeKind,
    PromptVariant,
)
from knowledgeoracle.models.provider import LLMConfig, LLMResponse
from knowledgeoracle.models.query import ConversationTurn, QualityTier
from knowledgeoracle.services.cascade_service import (
    CONTINUE_INSTRUCTION,
    Action,
    CandidateState,
    ModelCascadeExecutor,
    build_messages,
    dispatch,
)
from knowledgeoracle.services.model_selection import parse_candidate


class ScriptedProvider:
    """Returns (or raises) queued results per model, recording every call."""

    def __init__(self, script: dict) -> None:
        self.script = {model: list(items) for model, items in script.items()}
        self.calls: list[tuple[str, LLMConfig, list]] = []

    async def complete(self, messages, config):
        self.calls.append((config.model, config, messages))
        item = self.script[config.model].pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return await item()
        return item

    @property
    def models_called(self) -> list[str]:
        return [c[0] for c in self.calls]


class Registry:
    def __init__(self, provider) -> None:
        self.provider = provider

    def get(self, name: str):
        return self.provider


class RecordingUsage:
    def __init__(self) -> None:
        self.sources: list[str] = []

    def record(self, source, response, session_id=""):
        self.sources.append(source)


def ok(text: str, model: str = "") -> LLMResponse:
    return LLMResponse(content=text, model=model, finish_reason="stop")


def cut(text: str) -> LLMResponse:
    return LLMResponse(content=text, finish_reason="max_output_tokens")


CANDIDATES = tuple(parse_candidate(m) for m in ("gpt-5-nano", "gpt-5-mini", "gpt-5"))


def _request(**kwargs) -> CascadeRequest:
    defaults = dict(
        instructions="You are helpful.",
        question="What is SPDA?",
        context="### Study catalog\n- SPDA manual",
        history=(ConversationTurn("user", "hi"), ConversationTurn("assistant", "hello")),
        candidates=CANDIDATES,
    )
    defaults.update(kwargs)
    return CascadeRequest(**defaults)


def _executor(provider, config=None, usage=None, budget_config=None) -> ModelCascadeExecutor:
    return ModelCascadeExecutor(
        config or GenerationConfig(), Registry(provider), budget_config=budget_config, usage=usage
    )


class TestBuildMessages:
    def test_full_includes_history(self):
        messages = build_messages(_request(), PromptVariant.FULL)
        assert [m.role for m in messages] == ["system", "user", "assistant", "user"]
        assert "SPDA manual" in messages[0].content

    def test_minimal_drops_history(self):
        messages = build_messages(_request(), PromptVariant.MINIMAL)
        assert [m.role for m in messages] == ["system", "user"]
        assert "SPDA manual" in messages[0].content

    def test_text_only_clips_context(self):
        request = _request(context="x" * 10_000)
        messages = build_messages(request, PromptVariant.TEXT_ONLY, text_only_context_chars=100)
        assert len(messages[0].content) <= len(request.instructions) + 2 + 100


class TestDispatch:
    def _state(self, **kwargs) -> CandidateState:
        defaults = dict(
            candidate=ModelCandidate("gpt-5"),
            llm_config=LLMConfig(model="gpt-5", temperature=None, reasoning_effort="low"),
            variant=PromptVariant.FULL,
            max_tokens=320,
            token_cap=1280,
        )
        defaults.update(kwargs)
        return CandidateState(**defaults)

    def test_success_and_fatal(self):
        assert dispatch(AttemptOutcome(OutcomeKind.SUCCESS, text="x"), self._state()) == Action.ACCEPT
        assert dispatch(AttemptOutcome(OutcomeKind.FATAL), self._state()) == Action.ABORT

    def test_truncated_doubles_tokens(self):
        state = self._state()
        assert dispatch(AttemptOutcome(OutcomeKind.TRUNCATED, text="part"), state) == Action.RETRY
        assert state.max_tokens == 640

    def test_truncated_at_cap_accepted(self):
        state = self._state(max_tokens=1280)
        assert dispatch(AttemptOutcome(OutcomeKind.TRUNCATED, text="part"), state) == Action.ACCEPT

    def test_truncated_accepted_when_no_retry_left(self):
        state = self._state()
        action = dispatch(AttemptOutcome(OutcomeKind.TRUNCATED, text="part"), state, can_retry=False)
        assert action == Action.ACCEPT

    def test_empty_switches_to_minimal_once(self):
        state = self._state()
        assert dispatch(AttemptOutcome(OutcomeKind.EMPTY), state) == Action.RETRY
        assert state.variant == PromptVariant.MINIMAL
        assert dispatch(AttemptOutcome(OutcomeKind.EMPTY), state) == Action.NEXT_CANDIDATE

    def test_dropped_parameter_resubmits(self):
        state = self._state()
        outcome = AttemptOutcome(OutcomeKind.TRANSIENT, dropped_parameter="reasoning", retry_same=False)
        assert dispatch(outcome, state) == Action.RESUBMIT
        assert state.llm_config.reasoning_effort is None
        assert state.dropped == ["reasoning"]
        # already gone: nothing left to drop
        assert dispatch(outcome, state) == Action.NEXT_CANDIDATE

    def test_reduce_prompt_steps_down(self):
        state = self._state()
        outcome = AttemptOutcome(OutcomeKind.TRANSIENT, reduce_prompt=True)
        assert dispatch(outcome, state) == Action.RETRY
        assert state.variant == PromptVariant.MINIMAL
        assert dispatch(outcome, state) == Action.RETRY
        assert state.variant == PromptVariant.TEXT_ONLY
        assert dispatch(outcome, state) == Action.NEXT_CANDIDATE

    def test_transient_retry_rules(self):
        outcome = AttemptOutcome(OutcomeKind.TRANSIENT, error="502")
        assert dispatch(outcome, self._state()) == Action.RETRY
        assert dispatch(outcome, self._state(used_research=True)) == Action.NEXT_CANDIDATE
        assert dispatch(outcome, self._state(), can_retry=False) == Action.NEXT_CANDIDATE
        no_retry = AttemptOutcome(OutcomeKind.TRANSIENT, retry_same=False)
        assert dispatch(no_retry, self._state()) == Action.NEXT_CANDIDATE


class TestCascade:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self, clock):
        provider = ScriptedProvider({"gpt-5-nano": [ok("  SPDA protects structures. ", "gpt-5-nano-2025")]})
        usage = RecordingUsage()
        result = await _executor(provider, usage=usage).run(
            _request(tier=QualityTier.FAST, session_id="s1"), Budget.from_limit(57, clock=clock)
        )

        assert result.succeeded
        assert result.text == "SPDA protects structures."
        assert result.model_used == "gpt-5-nano-2025"
        assert result.attempt_count == 1
        assert not result.truncated
        _, config, _ = provider.calls[0]
        assert config.temperature is None
        assert config.reasoning_effort == "minimal"
        assert config.verbosity == "low"
        assert config.max_tokens == 320
        assert usage.sources == ["generation"]

    @pytest.mark.asyncio
    async def test_non_reasoning_model_gets_temperature(self, clock):
        provider = ScriptedProvider({"gpt-4.1-mini": [ok("fine")]})
        result = await _executor(provider).run(
            _request(candidates=(parse_candidate("gpt-4.1-mini"),)), Budget.from_limit(57, clock=clock)
        )
        assert result.succeeded
        _, config, _ = provider.calls[0]
        assert config.temperature == 0.2
        assert config.reasoning_effort is None

    @pytest.mark.asyncio
    async def test_fatal_halts_cascade(self, clock):
        provider = ScriptedProvider({
            "gpt-5-nano": [FatalProviderError("Rate limit reached", code="rate_limited")],
            "gpt-5-mini": [FatalProviderError("Rate limit reached", code="rate_limited")],
            "gpt-5": [ok("never")],
        })
        result = await _executor(provider).run(_request(), Budget.from_limit(57, clock=clock))

        assert not result.succeeded
        assert provider.models_called == ["gpt-5-nano"]
        assert result.attempt_count == 1
        assert result.failure_code == "rate_limited"
        assert result.last_error == "Rate limit reached"

    @pytest.mark.asyncio
    async def test_truncation_escalates_then_continues_once(self, clock):
        provider = ScriptedProvider({"gpt-5-nano": [cut("Part one"), cut("Part one, longer"), ok(" and the end.")]})
        usage = RecordingUsage()
        config = GenerationConfig(max_output_tokens=320, token_cap=640)
        result = await _executor(provider, config, usage=usage).run(_request(), Budget.from_limit(57, clock=clock))

        assert result.attempt_count == 2
        assert [a.max_output_tokens for a in result.attempts] == [320, 640]
        assert result.truncated
        assert result.continued
        assert not result.continuation_truncated
        assert result.text == "Part one, longer and the end."
        assert len(provider.calls) == 3
        continuation_messages = provider.calls[2][2]
        assert continuation_messages[-2].role == "assistant"
        assert continuation_messages[-2].content == "Part one, longer"
        assert continuation_messages[-1].content == CONTINUE_INSTRUCTION
        assert usage.sources == ["generation", "generation", "continuation"]

    @pytest.mark.asyncio
    async def test_truncated_accepted_without_retry_room(self, clock):
        provider = ScriptedProvider({"gpt-5-nano": [cut("a"), cut("ab"), ok("c")]})
        result = await _executor(provider).run(_request(), Budget.from_limit(57, clock=clock))
        # 320 -> 640 uses both attempts for the candidate; the second cut answer is kept
        assert result.attempt_count == 2
        assert result.text == "abc"
        assert result.continued

    @pytest.mark.asyncio
    async def test_continuation_skipped_when_budget_short(self, clock):
        provider = ScriptedProvider({"gpt-5-nano": [cut("a"), cut("ab")]})
        config = GenerationConfig(token_cap=640)
        result = await _executor(provider, config).run(_request(), Budget.from_limit(5.0, clock=clock))
        assert result.truncated
        assert not result.continued
        assert result.continuation is None
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_unsupported_parameter_retried_without_counting(self, clock):
        provider = ScriptedProvider({"gpt-5-nano": [
            UnsupportedParameterError("Unsupported parameter: 'reasoning.effort'", parameter="reasoning.effort"),
            ok("done"),
        ]})
        result = await _executor(provider).run(_request(), Budget.from_limit(57, clock=clock))

        assert result.text == "done"
        assert result.attempt_count == 1
        assert result.attempts[0].dropped_parameters == ("reasoning.effort",)
        assert provider.calls[0][1].reasoning_effort == "low"
        assert provider.calls[1][1].reasoning_effort is None

    @pytest.mark.asyncio
    async def test_context_length_reduces_prompt(self, clock):
        provider = ScriptedProvider({"gpt-5-nano": [ContextLengthError("too long"), ok("short answer")]})
        result = await _executor(provider).run(_request(), Budget.from_limit(57, clock=clock))
        assert result.text == "short answer"
        assert [a.prompt_variant for a in result.attempts] == [PromptVariant.FULL, PromptVariant.MINIMAL]
        assert [m.role for m in provider.calls[1][2]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_empty_output_retries_minimal(self, clock):
        provider = ScriptedProvider({"gpt-5-nano": [ok("   "), ok("now with text")]})
        result = await _executor(provider).run(_request(), Budget.from_limit(57, clock=clock))
        assert result.text == "now with text"
        assert result.attempts[0].outcome == OutcomeKind.EMPTY
        assert result.attempts[1].prompt_variant == PromptVariant.MINIMAL

    @pytest.mark.asyncio
    async def test_model_unavailable_skips_candidate(self, clock):
        provider = ScriptedProvider({
            "gpt-5-nano": [ModelUnavailableError("model not found")],
            "gpt-5-mini": [ok("from mini")],
        })
        result = await _executor(provider).run(_request(), Budget.from_limit(57, clock=clock))
        assert provider.models_called == ["gpt-5-nano", "gpt-5-mini"]
        assert result.model_used == "gpt-5-mini"

    @pytest.mark.asyncio
    async def test_transient_retries_same_candidate(self, clock):
        provider = ScriptedProvider({"gpt-5-nano": [TransientProviderError("502"), ok("second time")]})
        result = await _executor(provider).run(_request(), Budget.from_limit(57, clock=clock))
        assert provider.models_called == ["gpt-5-nano", "gpt-5-nano"]
        assert result.text == "second time"

    @pytest.mark.asyncio
    async def test_transient_with_research_moves_on(self, clock):
        provider = ScriptedProvider({
            "gpt-5-nano": [TransientProviderError("502")],
            "gpt-5-mini": [ok("mini answer")],
        })
        result = await _executor(provider).run(_request(used_research=True), Budget.from_limit(57, clock=clock))
        assert provider.models_called == ["gpt-5-nano", "gpt-5-mini"]
        assert result.succeeded
        assert provider.calls[0][1].max_tokens == 520

    @pytest.mark.asyncio
    async def test_attempt_cap_without_research(self, clock):
        provider = ScriptedProvider({
            "gpt-5-nano": [TransientProviderError("a"), TransientProviderError("b")],
            "gpt-5-mini": [TransientProviderError("c"), TransientProviderError("d")],
            "gpt-5": [ok("never")],
        })
        result = await _executor(provider).run(_request(), Budget.from_limit(57, clock=clock))
        assert result.attempt_count == 3
        assert provider.models_called == ["gpt-5-nano", "gpt-5-nano", "gpt-5-mini"]
        assert not result.succeeded
        assert result.last_error == "c"

    @pytest.mark.asyncio
    async def test_attempt_cap_with_research(self, clock):
        provider = ScriptedProvider({
            "gpt-5-nano": [TransientProviderError("a")],
            "gpt-5-mini": [TransientProviderError("b")],
            "gpt-5": [ok("never")],
        })
        result = await _executor(provider).run(_request(used_research=True), Budget.from_limit(57, clock=clock))
        assert result.attempt_count == 2
        assert "gpt-5" not in provider.models_called

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, clock):
        async def hang():
            await asyncio.sleep(5)

        provider = ScriptedProvider({"gpt-5-nano": [hang, ok("fast now")]})
        config = GenerationConfig(attempt_timeout=0.05)
        result = await _executor(
            provider, config, budget_config=BudgetConfig(min_attempt_seconds=0.01)
        ).run(_request(), Budget.from_limit(57, clock=clock))
        assert result.text == "fast now"
        assert result.attempts[0].outcome == OutcomeKind.TRANSIENT
        assert "Timed out" in result.attempts[0].error

    @pytest.mark.asyncio
    async def test_budget_exhausted_before_first_attempt(self, clock):
        provider = ScriptedProvider({})
        result = await _executor(provider).run(_request(), Budget.from_limit(2.0, clock=clock))
        assert not result.succeeded
        assert result.failure_code == "budget_exhausted"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_attempt_timeout_spares_persistence_reserve(self, clock):
        provider = ScriptedProvider({"gpt-5-nano": [ok("x")]})
        result = await _executor(provider).run(_request(), Budget.from_limit(10.0, clock=clock))
        assert result.attempts[0].timeout_seconds == pytest.approx(8.5)
        assert provider.calls[0][1].timeout == pytest.approx(8.5)

    @pytest.mark.asyncio
    async def test_initial_minimal_variant(self, clock):
        provider = ScriptedProvider({"gpt-5-nano": [ok("x")]})
        await _executor(provider).run(
            _request(initial_variant=PromptVariant.MINIMAL), Budget.from_limit(57, clock=clock)
        )
        assert [m.role for m in provider.calls[0][2]] == ["system", "user"]
