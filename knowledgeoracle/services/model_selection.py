"""Candidate model list and per-model capability inference."""

from __future__ import annotations

import logging
import re

from knowledgeoracle.config import GenerationConfig
from knowledgeoracle.models.generation import ModelCandidate
from knowledgeoracle.models.provider import ProviderType
from knowledgeoracle.models.query import QualityTier

logger = logging.getLogger(__name__)

DEFAULT_FAST_MODEL = "gpt-5-mini-2025-08-07"
DEFAULT_PREMIUM_MODEL = "gpt-5-2025-08-07"
DEFAULT_CHAT_MODEL = "gpt-5-nano-2025-08-07"

_REASONING_RE = re.compile(r"^(?:ft:)?(?:gpt-5|o1|o3|o4)(?:\b|[-:.])")
_VERBOSITY_RE = re.compile(r"^(?:ft:)?gpt-5(?:\b|[-:.])")

# (reasoning effort, verbosity) per quality tier
TIER_PARAMETERS: dict[QualityTier, tuple[str, str]] = {
    QualityTier.FAST: ("minimal", "low"),
    QualityTier.BALANCED: ("low", "medium"),
    QualityTier.DEEP: ("medium", "high"),
}


def normalize_model_name(value: str, fallback: str = DEFAULT_FAST_MODEL) -> str:
    model = str(value or "").strip()
    return model or fallback


def pick_model(
    prefer_premium: bool,
    premium: str = "",
    fast: str = "",
    fallback_fast: str = DEFAULT_FAST_MODEL,
    fallback_premium: str = DEFAULT_PREMIUM_MODEL,
) -> str:
    """Premium or fast model, falling back to the other before the defaults."""
    fallback = fallback_premium if prefer_premium else fallback_fast
    pick = (premium or fast) if prefer_premium else (fast or premium)
    return normalize_model_name(pick, fallback)


def _family(identifier: str) -> str:
    # "openai/gpt-5-mini" on OpenRouter is still a gpt-5 model
    return identifier.lower().rsplit("/", 1)[-1]


def supports_reasoning_effort(identifier: str) -> bool:
    return bool(_REASONING_RE.match(_family(identifier)))


def supports_verbosity(identifier: str) -> bool:
    return bool(_VERBOSITY_RE.match(_family(identifier)))


def parse_candidate(value: str, default_provider: str = "openai") -> ModelCandidate | None:
    """Build a candidate from ``model`` or ``provider:model``."""
    value = str(value or "").strip()
    if not value:
        return None
    provider = default_provider
    identifier = value
    prefix, sep, rest = value.partition(":")
    if sep and prefix in {p.value for p in ProviderType}:
        provider, identifier = prefix, rest.strip()
    if not identifier:
        return None
    return ModelCandidate(
        identifier=identifier,
        provider=provider,
        supports_reasoning_effort=supports_reasoning_effort(identifier),
        supports_structured_verbosity=supports_verbosity(identifier),
    )


def build_candidates(
    config: GenerationConfig,
    tier: QualityTier = QualityTier.BALANCED,
    prefer_premium: bool = False,
) -> list[ModelCandidate]:
    """Ordered, deduplicated candidate list for one request."""
    entries: list[str] = list(config.tier_models.get(QualityTier(tier).value, []))
    entries.append(config.chat_model)
    entries.append(DEFAULT_CHAT_MODEL)
    entries.append(pick_model(prefer_premium, config.premium_model, config.fast_model))

    seen: set[str] = set()
    candidates: list[ModelCandidate] = []
    for value in entries:
        candidate = parse_candidate(value, config.provider)
        if candidate is None or candidate.key in seen:
            continue
        seen.add(candidate.key)
        candidates.append(candidate)
    logger.debug("Model candidates: %s", [c.key for c in candidates])
    return candidates
