"""Configuration loading: TOML file + environment variable overlay."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULT_CONFIG_DIR = Path.home() / ".config" / "knowledgeoracle"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.toml"


DEFAULT_CONFIG_TOML = """\
[general]
language = "pt-BR"

[mongodb]
uri = "mongodb://localhost:27017/?directConnection=true&replicaSet=rs0"
database = "knowledgeoracle"

[providers.openai]
api_key_env = "OPENAI_API_KEY"
base_url = "https://api.openai.com/v1"

[providers.anthropic]
api_key_env = "ANTHROPIC_API_KEY"
default_model = "claude-sonnet-4-20250514"

[providers.openrouter]
api_key_env = "OPENROUTER_API_KEY"
default_model = "openai/gpt-4.1-mini"

[embeddings]
base_url = "http://localhost:8001"
model = ""
dimensions = 1024
api_key_env = "EMBEDDINGS_API_KEY"

[budget]
hard_limit_seconds = 60.0
safety_margin_seconds = 3.0

[retrieval]
semantic_k = 12
similarity_floor = 0.55
candidate_limit = 80

[research]
confidence_floor = 2
web_intents = ["oracle", "open_chat"]
search_models = ["gpt-5-mini-2025-08-07"]
search_tools = ["web_search", "web_search_preview", "brave"]

[generation]
provider = "openai"
chat_model = "gpt-5-nano-2025-08-07"
fast_model = "gpt-5-mini-2025-08-07"
premium_model = "gpt-5-2025-08-07"

[search.brave]
api_key_env = "BRAVE_SEARCH_API_KEY"
"""


@dataclass
class MongoConfig:
    uri: str = "mongodb://localhost:27017/?directConnection=true&replicaSet=rs0"
    database: str = "knowledgeoracle"


@dataclass
class ProviderConfig:
    api_key_env: str = ""
    api_key: str = ""
    default_model: str = ""
    base_url: str = ""


@dataclass
class EmbeddingsConfig:
    base_url: str = "http://localhost:8001"
    model: str = ""
    dimensions: int = 1024
    api_key_env: str = ""
    api_key: str = ""


@dataclass
class BudgetConfig:
    """Deadline and minimum viable slices, in seconds."""

    hard_limit_seconds: float = 60.0
    safety_margin_seconds: float = 3.0
    min_retrieval_seconds: float = 1.5
    min_attempt_seconds: float = 1.0


@dataclass
class RetrievalConfig:
    min_semantic_seconds: float = 2.0
    parallel_min_seconds: float = 6.0
    catalog_timeout: float = 3.0
    max_seconds: float = 8.0
    semantic_k: int = 12
    similarity_floor: float = 0.55
    chunks_per_source: int = 2
    semantic_sources: int = 3
    candidate_limit: int = 80
    top_study: int = 3
    top_compendium: int = 3
    top_discussions: int = 6
    max_keywords: int = 8
    excerpt_chars: int = 900
    discussion_excerpt_chars: int = 1600
    selected_excerpt_chars: int = 3600
    max_context_chars: int = 12000
    acronyms: list[str] = field(
        default_factory=lambda: ["nr", "epi", "epc", "spda", "cipa", "apr", "pt", "lt", "se", "sep", "rdo"]
    )


@dataclass
class ResearchConfig:
    confidence_floor: int = 2
    web_intents: list[str] = field(default_factory=lambda: ["oracle", "open_chat"])
    min_slice_seconds: float = 8.0
    max_seconds: float = 15.0
    generation_reserve_seconds: float = 12.0
    plan_timeout: float = 2.5
    plan_model: str = "gpt-5-nano-2025-08-07"
    max_queries: int = 4
    per_query_timeout: float = 4.5
    min_per_query_seconds: float = 1.5
    workers: int = 3
    synth_timeout: float = 4.0
    synth_min_seconds: float = 2.0
    synth_model: str = "gpt-5-nano-2025-08-07"
    search_models: list[str] = field(default_factory=lambda: ["gpt-5-mini-2025-08-07"])
    search_tools: list[str] = field(
        default_factory=lambda: ["web_search", "web_search_preview", "brave"]
    )
    search_max_output_tokens: int = 260
    domain_qualifier: str = "setor elétrico"
    trigger_phrases: list[str] = field(
        default_factory=lambda: [
            "cite your sources",
            "cite sources",
            "with sources",
            "with citations",
            "search the web",
            "cite as fontes",
            "com fontes",
            "com referencias",
            "pesquise na web",
            "pesquisa na internet",
        ]
    )


@dataclass
class GenerationConfig:
    provider: str = "openai"
    chat_model: str = "gpt-5-nano-2025-08-07"
    fast_model: str = "gpt-5-mini-2025-08-07"
    premium_model: str = "gpt-5-2025-08-07"
    tier_models: dict[str, list[str]] = field(default_factory=dict)
    attempt_timeout: float = 45.0
    persistence_reserve_seconds: float = 1.5
    max_output_tokens: int = 320
    research_max_output_tokens: int = 520
    token_cap: int = 1280
    history_turns: int = 12
    continuation_min_seconds: float = 4.0
    temperature: float = 0.2
    text_only_context_chars: int = 4000


@dataclass
class PinnedConfig:
    """Optional article appended to the context when its keywords appear."""

    title: str = ""
    body: str = ""
    keywords: list[str] = field(default_factory=list)


@dataclass
class AppConfig:
    language: str = "pt-BR"
    mongodb: MongoConfig = field(default_factory=MongoConfig)
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    embeddings: EmbeddingsConfig = field(default_factory=EmbeddingsConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    research: ResearchConfig = field(default_factory=ResearchConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    search: dict[str, ProviderConfig] = field(default_factory=dict)
    pinned: PinnedConfig = field(default_factory=PinnedConfig)
    config_path: Path = DEFAULT_CONFIG_PATH


def _env_overlay(config: AppConfig) -> None:
    """Override config values with environment variables where applicable."""
    # MongoDB
    if uri := os.environ.get("MONGODB_URI"):
        config.mongodb.uri = uri
    if db := os.environ.get("KNOWLEDGEORACLE_DB"):
        config.mongodb.database = db

    # Resolve API keys from env vars
    for name, prov in config.providers.items():
        if prov.api_key_env:
            prov.api_key = os.environ.get(prov.api_key_env, "")

    if config.embeddings.api_key_env:
        config.embeddings.api_key = os.environ.get(config.embeddings.api_key_env, "")

    for name, search in config.search.items():
        if search.api_key_env:
            search.api_key = os.environ.get(search.api_key_env, "")


def _parse_provider(data: dict) -> ProviderConfig:
    return ProviderConfig(
        api_key_env=data.get("api_key_env", ""),
        default_model=data.get("default_model", ""),
        base_url=data.get("base_url", ""),
    )


def _overlay(target, data: dict):
    """Copy known keys from a TOML table onto a dataclass instance."""
    for key, value in data.items():
        if hasattr(target, key):
            setattr(target, key, value)
    return target


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load configuration from TOML file with env var overlay."""
    path = config_path or DEFAULT_CONFIG_PATH

    if path.exists():
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    else:
        raw = tomllib.loads(DEFAULT_CONFIG_TOML)

    general = raw.get("general", {})
    mongo_raw = raw.get("mongodb", {})
    providers_raw = raw.get("providers", {})
    embeddings_raw = raw.get("embeddings", {})
    search_raw = raw.get("search", {})

    budget = _overlay(BudgetConfig(), raw.get("budget", {}))
    if "hard_limit_seconds" in general:
        budget.hard_limit_seconds = float(general["hard_limit_seconds"])

    config = AppConfig(
        language=general.get("language", "pt-BR"),
        mongodb=MongoConfig(
            uri=mongo_raw.get("uri", "mongodb://localhost:27017/?directConnection=true&replicaSet=rs0"),
            database=mongo_raw.get("database", "knowledgeoracle"),
        ),
        providers={name: _parse_provider(data) for name, data in providers_raw.items()},
        embeddings=EmbeddingsConfig(
            base_url=embeddings_raw.get("base_url", "http://localhost:8001"),
            model=embeddings_raw.get("model", ""),
            dimensions=embeddings_raw.get("dimensions", 1024),
            api_key_env=embeddings_raw.get("api_key_env", ""),
        ),
        budget=budget,
        retrieval=_overlay(RetrievalConfig(), raw.get("retrieval", {})),
        research=_overlay(ResearchConfig(), raw.get("research", {})),
        generation=_overlay(GenerationConfig(), raw.get("generation", {})),
        search={name: _parse_provider(data) for name, data in search_raw.items()},
        pinned=_overlay(PinnedConfig(), raw.get("pinned", {})),
        config_path=path,
    )

    _env_overlay(config)
    return config


def init_config(config_path: Path | None = None) -> Path:
    """Create default config file."""
    path = config_path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TOML)
    return path
