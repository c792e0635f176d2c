"""AppContext: wires DB, config, and services together."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from knowledgeoracle.config import AppConfig, load_config
from knowledgeoracle.infra.db.client import MongoClient

if TYPE_CHECKING:
    from pathlib import Path

    from knowledgeoracle.infra.db.answers import AnswerRepo
    from knowledgeoracle.infra.db.catalogs import DiscussionRepo, IncidentCompendiumRepo, StudySourceRepo
    from knowledgeoracle.infra.db.chunks import ChunkIndexRepo
    from knowledgeoracle.infra.db.usage import UsageRecorder, UsageRepo
    from knowledgeoracle.infra.providers.registry import ProviderRegistry
    from knowledgeoracle.infra.search.base import WebSearchTool
    from knowledgeoracle.services.answer_service import AnswerService
    from knowledgeoracle.services.cascade_service import ModelCascadeExecutor
    from knowledgeoracle.services.embedding_service import EmbeddingService
    from knowledgeoracle.services.research_service import WebResearchPlanner
    from knowledgeoracle.services.retrieval_service import RetrievalService

logger = logging.getLogger(__name__)


class AppContext:
    """Central wiring for all application dependencies.

    Lazily initializes services on first access. Call `initialize()` to
    set up the database connection.
    """

    def __init__(self, config: AppConfig | None = None, config_path: Path | None = None) -> None:
        self.config = config or load_config(config_path)
        self._mongo: MongoClient | None = None
        self._study_repo: StudySourceRepo | None = None
        self._compendium_repo: IncidentCompendiumRepo | None = None
        self._discussion_repo: DiscussionRepo | None = None
        self._chunk_repo: ChunkIndexRepo | None = None
        self._answer_repo: AnswerRepo | None = None
        self._usage_repo: UsageRepo | None = None
        self._usage_recorder: UsageRecorder | None = None
        self._providers: ProviderRegistry | None = None
        self._search_tools: list[WebSearchTool] | None = None
        self._embedding_service: EmbeddingService | None = None
        self._retrieval_service: RetrievalService | None = None
        self._research_planner: WebResearchPlanner | None = None
        self._cascade: ModelCascadeExecutor | None = None
        self._answer_service: AnswerService | None = None

    async def initialize(self, migrate: bool = False) -> None:
        """Open the database connection, optionally creating indexes."""
        self._mongo = MongoClient(
            uri=self.config.mongodb.uri,
            database=self.config.mongodb.database,
        )
        if migrate:
            await self.migrate()
        logger.info("AppContext initialized")

    async def migrate(self) -> bool:
        """Create regular indexes and the vector search index. Returns False if the latter failed."""
        from knowledgeoracle.infra.db.migrations import create_vector_search_index, run_migrations

        await run_migrations(self.mongo.db)
        return await create_vector_search_index(self.mongo.db, self.config.embeddings.dimensions)

    async def close(self) -> None:
        """Flush background writes and close all connections."""
        if self._answer_service is not None:
            await self._answer_service.wait_for_persistence()
        elif self._usage_recorder is not None:
            await self._usage_recorder.drain()
        if self._providers is not None:
            await self._providers.close()
        for tool in self._search_tools or []:
            close = getattr(tool, "close", None)
            if close is not None:
                await close()
        if self._embedding_service is not None:
            await self._embedding_service.close()
        if self._mongo:
            self._mongo.close()
        logger.info("AppContext closed")

    @property
    def mongo(self) -> MongoClient:
        if self._mongo is None:
            raise RuntimeError("AppContext not initialized. Call initialize() first.")
        return self._mongo

    @property
    def study_repo(self) -> StudySourceRepo:
        if self._study_repo is None:
            from knowledgeoracle.infra.db.catalogs import StudySourceRepo

            self._study_repo = StudySourceRepo(self.mongo.db)
        return self._study_repo

    @property
    def compendium_repo(self) -> IncidentCompendiumRepo:
        if self._compendium_repo is None:
            from knowledgeoracle.infra.db.catalogs import IncidentCompendiumRepo

            self._compendium_repo = IncidentCompendiumRepo(self.mongo.db)
        return self._compendium_repo

    @property
    def discussion_repo(self) -> DiscussionRepo:
        if self._discussion_repo is None:
            from knowledgeoracle.infra.db.catalogs import DiscussionRepo

            self._discussion_repo = DiscussionRepo(self.mongo.db)
        return self._discussion_repo

    @property
    def chunk_repo(self) -> ChunkIndexRepo:
        if self._chunk_repo is None:
            from knowledgeoracle.infra.db.chunks import ChunkIndexRepo

            self._chunk_repo = ChunkIndexRepo(self.mongo.db)
        return self._chunk_repo

    @property
    def answer_repo(self) -> AnswerRepo:
        if self._answer_repo is None:
            from knowledgeoracle.infra.db.answers import AnswerRepo

            self._answer_repo = AnswerRepo(self.mongo.db)
        return self._answer_repo

    @property
    def usage_repo(self) -> UsageRepo:
        if self._usage_repo is None:
            from knowledgeoracle.infra.db.usage import UsageRepo

            self._usage_repo = UsageRepo(self.mongo.db)
        return self._usage_repo

    @property
    def usage_recorder(self) -> UsageRecorder:
        if self._usage_recorder is None:
            from knowledgeoracle.infra.db.usage import UsageRecorder

            self._usage_recorder = UsageRecorder(self.usage_repo)
        return self._usage_recorder

    @property
    def providers(self) -> ProviderRegistry:
        if self._providers is None:
            from knowledgeoracle.infra.providers.registry import ProviderRegistry

            self._providers = ProviderRegistry(self.config)
        return self._providers

    @property
    def search_tools(self) -> list[WebSearchTool]:
        """Web search tools in preference order, from ``research.search_tools``."""
        if self._search_tools is None:
            from knowledgeoracle.infra.search.brave import BraveSearchTool
            from knowledgeoracle.infra.search.openai_web import OpenAIWebSearchTool

            research = self.config.research
            hosted = [t for t in research.search_tools if t != "brave"]
            tools: list[WebSearchTool] = []
            openai = self.config.providers.get("openai")
            if hosted and openai and openai.api_key:
                for model in research.search_models:
                    for tool_type in hosted:
                        tools.append(OpenAIWebSearchTool(
                            self.providers.get("openai"),
                            model,
                            tool_type=tool_type,
                            max_output_tokens=research.search_max_output_tokens,
                            usage=self.usage_recorder,
                        ))
            brave = self.config.search.get("brave")
            if "brave" in research.search_tools and brave and brave.api_key:
                tools.append(BraveSearchTool(api_key=brave.api_key))
            if not tools:
                logger.info("No web search tools configured")
            self._search_tools = tools
        return self._search_tools

    @property
    def embedding_service(self) -> EmbeddingService:
        if self._embedding_service is None:
            from knowledgeoracle.services.embedding_service import EmbeddingService

            self._embedding_service = EmbeddingService(config=self.config.embeddings)
        return self._embedding_service

    @property
    def retrieval_service(self) -> RetrievalService:
        if self._retrieval_service is None:
            from knowledgeoracle.services.retrieval_service import RetrievalService

            self._retrieval_service = RetrievalService(
                config=self.config.retrieval,
                study=self.study_repo,
                compendium=self.compendium_repo,
                discussions=self.discussion_repo,
                semantic_index=self.chunk_repo,
                embedder=self.embedding_service,
            )
        return self._retrieval_service

    @property
    def research_planner(self) -> WebResearchPlanner:
        if self._research_planner is None:
            from knowledgeoracle.services.research_service import WebResearchPlanner

            openai = self.config.providers.get("openai")
            planner = self.providers.get("openai") if openai and openai.api_key else None
            self._research_planner = WebResearchPlanner(
                config=self.config.research,
                search_tools=self.search_tools,
                planner=planner,
                usage=self.usage_recorder,
            )
        return self._research_planner

    @property
    def cascade(self) -> ModelCascadeExecutor:
        if self._cascade is None:
            from knowledgeoracle.services.cascade_service import ModelCascadeExecutor

            self._cascade = ModelCascadeExecutor(
                config=self.config.generation,
                providers=self.providers,
                budget_config=self.config.budget,
                usage=self.usage_recorder,
            )
        return self._cascade

    @property
    def answer_service(self) -> AnswerService:
        if self._answer_service is None:
            from knowledgeoracle.services.answer_service import AnswerService

            self._answer_service = AnswerService(
                config=self.config,
                retrieval=self.retrieval_service,
                cascade=self.cascade,
                research=self.research_planner,
                answer_store=self.answer_repo,
                usage=self.usage_recorder,
            )
        return self._answer_service
