"""RAG Service Module

Wires the pipeline components together and hosts the Chat Orchestrator, the
entry point that sequences retrieval, prompt assembly and answer streaming
for one query.
"""

from typing import Any, AsyncIterator, Dict, Optional

import structlog

from tenant_rag.config.settings import Settings, get_settings
from tenant_rag.core.exceptions import ConfigurationError, RAGServiceException, ValidationError
from tenant_rag.core.metrics import RAG_QUERIES
from tenant_rag.database.connection import DatabaseManager
from tenant_rag.rag.business_data import BusinessDataSource
from tenant_rag.rag.cache import EmbeddingCache
from tenant_rag.rag.embeddings import EmbeddingProvider, create_embedding_provider
from tenant_rag.rag.ingestion import IngestionPipeline, TenantLockRegistry
from tenant_rag.rag.models import QueryRequest
from tenant_rag.rag.prompts import PromptAssembler
from tenant_rag.rag.retrieval import RetrievalService
from tenant_rag.rag.storage import DocumentStorage
from tenant_rag.rag.synthesizer import AnswerSynthesizer, format_sse
from tenant_rag.rag.vector_store import VectorStore
from tenant_rag.services.llm_service import CompletionProvider, create_completion_provider

logger = structlog.get_logger(__name__)


class ChatOrchestrator:
    """Answers one query: retrieve, assemble, stream."""

    def __init__(
        self,
        retrieval: RetrievalService,
        assembler: PromptAssembler,
        synthesizer: AnswerSynthesizer,
    ):
        self.retrieval = retrieval
        self.assembler = assembler
        self.synthesizer = synthesizer

    @staticmethod
    def validate(request: QueryRequest) -> None:
        """Reject a request before any provider or store call.

        Raises:
            ValidationError: If ``query`` or ``companyId`` is missing
        """
        missing = []
        if not request.query:
            missing.append("query")
        if not request.company_id or not request.company_id.strip():
            missing.append("companyId")
        if missing:
            raise ValidationError(
                f"Missing required field(s): {', '.join(missing)}",
                details={"missing": missing},
            )

    async def answer(self, request: QueryRequest) -> AsyncIterator[str]:
        """Retrieve sources and return the event-stream body for the answer.

        Validation and retrieval happen before the first byte is sent, so their
        failures surface as ordinary HTTP errors. Once streaming has started,
        failures are reported in-band as an error frame.
        """
        self.validate(request)
        tenant_id = request.company_id.strip()

        try:
            result = await self.retrieval.retrieve(request.query, tenant_id, request.top_k)
        except RAGServiceException:
            RAG_QUERIES.labels(status="error").inc()
            raise

        prompt = self.assembler.assemble(result.sources, request.conversation_history, request.query)
        logger.info(
            "Answering query",
            tenant_id=tenant_id,
            sources=len(result.sources),
            history=len(request.conversation_history),
        )
        return self._stream(result.sources, prompt)

    async def _stream(self, sources, prompt: str) -> AsyncIterator[str]:
        status = "success"
        async for frame in self.synthesizer.frames(sources, prompt):
            if "error" in frame:
                status = "error"
            yield format_sse(frame)
        RAG_QUERIES.labels(status=status).inc()


class RAGService:
    """Main service for RAG functionality."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        settings: Optional[Settings] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        completion_provider: Optional[CompletionProvider] = None,
        storage: Optional[DocumentStorage] = None,
    ):
        """Initialize the RAG service.

        Args:
            db_manager: Database manager instance
            settings: Optional settings override
            embedding_provider: Optional embedding provider override
            completion_provider: Optional completion provider override
            storage: Optional object storage override
        """
        self.settings = settings or get_settings()
        self.db_manager = db_manager

        self.vector_store = VectorStore(db_manager, self.settings)
        self.embedding_provider = embedding_provider or create_embedding_provider(self.settings)
        self.completion_provider = completion_provider or create_completion_provider(self.settings)
        self.cache = EmbeddingCache(
            db_manager.get_redis_client(),
            self.settings.embedding.model,
            ttl=self.settings.redis.cache_ttl,
        )

        self.ingestion = IngestionPipeline(
            vector_store=self.vector_store,
            embedding_provider=self.embedding_provider,
            storage=storage or DocumentStorage(self.settings),
            business_data=BusinessDataSource(db_manager),
            settings=self.settings,
            locks=TenantLockRegistry(),
        )
        self.retrieval = RetrievalService(self.vector_store, self.embedding_provider, self.cache, self.settings)
        self.orchestrator = ChatOrchestrator(
            retrieval=self.retrieval,
            assembler=PromptAssembler(history_window=self.settings.rag.history_window),
            synthesizer=AnswerSynthesizer(self.completion_provider),
        )

        self.configuration_error: Optional[ConfigurationError] = None
        self.initialized = False

    async def initialize(self) -> bool:
        """Create the schema if configured and check the index metric."""
        if self.initialized:
            return True

        if self.settings.rag.create_schema:
            await self.vector_store.ensure_schema()

        try:
            await self.vector_store.verify_index_metric()
        except ConfigurationError as e:
            # Queries are refused until the index and metric agree.
            logger.error("Vector index does not match the configured metric", error=str(e))
            self.configuration_error = e

        self.initialized = True
        logger.info(
            "RAG service initialized",
            metric=self.settings.rag.distance_metric,
            embedding_provider=self.embedding_provider.provider_name,
            completion_provider=self.completion_provider.provider_name,
        )
        return True

    async def answer(self, request: QueryRequest) -> AsyncIterator[str]:
        """Validate, retrieve and return the event-stream body."""
        ChatOrchestrator.validate(request)
        if self.configuration_error is not None:
            raise self.configuration_error
        return await self.orchestrator.answer(request)

    async def health_check(self) -> Dict[str, Any]:
        """Check the health of the RAG components."""
        return {
            "status": "unhealthy" if self.configuration_error else "healthy",
            "initialized": self.initialized,
            "configuration_error": self.configuration_error.message if self.configuration_error else None,
            "embedding_provider": self.embedding_provider.provider_name,
            "completion_provider": self.completion_provider.provider_name,
            "cache_enabled": self.cache.enabled,
        }
