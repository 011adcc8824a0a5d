"""Retrieval Service for the RAG pipeline

Embeds a question and runs a tenant-scoped nearest-neighbour search.
"""

import time
from typing import Optional

import structlog

from tenant_rag.config.settings import Settings, get_settings
from tenant_rag.core.exceptions import EmbeddingError, ValidationError
from tenant_rag.core.metrics import RAG_QUERY_TIME
from tenant_rag.rag.cache import EmbeddingCache
from tenant_rag.rag.embeddings import EmbeddingProvider, is_usable_embedding
from tenant_rag.rag.models import RetrievalResult
from tenant_rag.rag.vector_store import VectorStore

logger = structlog.get_logger(__name__)


class RetrievalService:
    """Finds a tenant's chunks closest to a question."""

    def __init__(
        self,
        vector_store: VectorStore,
        embedding_provider: EmbeddingProvider,
        cache: Optional[EmbeddingCache] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.vector_store = vector_store
        self.embedding_provider = embedding_provider
        self.cache = cache
        self.default_top_k = settings.rag.default_top_k
        self.max_top_k = settings.rag.max_top_k

    def resolve_top_k(self, top_k: Optional[int]) -> int:
        """Apply the default and clamp to ``[1, max_top_k]``."""
        if top_k is None:
            top_k = self.default_top_k
        return max(1, min(int(top_k), self.max_top_k))

    async def retrieve(self, query: str, tenant_id: str, top_k: Optional[int] = None) -> RetrievalResult:
        """Retrieve the tenant's ``top_k`` nearest chunks for a query.

        Args:
            query: Question text
            tenant_id: Tenant scope
            top_k: Number of chunks to return (default from settings)

        Returns:
            Sources ordered by ascending distance

        Raises:
            ValidationError: If the query or tenant is missing
            EmbeddingError: If the query cannot be embedded
            StoreError: If the similarity search fails
        """
        if not query or not query.strip():
            raise ValidationError("query is required")
        if not tenant_id:
            raise ValidationError("companyId is required")

        k = self.resolve_top_k(top_k)
        start_time = time.time()

        embedding = await self._embed_query(query)
        sources = await self.vector_store.nearest_neighbors(tenant_id, embedding, k)

        elapsed = time.time() - start_time
        RAG_QUERY_TIME.observe(elapsed)
        logger.info(
            "Retrieval complete",
            tenant_id=tenant_id,
            top_k=k,
            results=len(sources),
            duration_ms=round(elapsed * 1000, 1),
        )
        return RetrievalResult(query=query, tenant_id=tenant_id, sources=sources, top_k=k)

    async def _embed_query(self, query: str):
        if self.cache is not None:
            cached = await self.cache.get(query)
            if cached:
                return cached

        embedding = await self.embedding_provider.embed(query)
        if not is_usable_embedding(embedding):
            raise EmbeddingError(self.embedding_provider.provider_name, "empty embedding for query")

        if self.cache is not None:
            await self.cache.set(query, embedding)
        return embedding
