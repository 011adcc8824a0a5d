"""Ingestion Pipeline for the RAG pipeline

Fetches tenant documents (object storage, or the deprecated structured
business data path), chunks and embeds them, and writes them to the vector
store. Every write for a tenant runs under that tenant's lock, so a refresh
never interleaves with another ingestion for the same tenant.
"""

import asyncio
import weakref
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from tenant_rag.config.settings import Settings, get_settings
from tenant_rag.core.exceptions import (
    ConfigurationError,
    EmbeddingError,
    StorageError,
    StoreError,
    ValidationError,
)
from tenant_rag.core.metrics import RAG_CHUNKS_INGESTED, RAG_CHUNKS_SKIPPED, RAG_INGESTION_RUNS
from tenant_rag.rag.business_data import BUSINESS_SOURCES, BusinessDataSource
from tenant_rag.rag.chunker import chunk_text
from tenant_rag.rag.document_processor import build_chunk_metadata, extract_text
from tenant_rag.rag.embeddings import EmbeddingProvider, is_usable_embedding
from tenant_rag.rag.models import (
    Chunk,
    DeleteResult,
    DocumentMetadata,
    IndexStatus,
    IngestionRequest,
    IngestionResult,
)
from tenant_rag.rag.storage import DocumentStorage, source_key
from tenant_rag.rag.vector_store import VectorStore

logger = structlog.get_logger(__name__)

NO_FILES_MESSAGE = "No files found in storage"
REFRESH_INCOMPLETE_PREFIX = "refresh incomplete: "

MetadataBuilder = Callable[[int, int], Dict[str, Any]]


class TenantLockRegistry:
    """One ``asyncio.Lock`` per tenant id.

    Entries are weak: a lock nobody holds or waits on is dropped, so the
    registry only tracks tenants with writes in flight.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock

    def locked(self, tenant_id: str) -> bool:
        lock = self._locks.get(tenant_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


class IngestionPipeline:
    """Turns tenant documents into stored, embedded chunks."""

    def __init__(
        self,
        vector_store: VectorStore,
        embedding_provider: EmbeddingProvider,
        storage: Optional[DocumentStorage] = None,
        business_data: Optional[BusinessDataSource] = None,
        settings: Optional[Settings] = None,
        locks: Optional[TenantLockRegistry] = None,
    ):
        settings = settings or get_settings()
        self.vector_store = vector_store
        self.embedding_provider = embedding_provider
        self.storage = storage
        self.business_data = business_data
        self.chunk_max_chars = settings.rag.chunk_max_chars
        self.concurrency = max(1, settings.embedding.concurrency)
        self.locks = locks if locks is not None else TenantLockRegistry()

    async def ingest_from_storage(self, request: IngestionRequest) -> IngestionResult:
        """Ingest every file under the tenant's storage prefix.

        Each file replaces the rows previously stored under its path.
        """
        tenant_id = self._require_tenant(request.company_id)
        async with self.locks.get(tenant_id):
            result = await self._ingest_storage(tenant_id, request)
        RAG_INGESTION_RUNS.labels(path="storage", status="success" if result.success else "error").inc()
        return result

    async def refresh(self, request: IngestionRequest) -> IngestionResult:
        """Delete all of the tenant's rows, then re-run storage ingestion.

        The delete commits before re-ingestion starts. If re-ingestion fails
        the tenant is left with a partial index and the error says so.
        """
        tenant_id = self._require_tenant(request.company_id)
        async with self.locks.get(tenant_id):
            try:
                deleted = await self.vector_store.delete_by_tenant(tenant_id)
            except StoreError as e:
                logger.error("Refresh delete failed", tenant_id=tenant_id, error=str(e))
                result = IngestionResult(
                    success=False, inserted=0, error=f"Failed to delete existing documents: {e.message}"
                )
            else:
                logger.info("Refresh cleared tenant index", tenant_id=tenant_id, deleted=deleted)
                result = await self._ingest_storage(tenant_id, request)
                if not result.success:
                    result.error = f"{REFRESH_INCOMPLETE_PREFIX}{result.error}"

        RAG_INGESTION_RUNS.labels(path="refresh", status="success" if result.success else "error").inc()
        return result

    async def ingest_business_data(
        self,
        company_id: str,
        metadata: Optional[DocumentMetadata] = None,
    ) -> IngestionResult:
        """Index the tenant's operational data as text documents.

        Deprecated in favour of answer-time lookups. Only the business sources
        are replaced; storage-ingested documents are left alone.
        """
        tenant_id = self._require_tenant(company_id)
        logger.warning(
            "Structured business data ingestion is deprecated, prefer live queries",
            tenant_id=tenant_id,
        )
        if self.business_data is None:
            raise ConfigurationError("ingestion", "business data source is not configured")

        async with self.locks.get(tenant_id):
            result = await self._ingest_business(tenant_id, metadata)
        RAG_INGESTION_RUNS.labels(path="business", status="success" if result.success else "error").inc()
        return result

    async def delete(self, company_id: str, source: Optional[str] = None) -> DeleteResult:
        """Delete the tenant's rows, optionally for one source only."""
        tenant_id = self._require_tenant(company_id)
        async with self.locks.get(tenant_id):
            try:
                deleted = await self.vector_store.delete_by_tenant(tenant_id, source)
            except StoreError as e:
                logger.error("Delete failed", tenant_id=tenant_id, source=source, error=str(e))
                return DeleteResult(success=False, deleted=0, error=e.message)
        return DeleteResult(success=True, deleted=deleted)

    async def check(self, company_id: str) -> IndexStatus:
        """Report whether the tenant has any indexed chunks."""
        tenant_id = self._require_tenant(company_id)
        try:
            count = await self.vector_store.count(tenant_id)
        except StoreError as e:
            logger.error("Index check failed", tenant_id=tenant_id, error=str(e))
            return IndexStatus(has_data=False, count=0)
        return IndexStatus(has_data=count > 0, count=count)

    async def _ingest_storage(self, tenant_id: str, request: IngestionRequest) -> IngestionResult:
        if self.storage is None:
            return IngestionResult(success=False, inserted=0, error="Object storage is not configured")

        try:
            objects = await self.storage.list_documents(tenant_id, request.folder_path, request.bucket)
        except (StorageError, ConfigurationError) as e:
            logger.error("Storage listing failed", tenant_id=tenant_id, error=str(e))
            return IngestionResult(success=False, inserted=0, error=e.message)

        if not objects:
            logger.info("No files found in storage", tenant_id=tenant_id, folder=request.folder_path)
            return IngestionResult(success=True, inserted=0, error=NO_FILES_MESSAGE)

        total_inserted = 0
        for obj in objects:
            try:
                content = await self.storage.download(obj.path, request.bucket)
            except StorageError as e:
                logger.warning("Download failed, file skipped", tenant_id=tenant_id, file=obj.path, error=str(e))
                RAG_CHUNKS_SKIPPED.labels(reason="download_error").inc()
                continue

            text = extract_text(content, obj.name)
            if not text.strip():
                logger.warning("No text content extracted, file skipped", tenant_id=tenant_id, file=obj.path)
                RAG_CHUNKS_SKIPPED.labels(reason="empty_text").inc()
                continue

            ingested_at = datetime.now(timezone.utc)

            def metadata_for(index: int, total: int, obj=obj, ingested_at=ingested_at) -> Dict[str, Any]:
                return build_chunk_metadata(request.metadata, obj.name, obj.path, index, total, ingested_at)

            try:
                total_inserted += await self._ingest_document(
                    tenant_id, source_key(tenant_id, obj.path), text, metadata_for, path="storage"
                )
            except (StoreError, ConfigurationError) as e:
                logger.error(
                    "Ingestion aborted",
                    tenant_id=tenant_id,
                    file=obj.path,
                    inserted=total_inserted,
                    error=str(e),
                )
                return IngestionResult(success=False, inserted=total_inserted, error=e.message)

        logger.info("Storage ingestion complete", tenant_id=tenant_id, files=len(objects), inserted=total_inserted)
        return IngestionResult(success=True, inserted=total_inserted)

    async def _ingest_business(self, tenant_id: str, metadata: Optional[DocumentMetadata]) -> IngestionResult:
        try:
            documents = await self.business_data.build_documents(tenant_id)
        except (ValidationError, StoreError) as e:
            logger.error("Business data read failed", tenant_id=tenant_id, error=str(e))
            return IngestionResult(success=False, inserted=0, error=e.message)

        base = (metadata or DocumentMetadata()).to_payload()
        base.setdefault("category", "business-data")
        ingested_at = datetime.now(timezone.utc).isoformat()

        total_inserted = 0
        try:
            for doc in documents:

                def metadata_for(index: int, total: int, source=doc.source) -> Dict[str, Any]:
                    return {
                        **base,
                        "source": source,
                        "chunkIndex": index,
                        "totalChunks": total,
                        "ingestedAt": ingested_at,
                    }

                total_inserted += await self._ingest_document(
                    tenant_id, doc.source, doc.content, metadata_for, path="business"
                )

            produced = {doc.source for doc in documents}
            for source in BUSINESS_SOURCES:
                if source not in produced:
                    await self.vector_store.delete_by_tenant(tenant_id, source)
        except (StoreError, ConfigurationError) as e:
            logger.error("Business ingestion aborted", tenant_id=tenant_id, inserted=total_inserted, error=str(e))
            return IngestionResult(success=False, inserted=total_inserted, error=e.message)

        logger.info("Business data ingestion complete", tenant_id=tenant_id, inserted=total_inserted)
        return IngestionResult(success=True, inserted=total_inserted)

    async def _ingest_document(
        self,
        tenant_id: str,
        source: str,
        text: str,
        metadata_for: MetadataBuilder,
        path: str,
    ) -> int:
        """Chunk, embed and store one document, replacing its previous rows.

        Returns:
            Number of rows written
        """
        pieces = chunk_text(text, self.chunk_max_chars)
        embeddings = await self._embed_chunks(tenant_id, source, pieces)

        chunks = [
            Chunk(
                source=source,
                chunk_index=index,
                content=piece,
                embedding=embedding,
                tenant_id=tenant_id,
                metadata=metadata_for(index, len(pieces)),
            )
            for index, (piece, embedding) in enumerate(zip(pieces, embeddings))
            if embedding is not None
        ]

        if not chunks:
            logger.warning("No embeddable chunks, previous rows kept", tenant_id=tenant_id, source=source)
            return 0

        async with self.vector_store.transaction() as session:
            await self.vector_store.delete_by_tenant(tenant_id, source, session=session)
            await self.vector_store.insert_many(chunks, session=session)

        RAG_CHUNKS_INGESTED.labels(path=path).inc(len(chunks))
        logger.info(
            "Document ingested",
            tenant_id=tenant_id,
            source=source,
            chunks=len(pieces),
            stored=len(chunks),
        )
        return len(chunks)

    async def _embed_chunks(self, tenant_id: str, source: str, pieces: List[str]) -> List[Optional[List[float]]]:
        """Embed a file's chunks with bounded concurrency, preserving order.

        Chunks whose embedding fails or comes back empty map to None.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def embed_one(index: int, piece: str) -> Optional[List[float]]:
            async with semaphore:
                try:
                    embedding = await self.embedding_provider.embed(piece)
                except EmbeddingError as e:
                    logger.warning(
                        "Embedding failed, chunk skipped",
                        tenant_id=tenant_id,
                        source=source,
                        chunk_index=index,
                        error=str(e),
                    )
                    RAG_CHUNKS_SKIPPED.labels(reason="embedding_error").inc()
                    return None

            if not is_usable_embedding(embedding):
                logger.warning("Empty embedding, chunk skipped", tenant_id=tenant_id, source=source, chunk_index=index)
                RAG_CHUNKS_SKIPPED.labels(reason="empty_embedding").inc()
                return None
            return list(embedding)

        tasks = [asyncio.ensure_future(embed_one(index, piece)) for index, piece in enumerate(pieces)]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    @staticmethod
    def _require_tenant(company_id: Optional[str]) -> str:
        if not company_id or not company_id.strip():
            raise ValidationError("companyId is required")
        return company_id.strip()
