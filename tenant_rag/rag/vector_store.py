"""Vector Store Implementation for the RAG pipeline

Chunks live in one PostgreSQL table with a pgvector similarity index on
``embedding`` and a b-tree index on ``tenant_id``. Every statement is scoped
by tenant inside SQL. Similarity queries widen the approximate index scan
first, since pgvector applies the tenant filter to the scanned candidates.
"""

import json
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenant_rag.config.settings import Settings, get_settings
from tenant_rag.core.exceptions import ConfigurationError, StoreError
from tenant_rag.database.connection import DatabaseManager
from tenant_rag.rag.models import Chunk, Source

logger = structlog.get_logger(__name__)

# metric -> (distance operator, operator class the index must be built with)
METRIC_OPERATORS: Dict[str, Tuple[str, str]] = {
    "l2": ("<->", "vector_l2_ops"),
    "cosine": ("<=>", "vector_cosine_ops"),
}

_OPCLASS_PATTERN = re.compile(r"\b(vector_(?:l2|cosine|ip)_ops)\b")


def to_vector_literal(embedding: Sequence[float]) -> str:
    """Render an embedding as a pgvector text literal."""
    return "[" + ",".join(repr(float(value)) for value in embedding) + "]"


class VectorStore:
    """pgvector-backed chunk store."""

    def __init__(self, db_manager: DatabaseManager, settings: Optional[Settings] = None):
        """Initialize the vector store.

        Args:
            db_manager: Database connection manager
            settings: Optional settings override
        """
        settings = settings or get_settings()
        self.db_manager = db_manager
        self.table_name = settings.rag.table_name
        self.dimension = settings.embedding.dimension
        self.metric = settings.rag.distance_metric
        self.index_type = settings.rag.index_type
        self.ivf_probes = settings.rag.ivf_probes
        self.hnsw_ef_search = settings.rag.hnsw_ef_search
        self.operator, self.operator_class = METRIC_OPERATORS[self.metric]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a pooled session whose writes commit together."""
        try:
            async with self.db_manager.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreError("transaction", str(e)) from e

    @asynccontextmanager
    async def _session(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
        else:
            async with self.transaction() as own_session:
                yield own_session

    def schema_statements(self) -> List[str]:
        """DDL for the chunk table and its indexes."""
        table = self.table_name
        index_options = "WITH (lists = 100)" if self.index_type == "ivfflat" else ""
        return [
            "CREATE EXTENSION IF NOT EXISTS vector",
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id BIGSERIAL PRIMARY KEY,
                source TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                content TEXT NOT NULL,
                embedding vector({self.dimension}) NOT NULL,
                tenant_id TEXT NOT NULL,
                metadata JSONB NOT NULL DEFAULT '{{}}',
                created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                CONSTRAINT {table}_chunk_key UNIQUE (tenant_id, source, chunk_index)
            )
            """,
            f"CREATE INDEX IF NOT EXISTS {table}_tenant_idx ON {table} (tenant_id)",
            f"""
            CREATE INDEX IF NOT EXISTS {table}_embedding_idx ON {table}
            USING {self.index_type} (embedding {self.operator_class}) {index_options}
            """,
        ]

    async def ensure_schema(self):
        """Create the extension, table and indexes if they don't exist."""
        try:
            async with self._session(None) as session:
                for statement in self.schema_statements():
                    await session.execute(text(statement))
            logger.info(
                "Vector store schema ready",
                table=self.table_name,
                dimension=self.dimension,
                metric=self.metric,
                index_type=self.index_type,
            )
        except SQLAlchemyError as e:
            raise StoreError("schema creation", str(e)) from e

    async def verify_index_metric(self) -> Optional[str]:
        """Check that the similarity index was built for the configured metric.

        Returns:
            The operator class found on the index, or None if there is no index

        Raises:
            ConfigurationError: If the index operator class disagrees with the metric
        """
        query = text(
            "SELECT indexdef FROM pg_indexes "
            "WHERE tablename = :table AND indexdef ILIKE '%vector_%_ops%'"
        )
        try:
            async with self._session(None) as session:
                result = await session.execute(query, {"table": self.table_name})
                definitions = [row[0] for row in result.fetchall()]
        except SQLAlchemyError as e:
            raise StoreError("index inspection", str(e)) from e

        found = None
        for definition in definitions:
            match = _OPCLASS_PATTERN.search(definition)
            if match:
                found = match.group(1)
                if found != self.operator_class:
                    raise ConfigurationError(
                        "vector_store",
                        f"index on {self.table_name} uses {found} but queries use "
                        f"{self.operator} ({self.metric}); rebuild the index or change RAG_DISTANCE_METRIC",
                        details={"index_opclass": found, "metric": self.metric},
                    )

        if found is None:
            logger.warning("No similarity index found, queries will scan", table=self.table_name)
        return found

    async def insert(self, chunk: Chunk, session: Optional[AsyncSession] = None) -> None:
        """Append one chunk row."""
        await self.insert_many([chunk], session=session)

    async def insert_many(self, chunks: List[Chunk], session: Optional[AsyncSession] = None) -> int:
        """Append chunk rows in the given order.

        Returns:
            Number of rows inserted
        """
        if not chunks:
            return 0

        for chunk in chunks:
            if len(chunk.embedding) != self.dimension:
                raise ConfigurationError(
                    "vector_store",
                    f"embedding has {len(chunk.embedding)} dimensions, table expects {self.dimension}",
                )

        statement = text(
            f"INSERT INTO {self.table_name} (source, chunk_index, content, embedding, tenant_id, metadata) "
            "VALUES (:source, :chunk_index, :content, CAST(CAST(:embedding AS text) AS vector), "
            ":tenant_id, CAST(:metadata AS jsonb))"
        )
        params = [
            {
                "source": chunk.source,
                "chunk_index": chunk.chunk_index,
                "content": chunk.content,
                "embedding": to_vector_literal(chunk.embedding),
                "tenant_id": chunk.tenant_id,
                "metadata": json.dumps(chunk.metadata, default=str),
            }
            for chunk in chunks
        ]

        try:
            async with self._session(session) as active:
                await active.execute(statement, params)
        except SQLAlchemyError as e:
            raise StoreError("insert", str(e), details={"tenant_id": chunks[0].tenant_id}) from e

        logger.debug(
            "Chunks inserted",
            tenant_id=chunks[0].tenant_id,
            source=chunks[0].source,
            count=len(chunks),
        )
        return len(chunks)

    async def delete_by_tenant(
        self,
        tenant_id: str,
        source: Optional[str] = None,
        session: Optional[AsyncSession] = None,
    ) -> int:
        """Remove a tenant's rows, optionally only those of one source.

        Returns:
            Number of deleted rows
        """
        if not tenant_id:
            raise ValueError("tenant_id is required")

        sql = f"DELETE FROM {self.table_name} WHERE tenant_id = :tenant_id"
        params = {"tenant_id": tenant_id}
        if source is not None:
            sql += " AND source = :source"
            params["source"] = source

        try:
            async with self._session(session) as active:
                result = await active.execute(text(sql), params)
                deleted = result.rowcount or 0
        except SQLAlchemyError as e:
            raise StoreError("delete", str(e), details={"tenant_id": tenant_id}) from e

        logger.info("Chunks deleted", tenant_id=tenant_id, source=source, count=deleted)
        return deleted

    def search_tuning(self) -> Tuple[str, str]:
        """Index search setting and value applied before a similarity query.

        The tenant filter runs after the approximate index scan, so the scan
        must visit enough candidates for a small tenant to fill ``top_k``.
        """
        if self.index_type == "hnsw":
            return "hnsw.ef_search", str(self.hnsw_ef_search)
        return "ivfflat.probes", str(self.ivf_probes)

    async def nearest_neighbors(
        self,
        tenant_id: str,
        query_embedding: Sequence[float],
        top_k: int,
        session: Optional[AsyncSession] = None,
    ) -> List[Source]:
        """Return the tenant's ``top_k`` rows closest to the query embedding."""
        if not tenant_id:
            raise ValueError("tenant_id is required")

        distance = f"embedding {self.operator} CAST(CAST(:embedding AS text) AS vector)"
        statement = text(
            f"SELECT id, source, chunk_index, content, {distance} AS distance "
            f"FROM {self.table_name} "
            "WHERE tenant_id = :tenant_id "
            f"ORDER BY {distance} "
            "LIMIT :top_k"
        )
        params = {
            "embedding": to_vector_literal(query_embedding),
            "tenant_id": tenant_id,
            "top_k": top_k,
        }

        # set_config(..., true) is SET LOCAL: it lasts until the transaction ends
        name, value = self.search_tuning()
        try:
            async with self._session(session) as active:
                await active.execute(
                    text("SELECT set_config(:name, :value, true)"),
                    {"name": name, "value": value},
                )
                result = await active.execute(statement, params)
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            raise StoreError("similarity search", str(e), details={"tenant_id": tenant_id}) from e

        return [
            Source(
                id=row["id"],
                source=row["source"],
                chunk_index=row["chunk_index"],
                content=row["content"],
            )
            for row in rows
        ]

    async def count(self, tenant_id: str, session: Optional[AsyncSession] = None) -> int:
        """Count the tenant's chunks."""
        statement = text(f"SELECT COUNT(*) FROM {self.table_name} WHERE tenant_id = :tenant_id")
        try:
            async with self._session(session) as active:
                result = await active.execute(statement, {"tenant_id": tenant_id})
                return int(result.scalar() or 0)
        except SQLAlchemyError as e:
            raise StoreError("count", str(e), details={"tenant_id": tenant_id}) from e
