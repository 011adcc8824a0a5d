"""Test configuration for pytest.

This module sets up the Python path for tests and provides in-memory fakes
for the vector store, providers and object storage.
"""

import asyncio
import hashlib
import re
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

# Add the project root directory to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from tenant_rag.config.settings import EmbeddingSettings, RAGSettings, Settings  # noqa: E402
from tenant_rag.core.exceptions import CompletionError, EmbeddingError, StorageError, StoreError  # noqa: E402
from tenant_rag.rag.embeddings import EmbeddingProvider  # noqa: E402
from tenant_rag.rag.models import Chunk, Source  # noqa: E402
from tenant_rag.rag.service import RAGService  # noqa: E402
from tenant_rag.rag.storage import StoredObject, tenant_prefix  # noqa: E402
from tenant_rag.services.llm_service import CompletionProvider  # noqa: E402

DIMENSION = 8


def make_settings(**rag_overrides) -> Settings:
    """Settings with a small embedding dimension and no retry delays."""
    return Settings(
        embedding=EmbeddingSettings(
            dimension=DIMENSION,
            concurrency=2,
            max_retries=2,
            initial_backoff=0.0,
            max_backoff=0.0,
        ),
        rag=RAGSettings(**rag_overrides),
    )


def keyword_vector(text: str, dimension: int = DIMENSION) -> List[float]:
    """Deterministic bag-of-words vector; identical texts map to identical vectors."""
    vector = np.zeros(dimension)
    for word in re.findall(r"\w+", text.lower()):
        bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % dimension
        vector[bucket] += 1.0
    return vector.tolist()


class KeywordEmbeddingProvider(EmbeddingProvider):
    """Embedding provider computing keyword vectors locally."""

    provider_name = "fake"

    def __init__(self, dimension: int = DIMENSION, fail_on=(), empty_on=()):
        super().__init__("fake-embedding", dimension, max_retries=1, initial_backoff=0.0, max_backoff=0.0)
        self.fail_on = set(fail_on)
        self.empty_on = set(empty_on)
        self.calls: List[str] = []

    async def _embed_batch(self, texts):
        results = []
        for text in texts:
            self.calls.append(text)
            if any(marker in text for marker in self.fail_on):
                raise EmbeddingError(self.provider_name, "provider unavailable")
            if any(marker in text for marker in self.empty_on):
                results.append([])
            else:
                results.append(keyword_vector(text, self._vector_size))
        return results


class FakeVectorStore:
    """In-memory vector store with real L2 or cosine distances."""

    def __init__(self, metric: str = "l2", fail_insert_for: Optional[str] = None):
        self.metric = metric
        self.rows: List[dict] = []
        self.fail_insert_for = fail_insert_for
        self._next_id = 1

    @asynccontextmanager
    async def transaction(self):
        snapshot = list(self.rows)
        try:
            yield self
        except BaseException:
            self.rows = snapshot
            raise

    async def insert(self, chunk: Chunk, session=None) -> None:
        await self.insert_many([chunk], session=session)

    async def insert_many(self, chunks: List[Chunk], session=None) -> int:
        for chunk in chunks:
            if self.fail_insert_for and chunk.source == self.fail_insert_for:
                raise StoreError("insert", "connection reset")
            key = (chunk.tenant_id, chunk.source, chunk.chunk_index)
            if any((r["tenant_id"], r["source"], r["chunk_index"]) == key for r in self.rows):
                raise StoreError("insert", f"duplicate chunk {key}")
            self.rows.append({"id": self._next_id, **chunk.model_dump()})
            self._next_id += 1
        return len(chunks)

    async def delete_by_tenant(self, tenant_id: str, source: Optional[str] = None, session=None) -> int:
        before = len(self.rows)
        self.rows = [
            r for r in self.rows
            if not (r["tenant_id"] == tenant_id and (source is None or r["source"] == source))
        ]
        return before - len(self.rows)

    def _distance(self, a, b) -> float:
        a, b = np.asarray(a, dtype=float), np.asarray(b, dtype=float)
        if self.metric == "cosine":
            return float(1.0 - a.dot(b) / (np.linalg.norm(a) * np.linalg.norm(b)))
        return float(np.linalg.norm(a - b))

    async def nearest_neighbors(self, tenant_id: str, query_embedding, top_k: int, session=None) -> List[Source]:
        candidates = [r for r in self.rows if r["tenant_id"] == tenant_id]
        candidates.sort(key=lambda r: self._distance(r["embedding"], query_embedding))
        return [
            Source(id=r["id"], source=r["source"], chunk_index=r["chunk_index"], content=r["content"])
            for r in candidates[:top_k]
        ]

    async def count(self, tenant_id: str, session=None) -> int:
        return sum(1 for r in self.rows if r["tenant_id"] == tenant_id)

    def rows_for(self, tenant_id: str) -> List[dict]:
        return [r for r in self.rows if r["tenant_id"] == tenant_id]


class FakeStorage:
    """Object storage holding files per tenant prefix."""

    def __init__(self, files: Optional[Dict[str, bytes]] = None, broken=(), list_error: Optional[str] = None):
        self.files = dict(files or {})
        self.broken = set(broken)
        self.list_error = list_error

    async def list_documents(self, company_id: str, folder_path: str = "", bucket=None) -> List[StoredObject]:
        if self.list_error:
            raise StorageError("list", self.list_error)
        prefix = tenant_prefix(company_id, folder_path)
        objects = []
        for path in sorted(self.files):
            directory, _, name = path.rpartition("/")
            if directory == prefix and name != ".emptyFolderPlaceholder":
                objects.append(StoredObject(name=name, path=path))
        return objects

    async def download(self, path: str, bucket=None) -> bytes:
        if path in self.broken:
            raise StorageError("download", f"Failed to download {path}")
        return self.files[path]


class FakeCompletionProvider(CompletionProvider):
    """Completion provider streaming canned deltas."""

    provider_name = "fake"

    def __init__(self, deltas=("Hello", ", ", "world"), fail_after: Optional[int] = None, hang: bool = False):
        super().__init__("fake-model")
        self.deltas = list(deltas)
        self.fail_after = fail_after
        self.hang = hang
        self.prompts: List[str] = []
        self.closed = False

    def validate_config(self) -> bool:
        return True

    async def stream(self, prompt: str):
        self.prompts.append(prompt)
        try:
            for index, delta in enumerate(self.deltas):
                if self.fail_after is not None and index == self.fail_after:
                    raise CompletionError(self.provider_name, "upstream disconnected")
                yield delta
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.closed = True


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def embedding_provider():
    return KeywordEmbeddingProvider()


@pytest.fixture
def embedding_provider_factory():
    return KeywordEmbeddingProvider


@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def vector_store_factory():
    return FakeVectorStore


@pytest.fixture
def storage_factory():
    return FakeStorage


@pytest.fixture
def completion_provider():
    return FakeCompletionProvider()


@pytest.fixture
def completion_provider_factory():
    return FakeCompletionProvider


@pytest.fixture
def rag_service(vector_store, embedding_provider, completion_provider, settings):
    """RAGService wired to the in-memory fakes, with one stored document for acme."""
    db_manager = MagicMock()
    db_manager.get_redis_client.return_value = None
    service = RAGService(
        db_manager,
        settings,
        embedding_provider=embedding_provider,
        completion_provider=completion_provider,
        storage=FakeStorage({"acme/returns.md": b"Refunds are issued within thirty days."}),
    )
    service.vector_store.ensure_schema = AsyncMock()
    service.vector_store.verify_index_metric = AsyncMock(return_value="vector_l2_ops")
    service.retrieval.vector_store = vector_store
    service.ingestion.vector_store = vector_store
    return service
