"""Embedding Providers for the RAG pipeline

This module converts text into fixed-dimension vectors through an external
provider (OpenAI embeddings API) or a local sentence-transformers model.
Provider calls are retried with bounded exponential backoff; anything that
still fails surfaces as ``EmbeddingError``.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np
import openai
import structlog
from openai import AsyncOpenAI
from sentence_transformers import SentenceTransformer

from tenant_rag.config.settings import Settings, get_settings
from tenant_rag.core.exceptions import ConfigurationError, EmbeddingError, should_retry
from tenant_rag.core.metrics import EMBEDDING_REQUESTS

logger = structlog.get_logger(__name__)


def is_usable_embedding(embedding: Optional[Sequence[float]]) -> bool:
    """Return False for missing, empty or all-zero vectors."""
    if embedding is None or len(embedding) == 0:
        return False
    vector = np.asarray(embedding, dtype=float)
    return bool(np.all(np.isfinite(vector)) and np.any(vector))


class EmbeddingProvider(ABC):
    """Base class for embedding providers."""

    provider_name = "base"

    def __init__(
        self,
        model_name: str,
        dimension: int,
        max_retries: int = 3,
        initial_backoff: float = 0.5,
        max_backoff: float = 8.0,
    ):
        self.model_name = model_name
        self._vector_size = dimension
        self.max_retries = max(1, max_retries)
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff

    @property
    def vector_size(self) -> int:
        """Get the configured vector size."""
        return self._vector_size

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Vector embedding (may be empty if the provider returned nothing)
        """
        embeddings = await self.embed_batch([text])
        return embeddings[0] if embeddings else []

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts, preserving input order.

        Args:
            texts: List of texts to embed

        Returns:
            List of vector embeddings
        """
        if not texts:
            return []

        backoff = self.initial_backoff
        for attempt in range(self.max_retries):
            try:
                embeddings = await self._embed_batch(texts)
                EMBEDDING_REQUESTS.labels(provider=self.provider_name, status="success").inc()
                for embedding in embeddings:
                    self._check_dimension(embedding)
                return embeddings

            except ConfigurationError:
                raise

            except Exception as e:
                EMBEDDING_REQUESTS.labels(provider=self.provider_name, status="error").inc()
                error = e if isinstance(e, EmbeddingError) else EmbeddingError(
                    self.provider_name, str(e), retryable=should_retry(e)
                )

                if not should_retry(error) or attempt == self.max_retries - 1:
                    logger.error(
                        "Embedding request failed",
                        provider=self.provider_name,
                        model=self.model_name,
                        attempts=attempt + 1,
                        error=str(e),
                    )
                    raise error from e

                sleep_time = min(backoff * (2 ** attempt) + random.uniform(0, backoff), self.max_backoff)
                logger.warning(
                    "Embedding request failed, retrying",
                    provider=self.provider_name,
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    sleep_seconds=round(sleep_time, 2),
                    error=str(e),
                )
                await asyncio.sleep(sleep_time)

        raise EmbeddingError(self.provider_name, f"no embedding after {self.max_retries} attempts")

    def _check_dimension(self, embedding: Sequence[float]):
        # Empty vectors are the caller's to skip; a wrong non-zero size means the
        # table and the provider disagree.
        if embedding and len(embedding) != self._vector_size:
            raise ConfigurationError(
                "embeddings",
                f"model {self.model_name} returned {len(embedding)} dimensions, "
                f"vector store expects {self._vector_size}",
            )

    @abstractmethod
    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Call the provider once for a batch of texts."""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by the OpenAI embeddings API."""

    provider_name = "openai"

    def __init__(self, api_key: Optional[str], model_name: str, dimension: int, **kwargs):
        super().__init__(model_name, dimension, **kwargs)
        self.client = AsyncOpenAI(api_key=api_key) if api_key else None

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        if self.client is None:
            raise EmbeddingError(self.provider_name, "OpenAI API key is not configured")

        try:
            response = await self.client.embeddings.create(model=self.model_name, input=texts)
        except (openai.RateLimitError, openai.APITimeoutError, openai.APIConnectionError) as e:
            raise EmbeddingError(self.provider_name, str(e), retryable=True) from e
        except openai.APIStatusError as e:
            raise EmbeddingError(self.provider_name, str(e), retryable=e.status_code >= 500) from e

        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding or []) for item in ordered]


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by a local sentence-transformers model."""

    provider_name = "sentence_transformers"

    def __init__(self, model_name: str, dimension: int, device: str = "cpu", **kwargs):
        super().__init__(model_name, dimension, **kwargs)
        self.device = device
        self._model = None

    def _load_model(self):
        if self._model is None:
            self._model = SentenceTransformer(self.model_name, device=self.device)
            logger.info(
                "Embedding model initialized",
                model=self.model_name,
                vector_size=self._model.get_sentence_embedding_dimension(),
            )
        return self._model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        model = self._load_model()
        return [vector.tolist() for vector in model.encode(texts, normalize_embeddings=True)]

    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        # Run in thread pool to avoid blocking the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._encode, texts)


def create_embedding_provider(settings: Optional[Settings] = None) -> EmbeddingProvider:
    """Build the embedding provider selected in settings."""
    settings = settings or get_settings()
    config = settings.embedding
    retry_kwargs = {
        "max_retries": config.max_retries,
        "initial_backoff": config.initial_backoff,
        "max_backoff": config.max_backoff,
    }

    if config.provider == "sentence_transformers":
        return SentenceTransformerEmbeddingProvider(
            model_name=config.model,
            dimension=config.dimension,
            device=config.device,
            **retry_kwargs,
        )

    return OpenAIEmbeddingProvider(
        api_key=settings.llm.openai_api_key,
        model_name=config.model,
        dimension=config.dimension,
        **retry_kwargs,
    )
