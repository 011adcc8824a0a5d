"""Query embedding cache backed by Redis.

Repeated questions skip the embedding round-trip. Every failure here is
logged and treated as a miss.
"""

import hashlib
import json
from typing import List, Optional

import structlog
from redis.asyncio import Redis

from tenant_rag.core.metrics import CACHE_HITS, CACHE_MISSES

logger = structlog.get_logger(__name__)


class EmbeddingCache:
    """Cache for query embeddings."""

    def __init__(self, redis: Optional[Redis], model_name: str, ttl: int = 3600):
        """Initialize the embedding cache.

        Args:
            redis: Redis client, or None to disable caching
            model_name: Embedding model the cached vectors came from
            ttl: Time to live in seconds
        """
        self.redis = redis
        self.model_name = model_name
        self.prefix = "rag:emb"
        self.default_ttl = ttl

    @property
    def enabled(self) -> bool:
        return self.redis is not None

    async def get(self, text: str) -> Optional[List[float]]:
        """Get a cached embedding for the text."""
        if not self.enabled:
            return None

        cache_key = self._make_key(text)
        try:
            data = await self.redis.get(cache_key)
        except Exception as e:
            logger.warning("Error reading embedding cache", key=cache_key, error=str(e))
            return None

        if not data:
            CACHE_MISSES.labels(cache_type="embedding").inc()
            return None

        CACHE_HITS.labels(cache_type="embedding").inc()
        return json.loads(data)

    async def set(self, text: str, embedding: List[float], ttl: Optional[int] = None) -> bool:
        """Cache an embedding for the text."""
        if not self.enabled or not embedding:
            return False

        cache_key = self._make_key(text)
        try:
            await self.redis.set(cache_key, json.dumps(embedding), ex=ttl or self.default_ttl)
            return True
        except Exception as e:
            logger.warning("Error writing embedding cache", key=cache_key, error=str(e))
            return False

    def _make_key(self, text: str) -> str:
        normalized = " ".join(text.lower().split())
        digest = hashlib.md5(normalized.encode("utf-8")).hexdigest()
        return f"{self.prefix}:{self.model_name}:{digest}"
