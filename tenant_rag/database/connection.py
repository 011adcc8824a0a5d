"""
Database connection management for the tenant RAG service.

One pooled async engine per database; every request or ingestion run acquires
its own session through ``session_scope`` and releases it on every exit path.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from redis.asyncio import ConnectionPool, Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tenant_rag.config.settings import Settings, get_settings
from tenant_rag.core.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


class DatabaseManager:
    """Database connection manager."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.engine: Optional[AsyncEngine] = None
        self.business_engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self.business_session_factory: Optional[async_sessionmaker] = None
        self.redis_client: Optional[Redis] = None
        self._initialized = False

    async def initialize(self):
        """Initialize all database connections."""
        if self._initialized:
            return

        await self._init_postgres()

        if self.settings.redis.enabled:
            await self._init_redis()

        self._initialized = True
        logger.info("Database connections initialized")

    def _create_engine(self, url: str) -> AsyncEngine:
        db = self.settings.database
        return create_async_engine(
            url,
            echo=self.settings.service.debug,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
            pool_pre_ping=True,
        )

    async def _init_postgres(self):
        """Initialize the PostgreSQL connection pools."""
        url = self.settings.database.async_url
        if not url:
            raise ConfigurationError("database", "DB_URL is not set")

        try:
            self.engine = self._create_engine(url)
            self.session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )

            business_url = self.settings.database.business_async_url
            if business_url and business_url != url:
                self.business_engine = self._create_engine(business_url)
                self.business_session_factory = async_sessionmaker(
                    self.business_engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )
            else:
                self.business_engine = self.engine
                self.business_session_factory = self.session_factory

            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

            logger.info("PostgreSQL connection pool initialized", pool_size=self.settings.database.pool_size)

        except ConfigurationError:
            raise
        except Exception as e:
            logger.error("Failed to initialize PostgreSQL connection", error=str(e))
            raise

    async def _init_redis(self):
        """Initialize Redis connection."""
        try:
            pool = ConnectionPool.from_url(
                self.settings.redis.url,
                max_connections=self.settings.redis.pool_size,
                decode_responses=True,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            self.redis_client = Redis(connection_pool=pool)
            await self.redis_client.ping()
            logger.info("Redis connection initialized")

        except Exception as e:
            # The cache is optional; queries run without it.
            logger.warning("Redis unavailable, embedding cache disabled", error=str(e))
            self.redis_client = None

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[AsyncSession]:
        """Yield a pooled session; commit on success, roll back on error."""
        if not self.session_factory:
            raise RuntimeError("PostgreSQL not initialized")

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                await session.rollback()
                raise

    @asynccontextmanager
    async def business_session(self) -> AsyncIterator[AsyncSession]:
        """Yield a read-only session on the business database."""
        if not self.business_session_factory:
            raise RuntimeError("Business database not initialized")

        async with self.business_session_factory() as session:
            yield session

    def get_redis_client(self) -> Optional[Redis]:
        """Get Redis client, or None when the cache is disabled."""
        return self.redis_client

    async def close(self):
        """Close all database connections."""
        try:
            if self.business_engine is not None and self.business_engine is not self.engine:
                await self.business_engine.dispose()

            if self.engine is not None:
                await self.engine.dispose()
                logger.info("PostgreSQL connections closed")

            if self.redis_client is not None:
                await self.redis_client.aclose()
                logger.info("Redis connections closed")

        except Exception as e:
            logger.error("Error closing database connections", error=str(e))
        finally:
            self._initialized = False

    async def health_check(self) -> dict:
        """Check health of all database connections."""
        health_status = {
            "postgres": {"status": "unknown", "error": None},
            "redis": {"status": "disabled", "error": None},
        }

        try:
            if self.engine is not None:
                async with self.engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
                health_status["postgres"]["status"] = "healthy"
            else:
                health_status["postgres"]["status"] = "not_initialized"
        except Exception as e:
            health_status["postgres"]["status"] = "unhealthy"
            health_status["postgres"]["error"] = str(e)

        if self.redis_client is not None:
            try:
                await self.redis_client.ping()
                health_status["redis"]["status"] = "healthy"
            except Exception as e:
                health_status["redis"]["status"] = "unhealthy"
                health_status["redis"]["error"] = str(e)

        return health_status


# Global database manager instance
db_manager = DatabaseManager()


async def get_db_manager() -> DatabaseManager:
    """Get the initialized global database manager."""
    await db_manager.initialize()
    return db_manager
