"""Dependency functions for the RAG endpoints.

Provides dependency injection functions for FastAPI endpoints that need access to the RAG service.
"""

import asyncio

from fastapi import HTTPException, Request, status

from tenant_rag.database.connection import get_db_manager
from tenant_rag.rag.service import RAGService

# Serializes lazy construction so concurrent first requests share one service
_init_lock = asyncio.Lock()


async def get_rag_service(request: Request) -> RAGService:
    """Dependency function to get the RAG service instance.

    Args:
        request: The FastAPI request object

    Returns:
        RAGService: An initialized RAG service instance

    Raises:
        HTTPException: If the RAG service is not available
    """
    # Initialized once during application startup
    rag_service = getattr(request.app.state, "rag_service", None)
    if rag_service is not None:
        return rag_service

    async with _init_lock:
        rag_service = getattr(request.app.state, "rag_service", None)
        if rag_service is not None:
            return rag_service

        try:
            db_manager = await get_db_manager()
            rag_service = RAGService(db_manager)
            await rag_service.initialize()
        except Exception as e:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"RAG service unavailable: {str(e)}",
            ) from e

        request.app.state.rag_service = rag_service
    return rag_service
