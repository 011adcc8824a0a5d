"""API v1 router configuration for the tenant RAG service."""
from fastapi import APIRouter

from tenant_rag.config.settings import get_settings

from .rag import router as rag_router

# Get settings
settings = get_settings()

# Create the main API router
api_router = APIRouter()

# Include RAG router if enabled
if settings.rag.enabled:
    api_router.include_router(rag_router, prefix="/rag", tags=["rag"])
