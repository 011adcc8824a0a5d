"""
RAG API endpoints: streamed answers and tenant index management.
"""
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse

from tenant_rag.core.exceptions import ValidationError
from tenant_rag.rag.dependencies import get_rag_service
from tenant_rag.rag.models import IndexStatus, IngestionRequest, IngestionResult, QueryRequest
from tenant_rag.rag.service import RAGService

logger = structlog.get_logger(__name__)
router = APIRouter()

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _ingestion_response(result: IngestionResult) -> JSONResponse:
    return JSONResponse(status_code=200 if result.success else 500, content=result.to_response())


def _require_company(company_id: Optional[str]) -> str:
    if not company_id or not company_id.strip():
        raise ValidationError("Missing companyId")
    return company_id.strip()


@router.post("/query")
async def query(request: QueryRequest, rag_service: RAGService = Depends(get_rag_service)):
    """Answer a question from the tenant's documents as an event stream."""
    stream = await rag_service.answer(request)
    return StreamingResponse(stream, media_type="text/event-stream", headers=STREAM_HEADERS)


@router.post("/ingest")
async def ingest_business_data(request: IngestionRequest, rag_service: RAGService = Depends(get_rag_service)):
    """Index the tenant's structured business data (deprecated path)."""
    company_id = _require_company(request.company_id)
    result = await rag_service.ingestion.ingest_business_data(company_id, request.metadata)
    return _ingestion_response(result)


@router.post("/ingest-storage")
async def ingest_storage(request: IngestionRequest, rag_service: RAGService = Depends(get_rag_service)):
    """Ingest the tenant's stored documents, or refresh them when ``refresh`` is set."""
    _require_company(request.company_id)
    if request.refresh:
        result = await rag_service.ingestion.refresh(request)
    else:
        result = await rag_service.ingestion.ingest_from_storage(request)
    return _ingestion_response(result)


@router.post("/refresh")
async def refresh(request: IngestionRequest, rag_service: RAGService = Depends(get_rag_service)):
    """Delete the tenant's chunks and re-ingest from storage."""
    _require_company(request.company_id)
    result = await rag_service.ingestion.refresh(request)
    return _ingestion_response(result)


@router.delete("/documents")
async def delete_documents(
    company_id: Optional[str] = Query(None, alias="companyId"),
    source: Optional[str] = Query(None),
    rag_service: RAGService = Depends(get_rag_service),
):
    """Delete the tenant's chunks, optionally for one source."""
    result = await rag_service.ingestion.delete(_require_company(company_id), source or None)
    return JSONResponse(
        status_code=200 if result.success else 500,
        content=result.model_dump(exclude_none=True),
    )


@router.get("/check", response_model=IndexStatus, response_model_by_alias=True)
async def check(
    company_id: Optional[str] = Query(None, alias="companyId"),
    rag_service: RAGService = Depends(get_rag_service),
):
    """Report whether the tenant has indexed documents."""
    return await rag_service.ingestion.check(_require_company(company_id))
