"""
Operator CLI: run one ingestion for a tenant.

Usage:
    tenant-rag-ingest <companyId>
    tenant-rag-ingest <companyId> --folder policies --refresh
    tenant-rag-ingest <companyId> --legacy
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

import structlog

from tenant_rag.config.settings import get_settings
from tenant_rag.core.exceptions import RAGServiceException
from tenant_rag.core.logging import configure_logging
from tenant_rag.database.connection import DatabaseManager
from tenant_rag.rag.models import IngestionRequest, IngestionResult
from tenant_rag.rag.service import RAGService

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenant-rag-ingest",
        description="Index a company's documents for retrieval",
    )
    parser.add_argument("company_id", help="Tenant (company) id")
    parser.add_argument("--bucket", help="Storage bucket (default from settings)")
    parser.add_argument("--folder", default="", help="Folder under the company prefix")
    parser.add_argument("--refresh", action="store_true", help="Delete the tenant's chunks first")
    parser.add_argument(
        "--legacy",
        action="store_true",
        help="Index structured business data instead of stored documents (deprecated)",
    )
    return parser


async def run(args: argparse.Namespace) -> IngestionResult:
    """Run the requested ingestion against a fresh connection pool."""
    settings = get_settings()
    db_manager = DatabaseManager(settings)
    try:
        await db_manager.initialize()
        service = RAGService(db_manager, settings)
        await service.initialize()

        if args.legacy:
            return await service.ingestion.ingest_business_data(args.company_id)

        request = IngestionRequest(company_id=args.company_id, bucket=args.bucket, folder_path=args.folder)
        if args.refresh:
            return await service.ingestion.refresh(request)
        return await service.ingestion.ingest_from_storage(request)
    finally:
        await db_manager.close()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Exit code 1 when ingestion does not succeed."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    # stdout carries the JSON result
    configure_logging(settings.monitoring.log_level, "console", stream=sys.stderr)

    try:
        result = asyncio.run(run(args))
    except RAGServiceException as e:
        logger.error("Ingestion failed", tenant_id=args.company_id, error=e.message)
        result = IngestionResult(success=False, inserted=0, error=e.message)

    print(json.dumps(result.to_response(), indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
