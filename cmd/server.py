"""
Tenant RAG - Server Entry Point

Starts the FastAPI application with uvicorn.

Usage:
    python cmd/server.py

Or with specific configuration:
    python cmd/server.py --host 127.0.0.1 --port 9000 --reload
"""

import argparse

import uvicorn

from tenant_rag.config.settings import get_settings


def main():
    """Main application entry point."""
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Tenant RAG service")
    parser.add_argument("--host", default=settings.service.host, help="API host")
    parser.add_argument("--port", type=int, default=settings.service.port, help="API port")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    parser.add_argument("--workers", type=int, default=1, help="Number of worker processes")
    args = parser.parse_args()

    uvicorn.run(
        "tenant_rag.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=None if args.reload else args.workers,
        log_level=settings.monitoring.log_level,
    )


if __name__ == "__main__":
    main()
