"""
Metrics configuration for monitoring and observability.
"""
from prometheus_client import Counter, Histogram

# Query metrics
RAG_QUERIES = Counter("tenant_rag_queries_total", "Total RAG queries", ["status"])
RAG_QUERY_TIME = Histogram("tenant_rag_retrieval_duration_seconds", "Embedding plus similarity search time")

# Ingestion metrics
RAG_CHUNKS_INGESTED = Counter("tenant_rag_chunks_ingested_total", "Chunks written to the vector store", ["path"])
RAG_CHUNKS_SKIPPED = Counter("tenant_rag_chunks_skipped_total", "Chunks or files skipped during ingestion", ["reason"])
RAG_INGESTION_RUNS = Counter("tenant_rag_ingestion_runs_total", "Ingestion runs", ["path", "status"])

# Provider metrics
EMBEDDING_REQUESTS = Counter("tenant_rag_embedding_requests_total", "Embedding provider calls", ["provider", "status"])
COMPLETION_STREAMS = Counter("tenant_rag_completion_streams_total", "Completion streams by outcome", ["status"])

# Cache metrics
CACHE_HITS = Counter("tenant_rag_cache_hits_total", "Total cache hits", ["cache_type"])
CACHE_MISSES = Counter("tenant_rag_cache_misses_total", "Total cache misses", ["cache_type"])
