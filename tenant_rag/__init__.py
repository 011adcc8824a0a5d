"""
Tenant RAG Service

Retrieval-augmented answering over company documents: ingestion into a
pgvector table partitioned by tenant, similarity retrieval, and streamed,
source-cited answers.
"""

__version__ = "1.0.0"
__description__ = "Tenant-scoped RAG service for ERP company knowledge"
