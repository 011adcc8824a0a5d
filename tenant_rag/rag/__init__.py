"""Retrieval-Augmented Generation pipeline

Chunking, embedding, pgvector storage, tenant-scoped retrieval and streamed
answer synthesis over each company's own documents.
"""
