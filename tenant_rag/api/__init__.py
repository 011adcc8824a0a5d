"""
API Package

REST endpoints for the tenant RAG service
"""
