"""
Centralized exception handling for the tenant RAG service.
"""
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class RAGServiceException(Exception):
    """Base exception for the RAG service."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
        user_message: Optional[str] = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.status_code = status_code
        self.user_message = user_message or message

        super().__init__(self.message)


class ConfigurationError(RAGServiceException):
    """Missing credentials, connection strings or inconsistent index configuration."""

    def __init__(self, component: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Configuration error in {component}: {message}",
            error_code="CONFIGURATION_ERROR",
            details=details or {"component": component},
            status_code=500,
        )


class ValidationError(RAGServiceException):
    """Request validation errors, raised before any I/O."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            details=details,
            status_code=400,
        )


class ProviderError(RAGServiceException):
    """Embedding or completion provider failure."""

    def __init__(
        self,
        provider: str,
        operation: str,
        message: str,
        retryable: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retryable = retryable
        super().__init__(
            message=f"{provider} {operation} failed: {message}",
            error_code="PROVIDER_ERROR",
            details=details or {"provider": provider, "operation": operation},
            status_code=502,
        )


class EmbeddingError(ProviderError):
    """Embedding provider failure."""

    def __init__(self, provider: str, message: str, retryable: bool = False, details: Optional[Dict[str, Any]] = None):
        super().__init__(provider, "embedding", message, retryable=retryable, details=details)
        self.error_code = "EMBEDDING_ERROR"


class CompletionError(ProviderError):
    """Completion provider failure."""

    def __init__(self, provider: str, message: str, retryable: bool = False, details: Optional[Dict[str, Any]] = None):
        super().__init__(provider, "completion", message, retryable=retryable, details=details)
        self.error_code = "COMPLETION_ERROR"


class StoreError(RAGServiceException):
    """Vector store connectivity or write failure."""

    def __init__(self, operation: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Vector store {operation} failed: {message}",
            error_code="STORE_ERROR",
            details=details or {"operation": operation},
            status_code=503,
        )


class StorageError(RAGServiceException):
    """Object storage listing or download failure."""

    def __init__(self, operation: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Storage {operation} failed: {message}",
            error_code="STORAGE_ERROR",
            details=details or {"operation": operation},
            status_code=502,
        )


def handle_exception(exc: Exception) -> Dict[str, Any]:
    """Convert any exception to a standardized error response."""
    if isinstance(exc, RAGServiceException):
        return {
            "error": exc.error_code,
            "message": exc.user_message,
            "details": exc.details,
            "status_code": exc.status_code,
        }

    logger.error("Unexpected exception", error=str(exc), exc_info=True)

    return {
        "error": "INTERNAL_ERROR",
        "message": "An unexpected error occurred",
        "details": {},
        "status_code": 500,
    }


def should_retry(exc: Exception) -> bool:
    """Determine if a provider call should be retried."""
    if isinstance(exc, ProviderError):
        return exc.retryable
    if isinstance(exc, RAGServiceException):
        return False
    return isinstance(exc, (ConnectionError, TimeoutError))
