"""RAG Data Models

This module defines the data models used for chunk storage, retrieval results,
conversation memory, and the request/response shapes of the RAG endpoints.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageRole(str, Enum):
    """Conversation message roles."""
    USER = "user"
    ASSISTANT = "assistant"


class DocumentMetadata(BaseModel):
    """Descriptive metadata attached to every chunk of an ingested document."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: Optional[str] = None
    role_access: Optional[List[str]] = Field(default=None, alias="roleAccess")
    category: Optional[str] = None
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")
    author: Optional[str] = None
    tags: Optional[List[str]] = None

    def to_payload(self) -> Dict[str, Any]:
        """Serialize using the camelCase keys stored in the metadata column."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Chunk(BaseModel):
    """A bounded slice of a document, stored with its embedding."""
    source: str
    chunk_index: int = Field(ge=0)
    content: str
    embedding: List[float]
    tenant_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Source(BaseModel):
    """A retrieved chunk as returned to callers."""
    id: Any
    source: str
    chunk_index: int
    content: str


class RetrievalResult(BaseModel):
    """Retrieved chunks ordered by ascending distance."""
    query: str
    tenant_id: str
    sources: List[Source] = Field(default_factory=list)
    top_k: int

    def __len__(self) -> int:
        return len(self.sources)


class ConversationMessage(BaseModel):
    """One turn of the caller-held conversation."""
    role: MessageRole
    content: str
    sources: Optional[List[Source]] = None


class QueryRequest(BaseModel):
    """Body of the query endpoint."""
    model_config = ConfigDict(populate_by_name=True)

    query: str = ""
    top_k: Optional[int] = Field(default=None, alias="topK")
    company_id: Optional[str] = Field(default=None, alias="companyId")
    conversation_history: List[ConversationMessage] = Field(
        default_factory=list, alias="conversationHistory"
    )

    @field_validator("query", mode="before")
    @classmethod
    def strip_query(cls, v):
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v


class IngestionRequest(BaseModel):
    """Body of the ingestion endpoints."""
    model_config = ConfigDict(populate_by_name=True)

    company_id: Optional[str] = Field(default=None, alias="companyId")
    bucket: Optional[str] = Field(default=None, alias="bucketName")
    folder_path: str = Field(default="", alias="folderPath")
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    refresh: bool = False

    @field_validator("bucket", mode="before")
    @classmethod
    def empty_bucket_is_default(cls, v):
        return v or None

    @field_validator("folder_path", mode="before")
    @classmethod
    def normalize_folder(cls, v):
        return (v or "").strip("/")


class IngestionResult(BaseModel):
    """Outcome of an ingestion or refresh run."""
    success: bool
    inserted: int = 0
    error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class DeleteResult(BaseModel):
    """Outcome of a delete request."""
    success: bool
    deleted: int = 0
    error: Optional[str] = None


class IndexStatus(BaseModel):
    """Whether a tenant has anything indexed."""
    model_config = ConfigDict(populate_by_name=True)

    has_data: bool = Field(alias="hasData")
    count: int


class DocumentEvent(BaseModel):
    """Business-event hook message asking for ingestion work."""
    model_config = ConfigDict(populate_by_name=True)

    event: Literal["ingest", "refresh", "delete", "ingest_business_data"]
    company_id: str = Field(alias="companyId")
    bucket: Optional[str] = None
    folder_path: str = Field(default="", alias="folderPath")
    source: Optional[str] = None
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    timestamp: Optional[datetime] = None
