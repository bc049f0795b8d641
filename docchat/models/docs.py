"""Document domain models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DocumentStatus(str, Enum):
    """Document lifecycle status."""

    uploaded = "uploaded"
    processing = "processing"
    processed = "processed"
    failed = "failed"


# Forward moves plus the manual re-entry into processing from failed/processed.
_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.uploaded: frozenset({DocumentStatus.processing}),
    DocumentStatus.processing: frozenset({DocumentStatus.processed, DocumentStatus.failed}),
    DocumentStatus.processed: frozenset({DocumentStatus.processing}),
    DocumentStatus.failed: frozenset({DocumentStatus.processing}),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    """Check whether a status change is a legal lifecycle move."""
    return target in _TRANSITIONS[current]


@dataclass(frozen=True)
class Uploaded:
    """Stored, not yet picked up by ingestion."""


@dataclass(frozen=True)
class Processing:
    """Ingestion in flight."""


@dataclass(frozen=True)
class Processed:
    """Indexed and searchable."""

    chunk_count: int


@dataclass(frozen=True)
class Failed:
    """Ingestion ended with an error."""

    message: str


DocumentState = Uploaded | Processing | Processed | Failed


class CamelModel(BaseModel):
    """Base model serialising field names as camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class DocumentOut(CamelModel):
    """Document summary returned by upload and list endpoints."""

    id: str
    filename: str
    content_type: str
    size: int
    status: DocumentStatus
    uploaded_at: datetime


class DocumentDetail(DocumentOut):
    """Single document detail."""

    chunk_count: int | None = None
    has_summary: bool = False
    error_message: str | None = None
    processed_at: datetime | None = None


class DocumentStatusOut(CamelModel):
    """Response for GET /documents/{id}/status."""

    id: str
    status: DocumentStatus
    filename: str


class DocumentStatusUpdate(CamelModel):
    """Status transition broadcast to SSE subscribers."""

    document_id: str
    status: DocumentStatus
    filename: str | None = None
    chunk_count: int | None = None
    error: str | None = None


class ChunkRecord(BaseModel):
    """A chunk of a document as stored in the vector index."""

    document_id: str
    filename: str
    chunk_index: int = Field(..., ge=0)
    total_chunks: int = Field(..., ge=1)
    text: str
    content_type: str
    word_count: int = Field(..., ge=0)

    @property
    def record_id(self) -> str:
        """Deterministic record id, stable across re-ingestion."""
        return chunk_record_id(self.document_id, self.chunk_index)


def chunk_record_id(document_id: str, chunk_index: int) -> str:
    """Build the vector-index record id for a chunk."""
    return f"{document_id}-chunk-{chunk_index}"


class SearchResult(CamelModel):
    """A chunk returned by nearest-neighbour search."""

    document_id: str
    filename: str
    text: str
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    chunk_index: int


class SearchRequest(BaseModel):
    """Request body for POST /documents/{id}/search."""

    query: Any = None


class SearchResponse(CamelModel):
    """Response for POST /documents/{id}/search."""

    query: str
    results: list[SearchResult]
    result_count: int
    message: str | None = None


class SummaryResponse(CamelModel):
    """Response for GET /documents/{id}/summary."""

    summary: str | None
    cached: bool = False
    generated_at: datetime | None = None
    message: str | None = None


class ChunkOut(CamelModel):
    """Chunk listing item."""

    chunk_index: int
    text: str
    word_count: int


class ChunkListResponse(CamelModel):
    """Response for GET /documents/{id}/chunks."""

    document_id: str
    chunks: list[ChunkOut]
    total_chunks: int
    message: str | None = None


class RetryResponse(CamelModel):
    """Response for POST /documents/{id}/retry."""

    id: str
    status: DocumentStatus
