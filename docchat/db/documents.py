"""Repository for document record operations.

Status writes go through ``_transition`` which refuses moves the lifecycle
does not allow; ingestion is the only caller of the ``mark_*`` helpers.
"""

import logging
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.db.models import Document
from docchat.models.docs import (
    DocumentState,
    DocumentStatus,
    Failed,
    Processed,
    Processing,
    Uploaded,
    can_transition,
)

logger = logging.getLogger(__name__)


class DocumentNotFound(Exception):
    """No document with the given id."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document {document_id} not found")
        self.document_id = document_id


class InvalidTransition(Exception):
    """Requested status change is not a legal lifecycle move."""

    def __init__(self, document_id: str, current: DocumentStatus, target: DocumentStatus) -> None:
        super().__init__(f"Document {document_id} cannot move from {current.value} to {target.value}")
        self.document_id = document_id
        self.current = current
        self.target = target


def document_state(doc: Document) -> DocumentState:
    """Project a stored row onto the tagged lifecycle state."""
    status = DocumentStatus(doc.status)
    match status:
        case DocumentStatus.uploaded:
            return Uploaded()
        case DocumentStatus.processing:
            return Processing()
        case DocumentStatus.processed:
            return Processed(chunk_count=doc.chunk_count or 0)
        case DocumentStatus.failed:
            return Failed(message=doc.error_message or "Processing failed")


def ready_chunk_count(doc: Document) -> int | None:
    """Chunk count of a searchable document, None while it is not ready."""
    match document_state(doc):
        case Processed(chunk_count=count) if count > 0:
            return count
        case _:
            return None


async def create_document(
    session: AsyncSession,
    *,
    filename: str,
    content_type: str,
    size: int,
    storage_key: str,
) -> Document:
    """Insert a new document in the ``uploaded`` state."""
    doc = Document(
        filename=filename,
        content_type=content_type,
        size=size,
        storage_key=storage_key,
        status=DocumentStatus.uploaded.value,
        uploaded_at=datetime.utcnow(),
    )
    session.add(doc)
    await session.commit()
    await session.refresh(doc)
    return doc


async def get_document(session: AsyncSession, document_id: str) -> Document | None:
    """Fetch a document by id."""
    result = await session.execute(select(Document).where(Document.id == document_id))
    return result.scalar_one_or_none()


async def require_document(session: AsyncSession, document_id: str) -> Document:
    """Fetch a document by id or raise DocumentNotFound."""
    doc = await get_document(session, document_id)
    if doc is None:
        raise DocumentNotFound(document_id)
    return doc


async def list_documents(session: AsyncSession) -> list[Document]:
    """List all documents, newest first."""
    result = await session.execute(select(Document).order_by(Document.uploaded_at.desc()))
    return list(result.scalars().all())


async def delete_document(session: AsyncSession, document_id: str) -> bool:
    """Delete a document row. Returns whether a row was removed."""
    result = await session.execute(delete(Document).where(Document.id == document_id))
    await session.commit()
    return (result.rowcount or 0) > 0


async def _transition(
    session: AsyncSession, document_id: str, target: DocumentStatus
) -> Document:
    doc = await require_document(session, document_id)
    current = DocumentStatus(doc.status)
    if not can_transition(current, target):
        raise InvalidTransition(document_id, current, target)
    doc.status = target.value
    return doc


async def mark_processing(session: AsyncSession, document_id: str) -> Document:
    """Enter ``processing``; clears results of any previous run."""
    doc = await _transition(session, document_id, DocumentStatus.processing)
    doc.extracted_text = None
    doc.chunk_count = None
    doc.error_message = None
    doc.summary = None
    doc.summary_generated_at = None
    await session.commit()
    logger.info(f"Document {document_id} -> processing")
    return doc


async def mark_processed(
    session: AsyncSession, document_id: str, *, extracted_text: str, chunk_count: int
) -> Document:
    """Enter ``processed`` and persist the extraction results."""
    doc = await _transition(session, document_id, DocumentStatus.processed)
    doc.extracted_text = extracted_text
    doc.chunk_count = chunk_count
    doc.error_message = None
    doc.processed_at = datetime.utcnow()
    await session.commit()
    logger.info(f"Document {document_id} -> processed ({chunk_count} chunks)")
    return doc


async def mark_failed(session: AsyncSession, document_id: str, *, error_message: str) -> Document:
    """Enter ``failed`` with a human-readable message."""
    doc = await _transition(session, document_id, DocumentStatus.failed)
    doc.error_message = error_message
    await session.commit()
    logger.warning(f"Document {document_id} -> failed: {error_message}")
    return doc


async def save_summary(session: AsyncSession, document_id: str, summary: str) -> Document:
    """Cache a generated summary on the document."""
    doc = await require_document(session, document_id)
    doc.summary = summary
    doc.summary_generated_at = datetime.utcnow()
    await session.commit()
    return doc
