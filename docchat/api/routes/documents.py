"""Document endpoints - upload, listing, status, summary, chunks, search, events."""

import logging
import mimetypes
from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import APIRouter, Depends, File, Response, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docchat.api.deps import (
    get_index,
    get_ingestion,
    get_llm,
    get_notifier,
    get_session,
    get_session_factory,
    get_settings_dep,
    get_storage,
)
from docchat.api.errors import ApiError
from docchat.api.sse import sse_response
from docchat.config import Settings
from docchat.db import documents
from docchat.db.documents import InvalidTransition
from docchat.db.models import Document
from docchat.docs.ingest import IngestionOrchestrator
from docchat.docs.notifications import NotificationHub
from docchat.docs.storage import LocalFileStorage
from docchat.docs.summary import get_or_create_summary
from docchat.docs.vector_index import VectorIndex, document_filter
from docchat.llm.client import LLMClient
from docchat.models.docs import (
    ChunkListResponse,
    ChunkOut,
    DocumentDetail,
    DocumentOut,
    DocumentStatus,
    DocumentStatusOut,
    Failed,
    Processed,
    RetryResponse,
    SearchRequest,
    SearchResponse,
    SummaryResponse,
)
from docchat.models.events import NotificationEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])


def _content_type(file: UploadFile) -> str:
    declared = (file.content_type or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    guessed, _ = mimetypes.guess_type(file.filename or "")
    return guessed or declared


def _detail(doc: Document) -> DocumentDetail:
    chunk_count: int | None = None
    error_message: str | None = None
    match documents.document_state(doc):
        case Processed(chunk_count=count):
            chunk_count = count
        case Failed(message=message):
            error_message = message

    return DocumentDetail(
        id=doc.id,
        filename=doc.filename,
        content_type=doc.content_type,
        size=doc.size,
        status=DocumentStatus(doc.status),
        uploaded_at=doc.uploaded_at,
        chunk_count=chunk_count,
        has_summary=bool(doc.summary),
        error_message=error_message,
        processed_at=doc.processed_at,
    )


@router.post("", response_model=DocumentOut, status_code=status.HTTP_201_CREATED)
async def upload_document(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
    storage: Annotated[LocalFileStorage, Depends(get_storage)],
    ingestion: Annotated[IngestionOrchestrator, Depends(get_ingestion)],
    file: Annotated[UploadFile | None, File()] = None,
) -> DocumentOut:
    """Store an upload and start ingestion in the background.

    The response is returned as soon as the record exists; processing
    progress arrives on ``GET /documents/events``.
    """
    if file is None or not file.filename:
        raise ApiError(status.HTTP_400_BAD_REQUEST, "NO_FILE", "No file uploaded")

    content_type = _content_type(file)
    if content_type not in settings.content_types:
        raise ApiError(
            status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            "UNSUPPORTED_FILE_TYPE",
            f"Unsupported file type: {content_type or 'unknown'}",
        )

    data = await file.read()
    if len(data) > settings.max_upload_bytes:
        raise ApiError(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            "FILE_TOO_LARGE",
            f"File exceeds the {settings.max_upload_bytes} byte limit",
        )

    stored = await storage.save(file.filename, data)
    doc = await documents.create_document(
        session,
        filename=file.filename,
        content_type=content_type,
        size=len(data),
        storage_key=stored.key,
    )
    logger.info(f"Uploaded document {doc.id} ({file.filename}, {content_type}, {len(data)} bytes)")

    ingestion.start(doc.id)
    return DocumentOut.model_validate(doc)


@router.get("", response_model=list[DocumentOut])
async def list_documents(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> list[DocumentOut]:
    """List documents, newest first."""
    docs = await documents.list_documents(session)
    return [DocumentOut.model_validate(doc) for doc in docs]


# Declared before /{document_id} so "events" is not taken for an id
@router.get("/events")
async def document_events(
    notifier: Annotated[NotificationHub, Depends(get_notifier)],
) -> StreamingResponse:
    """Long-lived SSE channel of document status transitions."""
    subscription = notifier.subscribe()

    async def stream() -> AsyncIterator[NotificationEvent]:
        try:
            async for event in subscription.events():
                yield event
        finally:
            notifier.unsubscribe(subscription.client_id)

    return sse_response(stream())


@router.get("/{document_id}", response_model=DocumentDetail)
async def get_document(
    document_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> DocumentDetail:
    doc = await documents.require_document(session, document_id)
    return _detail(doc)


@router.get("/{document_id}/status", response_model=DocumentStatusOut)
async def get_document_status(
    document_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
) -> DocumentStatusOut:
    doc = await documents.require_document(session, document_id)
    return DocumentStatusOut(id=doc.id, status=DocumentStatus(doc.status), filename=doc.filename)


@router.get("/{document_id}/summary", response_model=SummaryResponse)
async def get_document_summary(
    document_id: str,
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
    index: Annotated[VectorIndex, Depends(get_index)],
    llm: Annotated[LLMClient, Depends(get_llm)],
) -> SummaryResponse:
    """Return the cached summary, generating it on first request."""
    return await get_or_create_summary(
        session_factory, index, llm, document_id, chunk_count=settings.summary_chunk_count
    )


@router.get("/{document_id}/chunks", response_model=ChunkListResponse)
async def get_document_chunks(
    document_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    index: Annotated[VectorIndex, Depends(get_index)],
) -> ChunkListResponse:
    """List all chunks of a processed document in index order."""
    doc = await documents.require_document(session, document_id)

    total = documents.ready_chunk_count(doc)
    if total is None:
        return ChunkListResponse(
            document_id=document_id,
            chunks=[],
            total_chunks=0,
            message=f"Chunks not available (document status: {doc.status})",
        )

    try:
        records = await index.list_chunks(document_id, total)
    except Exception as e:
        logger.warning(f"Chunk listing failed for document {document_id}: {e}")
        return ChunkListResponse(
            document_id=document_id,
            chunks=[],
            total_chunks=0,
            message="Chunks are temporarily unavailable",
        )

    return ChunkListResponse(
        document_id=document_id,
        chunks=[
            ChunkOut(chunk_index=r.chunk_index, text=r.text, word_count=r.word_count)
            for r in records
        ],
        total_chunks=len(records),
    )


@router.post("/{document_id}/search", response_model=SearchResponse)
async def search_document(
    document_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings_dep)],
    index: Annotated[VectorIndex, Depends(get_index)],
    body: SearchRequest | None = None,
) -> SearchResponse:
    """Search within one document.

    Documents that are not searchable yet return an empty result with a
    message instead of an error.
    """
    query = body.query if body is not None else None
    if not isinstance(query, str) or not query.strip():
        raise ApiError(
            status.HTTP_400_BAD_REQUEST, "INVALID_QUERY", "Query must be a non-empty string"
        )

    doc = await documents.require_document(session, document_id)
    if documents.ready_chunk_count(doc) is None:
        return SearchResponse(
            query=query,
            results=[],
            result_count=0,
            message=f"Document is not available for search (status: {doc.status})",
        )

    try:
        results = await index.search_by_text(
            query, settings.retrieval_top_k, document_filter([document_id])
        )
    except Exception as e:
        logger.warning(f"Search failed for document {document_id}: {e}")
        return SearchResponse(
            query=query,
            results=[],
            result_count=0,
            message="Search is temporarily unavailable",
        )

    return SearchResponse(query=query, results=results, result_count=len(results))


@router.post(
    "/{document_id}/retry",
    response_model=RetryResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_document(
    document_id: str,
    ingestion: Annotated[IngestionOrchestrator, Depends(get_ingestion)],
) -> RetryResponse:
    """Re-run ingestion for a document whose last run failed."""
    try:
        await ingestion.retry(document_id)
    except InvalidTransition as e:
        raise ApiError(
            status.HTTP_409_CONFLICT,
            "DOCUMENT_NOT_FAILED",
            f"Only failed documents can be retried (status: {e.current.value})",
        ) from e
    return RetryResponse(id=document_id, status=DocumentStatus.processing)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: str,
    session: Annotated[AsyncSession, Depends(get_session)],
    storage: Annotated[LocalFileStorage, Depends(get_storage)],
    index: Annotated[VectorIndex, Depends(get_index)],
) -> Response:
    """Delete a document.

    Vector purge and file removal are best-effort; the record is removed
    even when either fails.
    """
    doc = await documents.require_document(session, document_id)
    storage_key = doc.storage_key

    try:
        await index.delete_by_document(document_id)
    except Exception as e:
        logger.warning(f"Vector purge failed for document {document_id}: {e}")

    try:
        await storage.delete(storage_key)
    except Exception as e:
        logger.warning(f"File delete failed for document {document_id}: {e}")

    await documents.delete_document(session, document_id)
    logger.info(f"Deleted document {document_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
