"""Document summaries - generated once from the leading chunks, then cached."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docchat.db import documents
from docchat.docs.vector_index import VectorIndex
from docchat.llm.client import LLMClient
from docchat.models.docs import SummaryResponse

logger = logging.getLogger(__name__)


async def get_or_create_summary(
    session_factory: async_sessionmaker[AsyncSession],
    index: VectorIndex,
    llm: LLMClient,
    document_id: str,
    *,
    chunk_count: int = 5,
) -> SummaryResponse:
    """Return the cached summary or generate one from the first chunks.

    Not-ready documents and provider failures yield ``summary=None`` with a
    message rather than an error.

    Raises:
        DocumentNotFound: If the document does not exist
    """
    async with session_factory() as session:
        doc = await documents.require_document(session, document_id)

    if doc.summary:
        return SummaryResponse(
            summary=doc.summary, cached=True, generated_at=doc.summary_generated_at
        )

    ready = documents.ready_chunk_count(doc)
    if ready is None:
        return SummaryResponse(
            summary=None, message="Summary not available until the document is processed"
        )

    try:
        chunks = await index.list_chunks(document_id, min(chunk_count, ready))
        texts = [c.text for c in chunks]
        if not texts and doc.extracted_text:
            texts = [doc.extracted_text]
        if not texts:
            return SummaryResponse(summary=None, message="No content available to summarise")
        summary = await llm.generate_summary(texts)
    except Exception as e:
        logger.warning(f"Summary generation failed for document {document_id}: {e}")
        return SummaryResponse(summary=None, message="Summary generation failed, try again later")

    async with session_factory() as session:
        doc = await documents.save_summary(session, document_id, summary)

    logger.info(f"Generated summary for document {document_id}")
    return SummaryResponse(summary=summary, cached=False, generated_at=doc.summary_generated_at)
