"""Document ingestion - extract, chunk, index, and record the outcome.

Runs in the background after the upload is acknowledged. Every run that
enters ``processing`` ends with a terminal write (``processed`` or
``failed``) followed by a status notification.
"""

import asyncio
import logging
import time
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docchat.db import documents
from docchat.db.documents import DocumentNotFound, InvalidTransition
from docchat.docs.chunker import Chunker
from docchat.docs.extractor import ExtractionError, TextExtractor
from docchat.docs.notifications import NotificationHub
from docchat.docs.storage import LocalFileStorage
from docchat.docs.vector_index import VectorIndex
from docchat.models.docs import ChunkRecord, DocumentStatus, DocumentStatusUpdate
from docchat.utils.logging import PipelineLogger
from docchat.utils.metrics import ingestion_latency_ms, ingestion_total

logger = logging.getLogger(__name__)
pipeline_log = PipelineLogger(__name__)

INTERRUPTED_MESSAGE = "Ingestion interrupted"


class IngestionInterrupted(Exception):
    """The run was cancelled before reaching a terminal state."""

    pass


@dataclass(frozen=True)
class _Job:
    document_id: str
    filename: str
    content_type: str
    storage_key: str
    reindex: bool


def build_chunk_records(
    document_id: str, filename: str, content_type: str, pieces: list[str]
) -> list[ChunkRecord]:
    """Wrap chunk texts as index records with contiguous 0-based indices."""
    total = len(pieces)
    return [
        ChunkRecord(
            document_id=document_id,
            filename=filename,
            chunk_index=index,
            total_chunks=total,
            text=text,
            content_type=content_type,
            word_count=len(text.split()),
        )
        for index, text in enumerate(pieces)
    ]


class IngestionOrchestrator:
    """Coordinates extractor, chunker, vector index, and status updates."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: LocalFileStorage,
        extractor: TextExtractor,
        chunker: Chunker,
        index: VectorIndex,
        notifier: NotificationHub,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._extractor = extractor
        self._chunker = chunker
        self._index = index
        self._notifier = notifier
        self._tasks: dict[str, asyncio.Task[DocumentStatus]] = {}

    def start(self, document_id: str) -> asyncio.Task[DocumentStatus]:
        """Schedule ingestion and return its task handle.

        A document already being ingested by this process gets the in-flight
        task back instead of a second run.
        """
        if self.is_running(document_id):
            logger.info(f"Ingestion already running for document {document_id}")
            return self._tasks[document_id]

        task = asyncio.create_task(self.run(document_id), name=f"ingest-{document_id}")
        self._tasks[document_id] = task

        def _forget(done: asyncio.Task[DocumentStatus]) -> None:
            if self._tasks.get(document_id) is done:
                del self._tasks[document_id]

        task.add_done_callback(_forget)
        return task

    async def retry(self, document_id: str) -> asyncio.Task[DocumentStatus]:
        """Re-run ingestion for a failed document.

        A document left in ``processing`` with no run in flight here (an
        interrupted process) is marked failed first, then retried.

        Raises:
            DocumentNotFound: If the document does not exist
            InvalidTransition: If the document is not in ``failed``
        """
        async with self._session_factory() as session:
            doc = await documents.require_document(session, document_id)
            current = DocumentStatus(doc.status)
            if current is DocumentStatus.processing and not self.is_running(document_id):
                logger.warning(f"Document {document_id} stuck in processing, marking failed")
                await documents.mark_failed(
                    session, document_id, error_message=INTERRUPTED_MESSAGE
                )
                current = DocumentStatus.failed
        if current is not DocumentStatus.failed:
            raise InvalidTransition(document_id, current, DocumentStatus.processing)
        logger.info(f"Retrying ingestion for document {document_id}")
        return self.start(document_id)

    def is_running(self, document_id: str) -> bool:
        """Whether this process has an ingestion task in flight for the document."""
        task = self._tasks.get(document_id)
        return task is not None and not task.done()

    async def wait_idle(self) -> None:
        """Wait until no ingestion task is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Give in-flight runs a grace period, then cancel the rest."""
        if not self._tasks:
            return
        try:
            await asyncio.wait_for(self.wait_idle(), timeout=timeout)
        except TimeoutError:
            for task in list(self._tasks.values()):
                task.cancel()
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
            logger.warning("Cancelled unfinished ingestion tasks on shutdown")

    async def run(self, document_id: str) -> DocumentStatus:
        """Ingest one document end to end.

        Returns:
            Terminal status of the run, or the unchanged status when the
            document could not enter ``processing``
        """
        started = time.perf_counter()
        try:
            job = await self._begin(document_id)
        except DocumentNotFound:
            logger.warning(f"Document {document_id} vanished before ingestion started")
            return DocumentStatus.failed
        except InvalidTransition as e:
            logger.warning(str(e))
            return e.current

        self._notify(
            DocumentStatusUpdate(
                document_id=document_id,
                status=DocumentStatus.processing,
                filename=job.filename,
            )
        )

        try:
            text, chunk_count = await self._process(job)
            async with self._session_factory() as session:
                await documents.mark_processed(
                    session, document_id, extracted_text=text, chunk_count=chunk_count
                )
        except asyncio.CancelledError:
            # The terminal write must survive the cancellation that triggered it
            interrupted = IngestionInterrupted(INTERRUPTED_MESSAGE)
            await asyncio.shield(self._fail(job, interrupted, started))
            raise
        except Exception as e:
            return await self._fail(job, e, started)

        latency_ms = (time.perf_counter() - started) * 1000
        ingestion_total.labels(outcome="processed").inc()
        ingestion_latency_ms.labels(outcome="processed").observe(latency_ms)
        pipeline_log.log_step(
            "status",
            "success",
            document_id=document_id,
            latency_ms=latency_ms,
            status=DocumentStatus.processed.value,
            chunk_count=chunk_count,
        )
        self._notify(
            DocumentStatusUpdate(
                document_id=document_id,
                status=DocumentStatus.processed,
                filename=job.filename,
                chunk_count=chunk_count,
            )
        )
        return DocumentStatus.processed

    async def _begin(self, document_id: str) -> _Job:
        async with self._session_factory() as session:
            doc = await documents.require_document(session, document_id)
            # Anything indexed by an earlier run must be purged before re-upserting
            reindex = doc.status != DocumentStatus.uploaded.value
            doc = await documents.mark_processing(session, document_id)
            return _Job(
                document_id=document_id,
                filename=doc.filename,
                content_type=doc.content_type,
                storage_key=doc.storage_key,
                reindex=reindex,
            )

    async def _process(self, job: _Job) -> tuple[str, int]:
        path = self._storage.path_for(job.storage_key)
        text = await self._extractor.extract(path, job.content_type)
        if not text.strip():
            raise ExtractionError("No text could be extracted from the document")

        pieces = await self._chunker.chunk(text, job.filename)
        records = build_chunk_records(job.document_id, job.filename, job.content_type, pieces)

        if job.reindex:
            await self._index.delete_by_document(job.document_id)
        await self._index.upsert(records, job.document_id)
        return text, len(records)

    async def _fail(self, job: _Job, error: Exception, started: float) -> DocumentStatus:
        message = str(error) or type(error).__name__
        latency_ms = (time.perf_counter() - started) * 1000
        logger.error(f"Ingestion failed for document {job.document_id}: {message}", exc_info=error)

        try:
            async with self._session_factory() as session:
                await documents.mark_failed(session, job.document_id, error_message=message)
        except Exception:
            logger.exception(f"Could not record failure for document {job.document_id}")

        ingestion_total.labels(outcome="failed").inc()
        ingestion_latency_ms.labels(outcome="failed").observe(latency_ms)
        pipeline_log.log_step(
            "status",
            "failed",
            document_id=job.document_id,
            latency_ms=latency_ms,
            error_reason=message,
        )
        self._notify(
            DocumentStatusUpdate(
                document_id=job.document_id,
                status=DocumentStatus.failed,
                filename=job.filename,
                error=message,
            )
        )
        return DocumentStatus.failed

    def _notify(self, update: DocumentStatusUpdate) -> None:
        try:
            self._notifier.publish(update)
        except Exception:
            logger.exception(f"Status notification failed for document {update.document_id}")
