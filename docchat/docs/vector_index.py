"""Vector index client - chunk upsert, text search, and purge by document.

``PineconeIndex`` wraps Pinecone's integrated-inference records API via
httpx: the index embeds the ``text`` field itself, so records are sent as
text plus flat metadata. ``InMemoryVectorIndex`` is a dev/test stand-in with
token-overlap scoring and the same filter semantics.
"""

import json
import logging
from typing import Any, Protocol

import httpx

from docchat.config import Settings
from docchat.models.docs import ChunkRecord, SearchResult, chunk_record_id
from docchat.utils.logging import PipelineLogger

logger = logging.getLogger(__name__)
pipeline_log = PipelineLogger(__name__)

# Provider limit for records per upsert request
UPSERT_BATCH_SIZE = 96
FETCH_BATCH_SIZE = 100

RECORD_FIELDS = [
    "text",
    "document_id",
    "filename",
    "chunk_index",
    "total_chunks",
    "content_type",
    "word_count",
]

Filter = dict[str, Any]


class VectorIndexError(Exception):
    """Vector index request failed."""

    pass


class VectorIndex(Protocol):
    """Protocol for vector index implementations."""

    name: str

    async def upsert(self, chunks: list[ChunkRecord], document_id: str) -> int:
        """Write chunk records; same record id overwrites. Returns records written."""
        ...

    async def search_by_text(
        self, query: str, top_k: int, filter: Filter | None = None
    ) -> list[SearchResult]:
        """Search by query text, best match first, scores in [0, 1]."""
        ...

    async def delete_by_document(self, document_id: str) -> None:
        """Remove every record belonging to a document."""
        ...

    async def list_chunks(self, document_id: str, total_chunks: int) -> list[ChunkRecord]:
        """Fetch a document's chunks in index order."""
        ...

    async def close(self) -> None: ...


def document_filter(document_ids: list[str]) -> Filter:
    """Metadata filter restricting results to the given documents."""
    if len(document_ids) == 1:
        return {"document_id": {"$eq": document_ids[0]}}
    return {"document_id": {"$in": list(document_ids)}}


def sanitize_metadata(values: dict[str, Any]) -> dict[str, str | int | float | bool]:
    """Keep scalar metadata; stringify anything else and drop ``None``."""
    clean: dict[str, str | int | float | bool] = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, (str, int, float, bool)):
            clean[key] = value
        else:
            clean[key] = str(value)
    return clean


def _clamp(score: float) -> float:
    return max(0.0, min(1.0, float(score)))


def _record_from_fields(fields: dict[str, Any], fallback_document_id: str = "") -> ChunkRecord:
    text = str(fields.get("text", ""))
    return ChunkRecord(
        document_id=str(fields.get("document_id", fallback_document_id)),
        filename=str(fields.get("filename", "")),
        chunk_index=int(fields.get("chunk_index", 0)),
        total_chunks=max(int(fields.get("total_chunks", 1)), 1),
        text=text,
        content_type=str(fields.get("content_type", "")),
        word_count=int(fields.get("word_count", len(text.split()))),
    )


def _matches_filter(record: ChunkRecord, filter: Filter | None) -> bool:
    if not filter:
        return True
    for field, condition in filter.items():
        value = getattr(record, field, None)
        if isinstance(condition, dict):
            if "$eq" in condition and value != condition["$eq"]:
                return False
            if "$in" in condition and value not in condition["$in"]:
                return False
        elif value != condition:
            return False
    return True


class PineconeIndex:
    """Pinecone records API client over httpx."""

    name = "pinecone"

    def __init__(
        self,
        *,
        api_key: str,
        index_host: str,
        namespace: str = "default",
        api_version: str = "2025-01",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Pinecone API key (read from settings)
            index_host: Index host, with or without scheme
            namespace: Namespace all records live in
            api_version: Value of the ``X-Pinecone-API-Version`` header
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use ``MockTransport``)
        """
        base_url = index_host if index_host.startswith("http") else f"https://{index_host}"
        self.namespace = namespace
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Api-Key": api_key,
                "X-Pinecone-API-Version": api_version,
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def _endpoint_upsert(self) -> str:
        return f"/records/namespaces/{self.namespace}/upsert"

    def _endpoint_search(self) -> str:
        return f"/records/namespaces/{self.namespace}/search"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise VectorIndexError(
                f"{method} {url} failed with status {e.response.status_code}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise VectorIndexError(f"{method} {url} failed: {e}") from e
        return response

    async def upsert(self, chunks: list[ChunkRecord], document_id: str) -> int:
        records = [
            {
                "_id": chunk.record_id,
                **sanitize_metadata(chunk.model_dump()),
            }
            for chunk in chunks
        ]

        for start in range(0, len(records), UPSERT_BATCH_SIZE):
            batch = records[start : start + UPSERT_BATCH_SIZE]
            body = "\n".join(json.dumps(record) for record in batch)
            await self._request(
                "POST",
                self._endpoint_upsert(),
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/x-ndjson"},
            )

        pipeline_log.log_step("index", "success", document_id=document_id, upserted=len(records))
        return len(records)

    async def search_by_text(
        self, query: str, top_k: int, filter: Filter | None = None
    ) -> list[SearchResult]:
        search: dict[str, Any] = {"inputs": {"text": query}, "top_k": top_k}
        if filter:
            search["filter"] = filter

        response = await self._request(
            "POST", self._endpoint_search(), json={"query": search, "fields": RECORD_FIELDS}
        )
        hits = response.json().get("result", {}).get("hits", [])

        results = []
        for hit in hits:
            record = _record_from_fields(hit.get("fields", {}))
            results.append(
                SearchResult(
                    document_id=record.document_id,
                    filename=record.filename,
                    text=record.text,
                    relevance_score=_clamp(hit.get("_score", 0.0)),
                    chunk_index=record.chunk_index,
                )
            )
        results.sort(key=lambda r: r.relevance_score, reverse=True)

        logger.info(f"Vector search top_k={top_k} returned {len(results)} results")
        return results

    async def delete_by_document(self, document_id: str) -> None:
        await self._request(
            "POST",
            "/vectors/delete",
            json={"filter": document_filter([document_id]), "namespace": self.namespace},
        )
        logger.info(f"Deleted vector records for document {document_id}")

    async def list_chunks(self, document_id: str, total_chunks: int) -> list[ChunkRecord]:
        ids = [chunk_record_id(document_id, i) for i in range(total_chunks)]
        records: list[ChunkRecord] = []

        for start in range(0, len(ids), FETCH_BATCH_SIZE):
            params = [("ids", record_id) for record_id in ids[start : start + FETCH_BATCH_SIZE]]
            params.append(("namespace", self.namespace))
            response = await self._request("GET", "/vectors/fetch", params=params)
            vectors = response.json().get("vectors", {})
            for vector in vectors.values():
                records.append(_record_from_fields(vector.get("metadata", {}), document_id))

        records.sort(key=lambda r: r.chunk_index)
        return records

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryVectorIndex:
    """Process-local index with token-overlap scoring.

    Score is the fraction of distinct query tokens found in the chunk text,
    so it is always in [0, 1]. Chunks with no matching token are skipped.
    """

    name = "memory"

    def __init__(self) -> None:
        self._records: dict[str, ChunkRecord] = {}

    async def upsert(self, chunks: list[ChunkRecord], document_id: str) -> int:
        for chunk in chunks:
            self._records[chunk.record_id] = chunk
        pipeline_log.log_step("index", "success", document_id=document_id, upserted=len(chunks))
        return len(chunks)

    async def search_by_text(
        self, query: str, top_k: int, filter: Filter | None = None
    ) -> list[SearchResult]:
        tokens = {token for token in query.lower().split() if token}
        if not tokens or top_k <= 0:
            return []

        scored: list[tuple[float, ChunkRecord]] = []
        for record in self._records.values():
            if not _matches_filter(record, filter):
                continue
            text = record.text.lower()
            hits = sum(1 for token in tokens if token in text)
            if hits:
                scored.append((hits / len(tokens), record))

        # Ties broken by position for deterministic output
        scored.sort(key=lambda item: (-item[0], item[1].document_id, item[1].chunk_index))

        return [
            SearchResult(
                document_id=record.document_id,
                filename=record.filename,
                text=record.text,
                relevance_score=_clamp(score),
                chunk_index=record.chunk_index,
            )
            for score, record in scored[:top_k]
        ]

    async def delete_by_document(self, document_id: str) -> None:
        stale = [key for key, record in self._records.items() if record.document_id == document_id]
        for key in stale:
            del self._records[key]
        logger.info(f"Deleted {len(stale)} in-memory records for document {document_id}")

    async def list_chunks(self, document_id: str, total_chunks: int) -> list[ChunkRecord]:
        ids = (chunk_record_id(document_id, i) for i in range(total_chunks))
        return [self._records[record_id] for record_id in ids if record_id in self._records]

    async def close(self) -> None:
        self._records.clear()


def build_vector_index(settings: Settings) -> VectorIndex:
    """Pick the vector index implementation from config.

    Returns:
        PineconeIndex if key and host are configured, InMemoryVectorIndex otherwise
    """
    api_key = settings.pinecone_api_key
    if api_key and api_key.get_secret_value() and settings.pinecone_index_host:
        logger.info(f"Using Pinecone index at {settings.pinecone_index_host}")
        return PineconeIndex(
            api_key=api_key.get_secret_value(),
            index_host=settings.pinecone_index_host,
            namespace=settings.pinecone_namespace,
            api_version=settings.pinecone_api_version,
            timeout=settings.pinecone_timeout_seconds,
        )

    logger.warning("No Pinecone index configured, using in-memory vector index")
    return InMemoryVectorIndex()
