"""Integration tests for document API routes."""

from typing import Any
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from docchat.api.deps import Container


def upload(
    client: TestClient,
    content: bytes = b"Hello world",
    filename: str = "hello.txt",
    content_type: str = "text/plain",
) -> dict[str, Any]:
    response = client.post("/documents", files={"file": (filename, content, content_type)})
    assert response.status_code == 201, response.text
    return response.json()  # type: ignore[no-any-return]


def wait_for_ingestion(client: TestClient, container: Container) -> None:
    client.portal.call(container.ingestion.wait_idle)  # type: ignore[union-attr]


def test_upload_returns_201_and_processes(client: TestClient, container: Container) -> None:
    data = upload(client)

    assert data["filename"] == "hello.txt"
    assert data["contentType"] == "text/plain"
    assert data["size"] == 11
    assert data["status"] in ("uploaded", "processing", "processed")
    assert "uploadedAt" in data

    wait_for_ingestion(client, container)

    detail = client.get(f"/documents/{data['id']}").json()
    assert detail["status"] == "processed"
    assert detail["chunkCount"] == 1
    assert detail["hasSummary"] is False
    assert detail["errorMessage"] is None

    status = client.get(f"/documents/{data['id']}/status").json()
    assert status == {"id": data["id"], "status": "processed", "filename": "hello.txt"}


def test_upload_without_file_returns_no_file(client: TestClient) -> None:
    response = client.post("/documents", data={"other": "field"})

    assert response.status_code == 400
    assert response.json() == {"error": {"code": "NO_FILE", "message": "No file uploaded"}}


def test_upload_unsupported_type_returns_415(client: TestClient) -> None:
    response = client.post(
        "/documents", files={"file": ("archive.zip", b"PK\x03\x04", "application/zip")}
    )

    assert response.status_code == 415
    assert response.json()["error"]["code"] == "UNSUPPORTED_FILE_TYPE"


def test_upload_too_large_returns_413(client: TestClient, container: Container) -> None:
    container.settings.max_upload_bytes = 10

    response = client.post("/documents", files={"file": ("big.txt", b"x" * 11, "text/plain")})

    assert response.status_code == 413
    assert response.json()["error"]["code"] == "FILE_TOO_LARGE"


def test_list_documents_newest_first(client: TestClient, container: Container) -> None:
    first = upload(client, filename="first.txt")
    second = upload(client, filename="second.txt")
    wait_for_ingestion(client, container)

    ids = [d["id"] for d in client.get("/documents").json()]

    assert ids == [second["id"], first["id"]]


def test_unknown_document_returns_404(client: TestClient) -> None:
    for path in ("/documents/nope", "/documents/nope/status", "/documents/nope/summary"):
        response = client.get(path)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "DOCUMENT_NOT_FOUND"

    assert client.delete("/documents/nope").status_code == 404


def test_search_processed_document(client: TestClient, container: Container) -> None:
    doc = upload(client, content=b"The mitochondria is the powerhouse of the cell.")
    wait_for_ingestion(client, container)

    response = client.post(f"/documents/{doc['id']}/search", json={"query": "powerhouse cell"})

    assert response.status_code == 200
    data = response.json()
    assert data["query"] == "powerhouse cell"
    assert data["resultCount"] == 1
    result = data["results"][0]
    assert result["documentId"] == doc["id"]
    assert result["chunkIndex"] == 0
    assert 0.0 <= result["relevanceScore"] <= 1.0


def test_search_failed_document_returns_empty_results(
    client: TestClient, container: Container
) -> None:
    doc = upload(client, content=b"   \n  ")
    wait_for_ingestion(client, container)
    assert client.get(f"/documents/{doc['id']}/status").json()["status"] == "failed"

    response = client.post(f"/documents/{doc['id']}/search", json={"query": "anything"})

    assert response.status_code == 200
    data = response.json()
    assert data["results"] == []
    assert data["resultCount"] == 0
    assert "not available" in data["message"]


def test_search_rejects_invalid_query(client: TestClient, container: Container) -> None:
    doc = upload(client)
    wait_for_ingestion(client, container)

    for body in ({}, {"query": 42}, {"query": "   "}):
        response = client.post(f"/documents/{doc['id']}/search", json=body)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_QUERY"


def test_chunks_listing(client: TestClient, container: Container) -> None:
    doc = upload(client, content=b"First paragraph.\n\nSecond paragraph.")
    wait_for_ingestion(client, container)

    data = client.get(f"/documents/{doc['id']}/chunks").json()

    assert data["documentId"] == doc["id"]
    assert data["totalChunks"] == 1
    assert data["chunks"] == [
        {"chunkIndex": 0, "text": "First paragraph.\n\nSecond paragraph.", "wordCount": 4}
    ]


def test_chunks_of_failed_document_are_empty_with_message(
    client: TestClient, container: Container
) -> None:
    doc = upload(client, content=b"")
    wait_for_ingestion(client, container)

    data = client.get(f"/documents/{doc['id']}/chunks").json()

    assert data["chunks"] == []
    assert data["totalChunks"] == 0
    assert data["message"]


def test_summary_generated_then_cached(client: TestClient, container: Container) -> None:
    doc = upload(client, content=b"Quarterly revenue grew by ten percent.")
    wait_for_ingestion(client, container)

    first = client.get(f"/documents/{doc['id']}/summary").json()
    second = client.get(f"/documents/{doc['id']}/summary").json()

    assert first["summary"].startswith("Summary (stub):")
    assert first["cached"] is False
    assert second["summary"] == first["summary"]
    assert second["cached"] is True
    assert client.get(f"/documents/{doc['id']}").json()["hasSummary"] is True


def test_summary_of_failed_document_is_null(client: TestClient, container: Container) -> None:
    doc = upload(client, content=b"  ")
    wait_for_ingestion(client, container)

    data = client.get(f"/documents/{doc['id']}/summary").json()

    assert data["summary"] is None
    assert data["message"]


def test_retry_failed_document(client: TestClient, container: Container) -> None:
    doc = upload(client, content=b" ")
    wait_for_ingestion(client, container)

    response = client.post(f"/documents/{doc['id']}/retry")

    assert response.status_code == 202
    assert response.json() == {"id": doc["id"], "status": "processing"}
    wait_for_ingestion(client, container)
    assert client.get(f"/documents/{doc['id']}/status").json()["status"] == "failed"


def test_retry_processed_document_conflicts(client: TestClient, container: Container) -> None:
    doc = upload(client)
    wait_for_ingestion(client, container)

    response = client.post(f"/documents/{doc['id']}/retry")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "DOCUMENT_NOT_FAILED"


def test_delete_removes_record_file_and_chunks(client: TestClient, container: Container) -> None:
    doc = upload(client)
    wait_for_ingestion(client, container)
    stored = list(container.storage.root.iterdir())
    assert len(stored) == 1

    response = client.delete(f"/documents/{doc['id']}")

    assert response.status_code == 204
    assert client.get(f"/documents/{doc['id']}").status_code == 404
    assert list(container.storage.root.iterdir()) == []
    chunks = client.portal.call(container.index.list_chunks, doc["id"], 1)  # type: ignore[union-attr]
    assert chunks == []


def test_delete_proceeds_when_purge_and_file_delete_fail(
    client: TestClient, container: Container
) -> None:
    doc = upload(client)
    wait_for_ingestion(client, container)
    container.index.delete_by_document = AsyncMock(side_effect=ConnectionError("index down"))  # type: ignore[method-assign]
    container.storage.delete = AsyncMock(side_effect=PermissionError("read-only fs"))  # type: ignore[method-assign]

    response = client.delete(f"/documents/{doc['id']}")

    assert response.status_code == 204
    ids = [d["id"] for d in client.get("/documents").json()]
    assert doc["id"] not in ids
