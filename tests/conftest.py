"""Shared pytest fixtures for all test suites."""

from collections.abc import AsyncGenerator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from docchat.api.deps import Container, build_container
from docchat.config import Settings
from docchat.db.engine import create_all, create_async_engine_from_settings, create_session_factory
from docchat.main import create_app


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite file and upload directory."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'docchat-test.db'}",
        upload_dir=str(tmp_path / "uploads"),
        openai_api_key=None,
        pinecone_api_key=None,
        pinecone_index_host="",
        sse_heartbeat_seconds=0,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """Async engine with all tables created."""
    engine = create_async_engine_from_settings(settings)
    await create_all(engine)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def container(settings: Settings) -> Container:
    """Components wired with the stub LLM and in-memory vector index."""
    return build_container(settings)


@pytest.fixture
def client(container: Container) -> Iterator[TestClient]:
    """Test client with the lifespan running.

    Background ingestion runs on the client's event loop; wait for it with
    ``client.portal.call(container.ingestion.wait_idle)``.
    """
    app = create_app(container)
    with TestClient(app) as test_client:
        yield test_client
