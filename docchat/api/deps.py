"""Application container and FastAPI dependency providers.

The container is built once per process in the app lifespan and hung on
``app.state.container``; handlers reach components through the ``get_*``
providers so tests can swap them with ``app.dependency_overrides``.
"""

import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from docchat.chat.service import ChatOrchestrator
from docchat.config import Settings
from docchat.db.engine import create_async_engine_from_settings, create_session_factory
from docchat.docs.chunker import Chunker
from docchat.docs.extractor import TextExtractor
from docchat.docs.ingest import IngestionOrchestrator
from docchat.docs.notifications import NotificationHub
from docchat.docs.storage import LocalFileStorage
from docchat.docs.vector_index import VectorIndex, build_vector_index
from docchat.llm.client import LLMClient, build_llm_client

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """Process-wide components shared by request handlers."""

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    llm: LLMClient
    index: VectorIndex
    storage: LocalFileStorage
    notifier: NotificationHub
    ingestion: IngestionOrchestrator
    chat: ChatOrchestrator

    async def close(self) -> None:
        """Drain background work and release provider clients."""
        await self.ingestion.shutdown()
        await self.notifier.close()
        await self.index.close()
        close_llm = getattr(self.llm, "close", None)
        if close_llm is not None:
            await close_llm()
        await self.engine.dispose()
        logger.info("Container closed")


def build_container(
    settings: Settings,
    *,
    llm: LLMClient | None = None,
    index: VectorIndex | None = None,
) -> Container:
    """Wire every component from settings.

    Args:
        settings: Application settings
        llm: Optional LLM client override (defaults to config selection)
        index: Optional vector index override (defaults to config selection)
    """
    engine = create_async_engine_from_settings(settings)
    session_factory = create_session_factory(engine)
    llm = llm or build_llm_client(settings)
    index = index or build_vector_index(settings)
    storage = LocalFileStorage(settings.upload_dir)
    notifier = NotificationHub(
        heartbeat_seconds=settings.sse_heartbeat_seconds, queue_size=settings.sse_queue_size
    )
    chunker = Chunker(
        llm,
        word_limit=settings.chunk_part_word_limit,
        large_threshold=settings.chunk_large_threshold_chars,
        split_threshold=settings.chunk_split_threshold_chars,
        fallback_size=settings.fallback_chunk_size,
        fallback_overlap=settings.fallback_chunk_overlap,
    )
    ingestion = IngestionOrchestrator(
        session_factory, storage, TextExtractor(llm), chunker, index, notifier
    )
    chat = ChatOrchestrator(session_factory, index, llm, settings)

    return Container(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        llm=llm,
        index=index,
        storage=storage,
        notifier=notifier,
        ingestion=ingestion,
        chat=chat,
    )


def get_container(request: Request) -> Container:
    return request.app.state.container  # type: ignore[no-any-return]


def get_settings_dep(request: Request) -> Settings:
    return get_container(request).settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with get_container(request).session_factory() as session:
        yield session


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return get_container(request).session_factory


def get_llm(request: Request) -> LLMClient:
    return get_container(request).llm


def get_index(request: Request) -> VectorIndex:
    return get_container(request).index


def get_storage(request: Request) -> LocalFileStorage:
    return get_container(request).storage


def get_notifier(request: Request) -> NotificationHub:
    return get_container(request).notifier


def get_ingestion(request: Request) -> IngestionOrchestrator:
    return get_container(request).ingestion


def get_chat(request: Request) -> ChatOrchestrator:
    return get_container(request).chat
