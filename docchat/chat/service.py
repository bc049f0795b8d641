"""Chat orchestration - retrieval, grounded prompting, and streamed answers.

``handle_message`` yields transport-agnostic events; the HTTP layer turns
them into SSE frames. Event order per message is always
``connected, [source], token*, done`` or ``connected, [source], token*, error``.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docchat.config import Settings
from docchat.db import chat as chat_repo
from docchat.db.models import ChatMessage, ChatSession
from docchat.docs.vector_index import VectorIndex, document_filter
from docchat.llm.client import LLMClient
from docchat.llm.prompts import build_grounded_prompt
from docchat.models.chat import SourceCitation
from docchat.models.docs import SearchResult
from docchat.models.events import ChatEvent, Connected, Done, Error, Source, Token
from docchat.utils.logging import PipelineLogger
from docchat.utils.metrics import chat_messages_total

logger = logging.getLogger(__name__)
pipeline_log = PipelineLogger(__name__)


@dataclass(frozen=True)
class ChatTurn:
    """A user message that has been persisted and awaits an answer."""

    session_id: str
    document_ids: list[str]
    text: str
    use_rag: bool


@dataclass
class _SessionLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


def make_snippet(text: str, limit: int = 200) -> str:
    """Truncate chunk text for display, marking the cut with an ellipsis."""
    return text if len(text) <= limit else text[:limit] + "..."


def to_citation(result: SearchResult, snippet_chars: int = 200) -> SourceCitation:
    return SourceCitation(
        document_id=result.document_id,
        filename=result.filename,
        snippet=make_snippet(result.text, snippet_chars),
        relevance_score=result.relevance_score,
        chunk_index=result.chunk_index,
    )


class ChatOrchestrator:
    """Answers chat messages, optionally grounded in session documents."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        index: VectorIndex,
        llm: LLMClient,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._index = index
        self._llm = llm
        self._top_k = settings.retrieval_top_k
        self._snippet_chars = settings.snippet_chars
        self._locks: dict[str, _SessionLock] = {}

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        """Serialise work on one session; the entry is dropped once unused."""
        entry = self._locks.setdefault(session_id, _SessionLock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[session_id]

    def active_sessions(self) -> int:
        """Number of sessions with a turn in progress or waiting."""
        return len(self._locks)

    async def create_session(self, document_ids: list[str]) -> ChatSession:
        async with self._session_factory() as session:
            chat_session = await chat_repo.create_session(session, document_ids)
        logger.info(
            f"Created chat session {chat_session.id} over {len(chat_session.document_ids)} document(s)"
        )
        return chat_session

    async def get_session(self, session_id: str) -> ChatSession:
        """Raises SessionNotFound if absent."""
        async with self._session_factory() as session:
            return await chat_repo.require_session(session, session_id)

    async def history(self, session_id: str) -> list[ChatMessage]:
        """Full ordered message history of a session.

        Raises:
            SessionNotFound: If the session does not exist
        """
        async with self._session_factory() as session:
            await chat_repo.require_session(session, session_id)
            return await chat_repo.list_messages(session, session_id)

    async def prepare(self, session_id: str, text: str, use_rag: bool = True) -> ChatTurn:
        """Resolve the session and persist the user message.

        Runs before any event is streamed so that an unknown session can be
        reported as a plain 404 and the question survives a failed answer.
        The sequence number is allocated under the session lock.

        Raises:
            SessionNotFound: If the session does not exist
        """
        async with self._session_lock(session_id), self._session_factory() as session:
            chat_session = await chat_repo.require_session(session, session_id)
            await chat_repo.append_message(
                session, session_id=session_id, role="user", content=text
            )
            return ChatTurn(
                session_id=session_id,
                document_ids=list(chat_session.document_ids or []),
                text=text,
                use_rag=use_rag,
            )

    async def handle_message(
        self, session_id: str, text: str, use_rag: bool = True
    ) -> AsyncIterator[ChatEvent]:
        """Persist the question, then stream the answer as events."""
        turn = await self.prepare(session_id, text, use_rag)
        async for event in self.respond(turn):
            yield event

    async def respond(self, turn: ChatTurn) -> AsyncIterator[ChatEvent]:
        """Stream the answer to an already persisted user message.

        Failures are reported as a final ``Error`` event and leave no
        assistant message behind.
        """
        yield Connected(session_id=turn.session_id)

        async with self._session_lock(turn.session_id):
            started = time.perf_counter()
            logger.info(f"Generating answer for session {turn.session_id} (use_rag={turn.use_rag})")
            try:
                results = await self._retrieve(turn)
                citations = [to_citation(r, self._snippet_chars) for r in results]
                if citations:
                    yield Source(sources=citations)

                prompt = build_grounded_prompt(turn.text, [r.text for r in results])
                parts: list[str] = []
                async for delta in self._llm.stream_answer(prompt):
                    parts.append(delta)
                    yield Token(content=delta)

                async with self._session_factory() as session:
                    message = await chat_repo.append_message(
                        session,
                        session_id=turn.session_id,
                        role="assistant",
                        content="".join(parts),
                        sources=[c.model_dump(mode="json") for c in citations],
                    )
            except Exception as e:
                chat_messages_total.labels(outcome="error").inc()
                pipeline_log.log_step(
                    "chat",
                    "error",
                    session_id=turn.session_id,
                    latency_ms=(time.perf_counter() - started) * 1000,
                    error_reason=str(e),
                )
                logger.exception(f"Answer generation failed for session {turn.session_id}")
                yield Error(message="An error occurred during response generation")
                return

            chat_messages_total.labels(outcome="success").inc()
            pipeline_log.log_step(
                "chat",
                "success",
                session_id=turn.session_id,
                latency_ms=(time.perf_counter() - started) * 1000,
                sources=len(citations),
                tokens=len(parts),
            )
        yield Done(message_id=message.id)

    async def _retrieve(self, turn: ChatTurn) -> list[SearchResult]:
        if not turn.use_rag or not turn.document_ids:
            return []
        results = await self._index.search_by_text(
            turn.text, self._top_k, document_filter(turn.document_ids)
        )
        logger.info(
            f"Retrieved {len(results)} chunk(s) for session {turn.session_id} "
            f"from {len(turn.document_ids)} document(s)"
        )
        return results
