"""Tests for the chat orchestrator event stream."""

import asyncio
from collections.abc import AsyncIterator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docchat.chat.service import ChatOrchestrator, make_snippet
from docchat.config import Settings
from docchat.db import chat as chat_repo
from docchat.db.chat import SessionNotFound
from docchat.docs.vector_index import Filter, InMemoryVectorIndex
from docchat.llm.client import DeterministicStubClient
from docchat.models.docs import ChunkRecord, SearchResult
from docchat.models.events import Connected, Done, Error, Source, Token


class RecordingLLM(DeterministicStubClient):
    """Stub that remembers prompts and can fail mid-stream."""

    def __init__(self, fail_after: int | None = None) -> None:
        self.prompts: list[str] = []
        self.fail_after = fail_after

    async def stream_answer(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for i, token in enumerate(["Paris ", "is ", "the ", "capital."]):
            if self.fail_after is not None and i == self.fail_after:
                raise RuntimeError("stream dropped")
            yield token


class InterleavingLLM(DeterministicStubClient):
    """Yields control between tokens and logs which prompt each token came from."""

    def __init__(self) -> None:
        self.log: list[str] = []

    async def stream_answer(self, prompt: str) -> AsyncIterator[str]:
        for token in ["one ", "two ", "three"]:
            await asyncio.sleep(0.01)
            self.log.append(prompt)
            yield token


class BrokenIndex(InMemoryVectorIndex):
    async def search_by_text(
        self, query: str, top_k: int, filter: Filter | None = None
    ) -> list[SearchResult]:
        raise ConnectionError("index unreachable")


async def seed_index(index: InMemoryVectorIndex, document_id: str) -> None:
    texts = ["Paris is the capital of France.", "Lyon is known for food."]
    await index.upsert(
        [
            ChunkRecord(
                document_id=document_id,
                filename="france.txt",
                chunk_index=i,
                total_chunks=len(texts),
                text=text,
                content_type="text/plain",
                word_count=len(text.split()),
            )
            for i, text in enumerate(texts)
        ],
        document_id,
    )


def orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    llm: RecordingLLM,
    index: InMemoryVectorIndex | None = None,
) -> ChatOrchestrator:
    return ChatOrchestrator(session_factory, index or InMemoryVectorIndex(), llm, settings)


def test_make_snippet_marks_truncation() -> None:
    assert make_snippet("short") == "short"
    assert make_snippet("x" * 250) == "x" * 200 + "..."


@pytest.mark.asyncio
async def test_rag_event_order_is_connected_source_tokens_done(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    index = InMemoryVectorIndex()
    await seed_index(index, "doc-fr")
    llm = RecordingLLM()
    chat = orchestrator(session_factory, settings, llm, index)
    session = await chat.create_session(["doc-fr"])

    events = [e async for e in chat.handle_message(session.id, "What is the capital of France?")]

    kinds = [type(e) for e in events]
    assert kinds[0] is Connected
    assert kinds[1] is Source
    assert kinds[-1] is Done
    assert all(k is Token for k in kinds[2:-1])
    assert "".join(e.content for e in events if isinstance(e, Token)) == "Paris is the capital."

    source = events[1]
    assert isinstance(source, Source)
    assert source.sources[0].filename == "france.txt"
    assert 0.0 <= source.sources[0].relevance_score <= 1.0
    assert "Context:" in llm.prompts[0]
    assert "Paris is the capital of France." in llm.prompts[0]


@pytest.mark.asyncio
async def test_exchange_is_persisted_with_sources(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    index = InMemoryVectorIndex()
    await seed_index(index, "doc-fr")
    chat = orchestrator(session_factory, settings, RecordingLLM(), index)
    session = await chat.create_session(["doc-fr"])

    events = [e async for e in chat.handle_message(session.id, "capital of France")]

    messages = await chat.history(session.id)
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[0].content == "capital of France"
    assert messages[1].content == "Paris is the capital."
    assert messages[1].sources[0]["document_id"] == "doc-fr"
    done = events[-1]
    assert isinstance(done, Done)
    assert done.message_id == messages[1].id


@pytest.mark.asyncio
async def test_no_documents_means_no_source_and_bare_prompt(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    llm = RecordingLLM()
    chat = orchestrator(session_factory, settings, llm)
    session = await chat.create_session([])

    events = [e async for e in chat.handle_message(session.id, "Hello?", use_rag=True)]

    assert not any(isinstance(e, Source) for e in events)
    assert llm.prompts == ["Hello?"]


@pytest.mark.asyncio
async def test_use_rag_false_skips_retrieval(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    index = InMemoryVectorIndex()
    await seed_index(index, "doc-fr")
    llm = RecordingLLM()
    chat = orchestrator(session_factory, settings, llm, index)
    session = await chat.create_session(["doc-fr"])

    events = [e async for e in chat.handle_message(session.id, "capital of France", use_rag=False)]

    assert not any(isinstance(e, Source) for e in events)
    assert llm.prompts == ["capital of France"]


@pytest.mark.asyncio
async def test_generation_failure_emits_error_and_keeps_only_user_message(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    chat = orchestrator(session_factory, settings, RecordingLLM(fail_after=2))
    session = await chat.create_session([])

    events = [e async for e in chat.handle_message(session.id, "Tell me")]

    assert isinstance(events[0], Connected)
    assert isinstance(events[-1], Error)
    assert events[-1].code == "STREAM_ERROR"
    assert not any(isinstance(e, Done) for e in events)
    messages = await chat.history(session.id)
    assert [m.role for m in messages] == ["user"]


@pytest.mark.asyncio
async def test_unknown_session_raises_before_streaming(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    chat = orchestrator(session_factory, settings, RecordingLLM())

    with pytest.raises(SessionNotFound):
        await chat.prepare("missing", "Hello?")


@pytest.mark.asyncio
async def test_message_sequence_orders_history(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        chat_session = await chat_repo.create_session(session, ["a", "a", "b"])
        for i in range(3):
            await chat_repo.append_message(
                session, session_id=chat_session.id, role="user", content=f"m{i}"
            )
        messages = await chat_repo.list_messages(session, chat_session.id)

    assert chat_session.document_ids == ["a", "b"]
    assert [m.content for m in messages] == ["m0", "m1", "m2"]
    assert [m.seq for m in messages] == [0, 1, 2]


@pytest.mark.asyncio
async def test_retrieval_failure_emits_error_without_sources_or_tokens(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    llm = RecordingLLM()
    chat = orchestrator(session_factory, settings, llm, BrokenIndex())
    session = await chat.create_session(["doc-fr"])

    events = [e async for e in chat.handle_message(session.id, "capital of France")]

    assert [type(e) for e in events] == [Connected, Error]
    assert llm.prompts == []
    messages = await chat.history(session.id)
    assert [m.role for m in messages] == ["user"]


@pytest.mark.asyncio
async def test_concurrent_messages_get_distinct_sequence_numbers(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    chat = orchestrator(session_factory, settings, RecordingLLM())
    session = await chat.create_session([])

    turns = await asyncio.gather(*(chat.prepare(session.id, f"q{i}") for i in range(4)))

    assert len(turns) == 4
    messages = await chat.history(session.id)
    assert [m.seq for m in messages] == [0, 1, 2, 3]
    assert sorted(m.content for m in messages) == ["q0", "q1", "q2", "q3"]
    assert chat.active_sessions() == 0


@pytest.mark.asyncio
async def test_concurrent_turns_on_one_session_do_not_interleave(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    llm = InterleavingLLM()
    chat = ChatOrchestrator(session_factory, InMemoryVectorIndex(), llm, settings)
    session = await chat.create_session([])

    async def ask(text: str) -> list[object]:
        return [e async for e in chat.handle_message(session.id, text)]

    first, second = await asyncio.gather(ask("first"), ask("second"))

    assert isinstance(first[-1], Done)
    assert isinstance(second[-1], Done)
    assert llm.log[:3] == [llm.log[0]] * 3
    assert llm.log[3:] == [llm.log[3]] * 3
    assert {llm.log[0], llm.log[3]} == {"first", "second"}

    roles = [m.role for m in await chat.history(session.id)]
    assert roles.count("user") == 2
    assert roles.count("assistant") == 2
    assert chat.active_sessions() == 0


@pytest.mark.asyncio
async def test_session_lock_is_dropped_after_turn(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> None:
    chat = orchestrator(session_factory, settings, RecordingLLM())
    sessions = [await chat.create_session([]) for _ in range(3)]

    for chat_session in sessions:
        [e async for e in chat.handle_message(chat_session.id, "Hi")]

    assert chat.active_sessions() == 0
