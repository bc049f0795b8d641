"""Tests for the LLM client.

All tests are deterministic and do not make real network calls.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from pydantic import SecretStr

from docchat.config import Settings
from docchat.llm.client import (
    DeterministicStubClient,
    LLMResponseError,
    OpenAIClient,
    build_llm_client,
    parse_chunk_response,
)


def completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def stream_chunk(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeStream:
    def __init__(self, chunks: list[SimpleNamespace]) -> None:
        self._chunks = chunks

    def __aiter__(self):  # type: ignore[no-untyped-def]
        return self._iterate()

    async def _iterate(self):  # type: ignore[no-untyped-def]
        for chunk in self._chunks:
            yield chunk


@pytest.fixture
def openai_client() -> OpenAIClient:
    client = OpenAIClient(api_key="sk-test")
    client.client = SimpleNamespace(  # type: ignore[assignment]
        chat=SimpleNamespace(completions=SimpleNamespace(create=AsyncMock()))
    )
    return client


def test_parse_chunk_response_reads_chunks_key() -> None:
    assert parse_chunk_response('{"chunks": ["a", " ", "b"]}') == ["a", "b"]


@pytest.mark.parametrize("content", [None, "", "not json", '{"chunks": "a"}', '{"chunks": []}'])
def test_parse_chunk_response_rejects_unusable_payloads(content: str | None) -> None:
    with pytest.raises(LLMResponseError):
        parse_chunk_response(content)


@pytest.mark.asyncio
async def test_stub_streams_bare_question_answer() -> None:
    client = DeterministicStubClient()

    tokens = [t async for t in client.stream_answer("What is RAG?")]

    assert "".join(tokens) == "This is a stub response to: What is RAG?"
    assert len(tokens) > 1


@pytest.mark.asyncio
async def test_stub_chunking_packs_paragraphs() -> None:
    client = DeterministicStubClient()

    chunks = await client.chunk_semantically("One.\n\nTwo.", "text")

    assert chunks == ["One.\n\nTwo."]


@pytest.mark.asyncio
async def test_openai_chunking_uses_json_mode(openai_client: OpenAIClient) -> None:
    create = openai_client.client.chat.completions.create
    create.return_value = completion('{"chunks": ["alpha", "beta"]}')

    chunks = await openai_client.chunk_semantically("alpha beta", "text")

    assert chunks == ["alpha", "beta"]
    kwargs = create.await_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["model"] == "gpt-4-turbo"


@pytest.mark.asyncio
async def test_openai_vision_sends_data_url(openai_client: OpenAIClient) -> None:
    create = openai_client.client.chat.completions.create
    create.return_value = completion("Invoice #42")

    text = await openai_client.extract_text_from_image(b"abc", "image/jpeg")

    assert text == "Invoice #42"
    content = create.await_args.kwargs["messages"][0]["content"]
    assert content[1]["image_url"]["url"] == "data:image/jpeg;base64,YWJj"


@pytest.mark.asyncio
async def test_openai_vision_empty_response_is_empty_string(openai_client: OpenAIClient) -> None:
    openai_client.client.chat.completions.create.return_value = completion(None)

    assert await openai_client.extract_text_from_image(b"abc", "image/png") == ""


@pytest.mark.asyncio
async def test_openai_summary_rejects_empty_output(openai_client: OpenAIClient) -> None:
    openai_client.client.chat.completions.create.return_value = completion("  ")

    with pytest.raises(LLMResponseError):
        await openai_client.generate_summary(["chunk"])


@pytest.mark.asyncio
async def test_openai_stream_skips_empty_deltas(openai_client: OpenAIClient) -> None:
    openai_client.client.chat.completions.create.return_value = FakeStream(
        [stream_chunk("Hel"), stream_chunk(None), stream_chunk("lo"), SimpleNamespace(choices=[])]
    )

    tokens = [t async for t in openai_client.stream_answer("hi")]

    assert tokens == ["Hel", "lo"]
    assert openai_client.client.chat.completions.create.await_args.kwargs["stream"] is True


def test_build_llm_client_without_key_returns_stub() -> None:
    assert isinstance(build_llm_client(Settings(openai_api_key=None)), DeterministicStubClient)


def test_build_llm_client_with_key_returns_openai() -> None:
    client = build_llm_client(Settings(openai_api_key=SecretStr("sk-test")))

    assert isinstance(client, OpenAIClient)
