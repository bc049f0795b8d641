"""LLM client for extraction, chunking, summaries, and streamed answers.

Security: API key comes from settings only, never hardcoded.
Provides a deterministic stub when no key is configured for testing.
"""

import base64
import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

from openai import AsyncOpenAI

from docchat.config import Settings
from docchat.docs.chunker import paragraph_chunks
from docchat.llm.prompts import (
    CHUNKING_SYSTEM_PROMPT,
    SUMMARY_SYSTEM_PROMPT,
    VISION_EXTRACTION_PROMPT,
    build_chunking_prompt,
    build_summary_prompt,
)

logger = logging.getLogger(__name__)


class LLMResponseError(Exception):
    """Model returned a response that cannot be used."""

    pass


class LLMClient(Protocol):
    """Protocol for LLM client implementations."""

    name: str

    async def extract_text_from_image(self, data: bytes, mime_type: str) -> str:
        """Transcribe readable text, tables, and structure from an image.

        Args:
            data: Raw file bytes
            mime_type: Declared content type (used in the data URL)

        Returns:
            Transcribed text, empty string if the model returned nothing
        """
        ...

    async def chunk_semantically(self, text: str, document_type: str) -> list[str]:
        """Split text into topic-aligned chunks.

        Raises:
            LLMResponseError: If the response is not a list of chunks
        """
        ...

    async def generate_summary(self, chunks: list[str]) -> str:
        """Summarise the leading chunks of a document in 2-4 sentences."""
        ...

    def stream_answer(self, prompt: str) -> AsyncIterator[str]:
        """Stream a completion for the prompt, one text delta at a time."""
        ...


def parse_chunk_response(content: str | None) -> list[str]:
    """Parse a ``{"chunks": [...]}`` JSON payload into non-empty strings.

    Raises:
        LLMResponseError: If the payload is not JSON or holds no usable chunks
    """
    if not content:
        raise LLMResponseError("empty chunking response")

    try:
        payload: Any = json.loads(content)
    except json.JSONDecodeError as e:
        raise LLMResponseError(f"chunking response is not JSON: {e}") from e

    raw = payload.get("chunks") if isinstance(payload, dict) else payload
    if not isinstance(raw, list):
        raise LLMResponseError("chunking response has no chunk list")

    chunks = [c for c in raw if isinstance(c, str) and c.strip()]
    if not chunks:
        raise LLMResponseError("chunking response has no non-empty chunks")
    return chunks


class DeterministicStubClient:
    """Deterministic stub client for testing (no API key required)."""

    name = "stub"

    async def extract_text_from_image(self, data: bytes, mime_type: str) -> str:
        """Return an empty transcription; images need a vision model."""
        logger.warning(f"No vision model configured, skipping {mime_type} transcription")
        return ""

    async def chunk_semantically(self, text: str, document_type: str) -> list[str]:
        """Pack paragraphs into chunks without a model call."""
        chunks = [chunk for _, chunk in paragraph_chunks(text, max_chars=3000)]
        if not chunks:
            raise LLMResponseError("no paragraphs to chunk")
        return chunks

    async def generate_summary(self, chunks: list[str]) -> str:
        """Return the opening of the first chunk as a stand-in summary."""
        combined = " ".join(" ".join(chunks).split())
        if not combined:
            return "No content available to summarise."
        preview = combined if len(combined) <= 280 else combined[:277] + "..."
        return f"Summary (stub): {preview}"

    async def stream_answer(self, prompt: str) -> AsyncIterator[str]:
        """Stream a fixed answer word by word."""
        question = prompt.rsplit("Question:", 1)[-1].split("Answer:", 1)[0].strip()
        answer = f"This is a stub response to: {question}"
        words = answer.split(" ")
        for i, word in enumerate(words):
            yield word if i == len(words) - 1 else word + " "


class OpenAIClient:
    """OpenAI-backed LLM client."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        chat_model: str = "gpt-4-turbo",
        vision_model: str = "gpt-4o",
        chunking_model: str = "gpt-4-turbo",
        summary_model: str = "gpt-4o",
    ):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from settings)
            chat_model: Model used for streamed answers
            vision_model: Vision-capable model used for image/PDF transcription
            chunking_model: Model used for semantic chunking (JSON mode)
            summary_model: Model used for document summaries
        """
        self.client = AsyncOpenAI(api_key=api_key)
        self.chat_model = chat_model
        self.vision_model = vision_model
        self.chunking_model = chunking_model
        self.summary_model = summary_model

    async def extract_text_from_image(self, data: bytes, mime_type: str) -> str:
        """Transcribe an image with the vision model."""
        encoded = base64.b64encode(data).decode("ascii")
        response = await self.client.chat.completions.create(
            model=self.vision_model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": VISION_EXTRACTION_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                        },
                    ],
                }
            ],
            max_tokens=4096,
        )
        return response.choices[0].message.content or ""

    async def chunk_semantically(self, text: str, document_type: str) -> list[str]:
        """Ask the model for topic-aligned chunks in JSON mode."""
        response = await self.client.chat.completions.create(
            model=self.chunking_model,
            messages=[
                {"role": "system", "content": CHUNKING_SYSTEM_PROMPT},
                {"role": "user", "content": build_chunking_prompt(text, document_type)},
            ],
            response_format={"type": "json_object"},
            temperature=0.3,
        )
        return parse_chunk_response(response.choices[0].message.content)

    async def generate_summary(self, chunks: list[str]) -> str:
        """Summarise the given chunks."""
        response = await self.client.chat.completions.create(
            model=self.summary_model,
            messages=[
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": build_summary_prompt(chunks)},
            ],
            max_tokens=200,
            temperature=0.3,
        )
        summary = (response.choices[0].message.content or "").strip()
        if not summary:
            raise LLMResponseError("empty summary response")
        return summary

    async def stream_answer(self, prompt: str) -> AsyncIterator[str]:
        """Stream answer deltas from the chat model."""
        stream = await self.client.chat.completions.create(
            model=self.chat_model,
            messages=[{"role": "user", "content": prompt}],
            stream=True,
            temperature=0.7,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            content = chunk.choices[0].delta.content
            if content:
                yield content

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        await self.client.close()


def build_llm_client(settings: Settings) -> LLMClient:
    """Factory function to get appropriate LLM client based on config.

    Returns:
        OpenAIClient if API key is configured, DeterministicStubClient otherwise
    """
    api_key = settings.openai_api_key

    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client")
        return OpenAIClient(
            api_key=api_key.get_secret_value(),
            chat_model=settings.openai_chat_model,
            vision_model=settings.openai_vision_model,
            chunking_model=settings.openai_chunking_model,
            summary_model=settings.openai_summary_model,
        )

    logger.warning("No OpenAI API key configured, using deterministic stub client")
    return DeterministicStubClient()
