"""Document chunker - semantic chunking with a deterministic fallback.

Large texts are first cut into parts that fit a single model call. Every
part is chunked by the language model concurrently; a part whose call fails
is chunked with a fixed-size sliding window instead, so ``Chunker.chunk``
never raises.
"""

import asyncio
import logging
import os
from typing import TYPE_CHECKING

from docchat.utils.logging import PipelineLogger
from docchat.utils.metrics import chunker_fallback_total

if TYPE_CHECKING:
    from docchat.llm.client import LLMClient

logger = logging.getLogger(__name__)
pipeline_log = PipelineLogger(__name__)

CONTINUATION_NOTE = "\n\n[Document continues in the next part]"

_DOCUMENT_TYPES = {
    "pdf": "pdf",
    "docx": "document",
    "doc": "document",
    "xlsx": "spreadsheet",
    "xls": "spreadsheet",
    "csv": "spreadsheet",
    "pptx": "presentation",
    "ppt": "presentation",
    "txt": "text",
    "md": "markdown",
    "jpg": "image",
    "jpeg": "image",
    "png": "image",
    "gif": "image",
}


def detect_document_type(filename: str) -> str:
    """Classify a document from its extension (prompt hint only)."""
    ext = os.path.splitext(filename.lower())[1].lstrip(".")
    return _DOCUMENT_TYPES.get(ext, "unknown")


def fallback_chunks(text: str, chunk_size: int = 1000, overlap: int = 200) -> list[str]:
    """Fixed-size sliding-window chunking.

    Pure function: windows of ``chunk_size`` characters starting every
    ``chunk_size - overlap`` characters until the end of the text. An empty
    text yields a single chunk holding it unchanged.

    Args:
        text: Text to split
        chunk_size: Window length in characters
        overlap: Characters shared by consecutive windows

    Returns:
        Ordered list of windows
    """
    if chunk_size <= 0 or overlap < 0 or overlap >= chunk_size:
        raise ValueError("chunk_size must be positive and larger than overlap")

    if not text:
        return [text]

    stride = chunk_size - overlap
    return [text[start : start + chunk_size] for start in range(0, len(text), stride)]


def split_by_words(text: str, word_limit: int) -> list[str]:
    """Greedy word accumulator: parts of at most ``word_limit`` words.

    Never splits inside a word; whitespace between words is normalised to
    single spaces.
    """
    words = text.split()
    parts: list[str] = []
    current: list[str] = []

    for word in words:
        current.append(word)
        if len(current) >= word_limit:
            parts.append(" ".join(current))
            current = []

    if current:
        parts.append(" ".join(current))

    return parts or [text]


def split_into_parts(
    text: str,
    *,
    large_threshold: int = 50_000,
    split_threshold: int = 30_000,
    word_limit: int = 6000,
) -> list[str]:
    """Cut text into parts that each fit one chunking call."""
    if len(text) > large_threshold:
        return split_by_words(text, word_limit)
    if len(text) > split_threshold:
        return [text[:split_threshold] + CONTINUATION_NOTE, text[split_threshold:]]
    return [text]


def paragraph_chunks(text: str, *, max_chars: int = 800) -> list[tuple[int, str]]:
    """Pack paragraphs into ordered chunks of at most ``max_chars``.

    Pure function with no I/O. Paragraphs are separated by blank lines; a
    paragraph longer than ``max_chars`` is hard-wrapped on word boundaries.

    Returns:
        List of (order, chunk_text) tuples, order 0-based and contiguous
    """
    if not text or not text.strip():
        return []

    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    paragraphs = [p.strip() for p in normalized.split("\n\n") if p.strip()]

    pieces: list[str] = []
    for para in paragraphs:
        if len(para) <= max_chars:
            pieces.append(para)
            continue
        # Oversized paragraph: wrap on words
        line: list[str] = []
        length = 0
        for word in para.split():
            if line and length + 1 + len(word) > max_chars:
                pieces.append(" ".join(line))
                line, length = [], 0
            length += len(word) + (1 if line else 0)
            line.append(word)
        if line:
            pieces.append(" ".join(line))

    chunks: list[tuple[int, str]] = []
    current: list[str] = []
    current_length = 0

    for piece in pieces:
        needed = current_length + 2 + len(piece) if current else len(piece)
        if current and needed > max_chars:
            chunks.append((len(chunks), "\n\n".join(current)))
            current, current_length = [], 0
            needed = len(piece)
        current.append(piece)
        current_length = needed

    if current:
        chunks.append((len(chunks), "\n\n".join(current)))

    return chunks


class Chunker:
    """Splits extracted text into retrieval chunks."""

    def __init__(
        self,
        llm: "LLMClient",
        *,
        word_limit: int = 6000,
        large_threshold: int = 50_000,
        split_threshold: int = 30_000,
        fallback_size: int = 1000,
        fallback_overlap: int = 200,
    ) -> None:
        self._llm = llm
        self._word_limit = word_limit
        self._large_threshold = large_threshold
        self._split_threshold = split_threshold
        self._fallback_size = fallback_size
        self._fallback_overlap = fallback_overlap

    async def chunk(self, text: str, filename: str) -> list[str]:
        """Chunk a document; list order defines chunk indices 0..N-1."""
        if not text.strip():
            return [text]

        document_type = detect_document_type(filename)
        parts = split_into_parts(
            text,
            large_threshold=self._large_threshold,
            split_threshold=self._split_threshold,
            word_limit=self._word_limit,
        )

        outcomes = await asyncio.gather(
            *(self._llm.chunk_semantically(part, document_type) for part in parts),
            return_exceptions=True,
        )

        chunks: list[str] = []
        fallback_parts = 0
        for index, (part, outcome) in enumerate(zip(parts, outcomes, strict=True)):
            if isinstance(outcome, BaseException) or not _usable(outcome):
                reason = repr(outcome) if isinstance(outcome, BaseException) else "unusable output"
                logger.warning(f"Semantic chunking failed for part {index} of {filename}: {reason}")
                chunker_fallback_total.inc()
                fallback_parts += 1
                chunks.extend(fallback_chunks(part, self._fallback_size, self._fallback_overlap))
            else:
                chunks.extend(outcome)

        pipeline_log.log_step(
            "chunk",
            "fallback" if fallback_parts else "success",
            filename=filename,
            document_type=document_type,
            parts=len(parts),
            fallback_parts=fallback_parts,
            chunk_count=len(chunks),
        )
        return chunks


def _usable(outcome: object) -> bool:
    return (
        isinstance(outcome, list)
        and len(outcome) > 0
        and all(isinstance(c, str) and c.strip() for c in outcome)
    )
