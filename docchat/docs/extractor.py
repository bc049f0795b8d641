"""Text extraction from uploaded files.

Plain text is read directly; PDFs are parsed page by page with PyMuPDF;
images go to the vision model. Scanned PDFs (no text layer) are rendered
and sent to the vision model as well.
"""

import asyncio
import logging
import time
from pathlib import Path

import fitz

from docchat.llm.client import LLMClient
from docchat.utils.logging import PipelineLogger

logger = logging.getLogger(__name__)
pipeline_log = PipelineLogger(__name__)

TEXT_TYPES = frozenset({"text/plain", "text/csv"})
PDF_TYPES = frozenset({"application/pdf"})
IMAGE_TYPES = frozenset({"image/png", "image/jpeg", "image/webp", "image/gif"})

SUPPORTED_TYPES = TEXT_TYPES | PDF_TYPES | IMAGE_TYPES

# Pages rendered for vision transcription when a PDF has no text layer
MAX_SCANNED_PAGES = 5
SCAN_DPI = 150


class ExtractionError(Exception):
    """Extraction produced no usable text."""

    pass


class UnsupportedContentType(Exception):
    """Declared content type cannot be processed."""

    def __init__(self, content_type: str) -> None:
        super().__init__(f"Unsupported content type: {content_type}")
        self.content_type = content_type


def _read_pdf_pages(path: Path) -> list[str]:
    with fitz.open(path) as pdf:
        return [page.get_text() for page in pdf]


def _render_pdf_pages(path: Path, limit: int) -> list[bytes]:
    with fitz.open(path) as pdf:
        return [
            pdf[i].get_pixmap(dpi=SCAN_DPI).tobytes("png") for i in range(min(limit, len(pdf)))
        ]


class TextExtractor:
    """Turns a stored file into plain text."""

    def __init__(self, llm: LLMClient) -> None:
        self._llm = llm

    async def extract(self, file_path: str | Path, mime_type: str) -> str:
        """Extract plain text from a file.

        Args:
            file_path: Path to the stored file
            mime_type: Declared content type

        Returns:
            Extracted text (may be empty for images the model cannot read)

        Raises:
            UnsupportedContentType: For any type outside text, PDF, and images
        """
        path = Path(file_path)
        started = time.perf_counter()

        if mime_type in TEXT_TYPES:
            text = await self._extract_text_file(path)
        elif mime_type in PDF_TYPES:
            text = await self._extract_pdf(path)
        elif mime_type in IMAGE_TYPES:
            data = await asyncio.to_thread(path.read_bytes)
            text = await self._llm.extract_text_from_image(data, mime_type)
        else:
            pipeline_log.log_step(
                "extract", "unsupported", file=path.name, content_type=mime_type
            )
            raise UnsupportedContentType(mime_type)

        pipeline_log.log_step(
            "extract",
            "success",
            file=path.name,
            content_type=mime_type,
            input_bytes=path.stat().st_size,
            output_chars=len(text),
            latency_ms=(time.perf_counter() - started) * 1000,
        )
        return text

    async def _extract_text_file(self, path: Path) -> str:
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        return content.strip()

    async def _extract_pdf(self, path: Path) -> str:
        try:
            pages = await asyncio.to_thread(_read_pdf_pages, path)
        except Exception as e:
            logger.error(f"PDF parsing failed for {path.name}: {e}")
            pipeline_log.log_step("extract", "degraded", file=path.name, error_reason=str(e))
            return f"[PDF text extraction failed for {path.name}: {e}]"

        text = "\n\n".join(p.strip() for p in pages if p.strip())
        if text:
            return text

        logger.info(f"PDF {path.name} has no text layer, transcribing rendered pages")
        images = await asyncio.to_thread(_render_pdf_pages, path, MAX_SCANNED_PAGES)
        transcripts = [
            await self._llm.extract_text_from_image(image, "image/png") for image in images
        ]
        return "\n\n".join(t.strip() for t in transcripts if t.strip())
