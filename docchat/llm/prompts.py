"""Prompt templates for the language model calls."""

VISION_EXTRACTION_PROMPT = (
    "Extract all text content from this document. Include tables, headers, paragraphs, "
    "and all readable text. Preserve the structure and formatting where possible. "
    "Return only the extracted text content."
)

CHUNKING_SYSTEM_PROMPT = """You are an expert at chunking documents semantically. Create chunks that:
1. Preserve semantic meaning and context
2. Keep related information together
3. Target 500-1000 tokens per chunk for optimal embedding
4. Maintain natural boundaries (sections, paragraphs, topics)
5. Include context clues at chunk boundaries

Return as JSON with structure: {"chunks": ["chunk1", "chunk2", ...]}"""

SUMMARY_SYSTEM_PROMPT = (
    "You are a helpful assistant that creates concise, informative summaries of documents."
)

GROUNDING_INSTRUCTIONS = (
    "Answer the question using only the context below. "
    "If the answer is not contained in the context, say explicitly that the provided "
    "documents do not contain the answer."
)


def build_chunking_prompt(text: str, document_type: str) -> str:
    """User prompt for a single chunking call."""
    return (
        f"Document Type: {document_type}\n\n"
        f"Please chunk this document intelligently:\n\n"
        f"{text}\n\n"
        f"Return chunks as a JSON array under the \"chunks\" key."
    )


def build_summary_prompt(chunks: list[str]) -> str:
    """User prompt for a document summary."""
    combined = "\n\n".join(chunks)
    return (
        "Please provide a concise summary of the following document content. "
        "Focus on the main topics, key points, and important information. "
        "Keep the summary between 2-4 sentences.\n\n"
        f"Document content:\n{combined}\n\n"
        "Summary:"
    )


def build_grounded_prompt(question: str, contexts: list[str]) -> str:
    """Prompt that conditions the answer on retrieved chunks.

    With no contexts the bare question is returned unchanged.
    """
    if not contexts:
        return question

    context_block = "\n\n".join(contexts)
    return (
        f"{GROUNDING_INSTRUCTIONS}\n\n"
        f"Context:\n{context_block}\n\n"
        f"Question: {question}\n\n"
        f"Answer:"
    )
