"""Chat session and message models."""

from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from docchat.models.docs import CamelModel

Role = Literal["user", "assistant"]


class SourceCitation(CamelModel):
    """A retrieved chunk cited by an assistant message."""

    document_id: str
    filename: str
    snippet: str
    relevance_score: float
    chunk_index: int


class CreateSessionRequest(CamelModel):
    """Request body for POST /chat/sessions."""

    document_ids: list[str] = Field(default_factory=list)


class SessionOut(CamelModel):
    """Chat session as returned by the API."""

    id: str
    created_at: datetime
    document_ids: list[str]


class SendMessageRequest(CamelModel):
    """Request body for POST /chat/sessions/{id}/messages.

    ``message`` is left untyped so that a non-string payload is reported
    with the INVALID_MESSAGE code instead of a generic validation error.
    """

    message: Any = None
    use_rag: bool = True


class MessageOut(CamelModel):
    """Single stored chat message."""

    id: str
    role: Role
    content: str
    sources: list[SourceCitation] = Field(default_factory=list)
    created_at: datetime


class MessageHistoryResponse(CamelModel):
    """Response for GET /chat/sessions/{id}/messages."""

    session_id: str
    messages: list[MessageOut]
    count: int
