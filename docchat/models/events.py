"""Stream event models - what the chat orchestrator and notification hub emit.

Events are transport-agnostic; ``docchat.api.sse`` serialises them to
``data: {...}\\n\\n`` frames.
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import Field

from docchat.models.chat import SourceCitation
from docchat.models.docs import CamelModel, DocumentStatusUpdate


class Connected(CamelModel):
    """First event on every channel."""

    type: Literal["connected"] = "connected"
    session_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class Source(CamelModel):
    """Retrieved chunks, sent before any answer token."""

    type: Literal["source"] = "source"
    sources: list[SourceCitation]


class Token(CamelModel):
    """Incremental piece of the assistant answer."""

    type: Literal["token"] = "token"
    content: str


class Done(CamelModel):
    """Answer complete and persisted."""

    type: Literal["done"] = "done"
    message_id: str | None = None


class Error(CamelModel):
    """Generation failed; the channel closes after this event."""

    type: Literal["error"] = "error"
    code: str = "STREAM_ERROR"
    message: str = "An error occurred during response generation"


ChatEvent = Annotated[Connected | Source | Token | Done | Error, Field(discriminator="type")]


class Heartbeat(CamelModel):
    """Keep-alive sent periodically on notification channels."""

    type: Literal["heartbeat"] = "heartbeat"
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class DocumentStatusEvent(CamelModel):
    """Document status transition broadcast to every subscriber."""

    type: Literal["document_status"] = "document_status"
    data: DocumentStatusUpdate
    timestamp: datetime = Field(default_factory=datetime.utcnow)


NotificationEvent = Annotated[
    Connected | Heartbeat | DocumentStatusEvent, Field(discriminator="type")
]
