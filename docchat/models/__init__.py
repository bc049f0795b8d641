"""Models package - re-exports for convenience."""

from docchat.models.chat import (
    CreateSessionRequest,
    MessageHistoryResponse,
    MessageOut,
    SendMessageRequest,
    SessionOut,
    SourceCitation,
)
from docchat.models.docs import (
    ChunkRecord,
    DocumentDetail,
    DocumentOut,
    DocumentState,
    DocumentStatus,
    DocumentStatusUpdate,
    SearchResult,
    can_transition,
)
from docchat.models.events import (
    ChatEvent,
    Connected,
    DocumentStatusEvent,
    Done,
    Error,
    Heartbeat,
    Source,
    Token,
)

__all__ = [
    "ChatEvent",
    "ChunkRecord",
    "Connected",
    "CreateSessionRequest",
    "DocumentDetail",
    "DocumentOut",
    "DocumentState",
    "DocumentStatus",
    "DocumentStatusEvent",
    "DocumentStatusUpdate",
    "Done",
    "Error",
    "Heartbeat",
    "MessageHistoryResponse",
    "MessageOut",
    "SearchResult",
    "SendMessageRequest",
    "SessionOut",
    "Source",
    "SourceCitation",
    "Token",
    "can_transition",
]
