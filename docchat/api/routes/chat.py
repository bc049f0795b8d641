"""Chat endpoints - sessions, streamed answers, and history."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import StreamingResponse

from docchat.api.deps import get_chat
from docchat.api.errors import ApiError
from docchat.api.sse import sse_response
from docchat.chat.service import ChatOrchestrator
from docchat.models.chat import (
    CreateSessionRequest,
    MessageHistoryResponse,
    MessageOut,
    SendMessageRequest,
    SessionOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/sessions", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
async def create_session(
    chat: Annotated[ChatOrchestrator, Depends(get_chat)],
    body: CreateSessionRequest | None = None,
) -> SessionOut:
    """Create a chat session scoped to zero or more documents."""
    document_ids = body.document_ids if body is not None else []
    chat_session = await chat.create_session(document_ids)
    return SessionOut.model_validate(chat_session)


@router.get("/sessions/{session_id}", response_model=SessionOut)
async def get_session(
    session_id: str,
    chat: Annotated[ChatOrchestrator, Depends(get_chat)],
) -> SessionOut:
    chat_session = await chat.get_session(session_id)
    return SessionOut.model_validate(chat_session)


@router.post("/sessions/{session_id}/messages")
async def send_message(
    session_id: str,
    chat: Annotated[ChatOrchestrator, Depends(get_chat)],
    body: SendMessageRequest | None = None,
) -> StreamingResponse:
    """Send a user message and stream the answer as SSE.

    The user message is stored before the stream opens. Events:
    ``connected``, optional ``source``, ``token``..., then ``done`` or ``error``.
    """
    message = body.message if body is not None else None
    if not isinstance(message, str) or not message.strip():
        raise ApiError(
            status.HTTP_400_BAD_REQUEST, "INVALID_MESSAGE", "Message must be a non-empty string"
        )

    use_rag = body.use_rag if body is not None else True
    turn = await chat.prepare(session_id, message, use_rag)
    return sse_response(chat.respond(turn))


@router.get("/sessions/{session_id}/messages", response_model=MessageHistoryResponse)
async def get_messages(
    session_id: str,
    chat: Annotated[ChatOrchestrator, Depends(get_chat)],
) -> MessageHistoryResponse:
    """Full ordered message history of a session, with sources."""
    messages = await chat.history(session_id)
    return MessageHistoryResponse(
        session_id=session_id,
        messages=[MessageOut.model_validate(m) for m in messages],
        count=len(messages),
    )
