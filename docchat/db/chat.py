"""Repository for chat session and message operations."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.db.models import ChatMessage, ChatSession


class SessionNotFound(Exception):
    """No chat session with the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Chat session {session_id} not found")
        self.session_id = session_id


async def create_session(session: AsyncSession, document_ids: list[str]) -> ChatSession:
    """Create a chat session scoped to the given documents.

    Duplicate ids are dropped; first-seen order is kept.
    """
    ordered = list(dict.fromkeys(str(d) for d in document_ids))
    chat_session = ChatSession(document_ids=ordered, created_at=datetime.utcnow())
    session.add(chat_session)
    await session.commit()
    await session.refresh(chat_session)
    return chat_session


async def get_session(session: AsyncSession, session_id: str) -> ChatSession | None:
    """Fetch a chat session by id."""
    result = await session.execute(select(ChatSession).where(ChatSession.id == session_id))
    return result.scalar_one_or_none()


async def require_session(session: AsyncSession, session_id: str) -> ChatSession:
    """Fetch a chat session by id or raise SessionNotFound."""
    chat_session = await get_session(session, session_id)
    if chat_session is None:
        raise SessionNotFound(session_id)
    return chat_session


async def append_message(
    session: AsyncSession,
    *,
    session_id: str,
    role: str,
    content: str,
    sources: list[dict[str, Any]] | None = None,
) -> ChatMessage:
    """Append a message to a session with the next sequence number.

    Args:
        session: Database session
        session_id: Owning chat session
        role: "user" or "assistant"
        content: Message text
        sources: Optional citation dicts (assistant messages)

    Returns:
        The stored message
    """
    result = await session.execute(
        select(func.coalesce(func.max(ChatMessage.seq), -1)).where(
            ChatMessage.session_id == session_id
        )
    )
    next_seq = int(result.scalar_one()) + 1

    message = ChatMessage(
        session_id=session_id,
        seq=next_seq,
        role=role,
        content=content,
        sources=sources or [],
        created_at=datetime.utcnow(),
    )
    session.add(message)
    await session.commit()
    await session.refresh(message)
    return message


async def list_messages(session: AsyncSession, session_id: str) -> list[ChatMessage]:
    """List messages of a session in conversation order."""
    result = await session.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.seq, ChatMessage.created_at)
    )
    return list(result.scalars().all())
