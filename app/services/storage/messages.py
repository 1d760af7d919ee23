"""Durable per-room message log.

Messages are keyed by (room_id, message_id). Writing an existing id
updates its content in place and keeps its original position, so the
replay set is always ordered by first write.
"""

from datetime import datetime, timezone

import structlog
from sqlalchemy import Insert, Select, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import PersistenceError
from app.models.chat_message import ChatMessageRecord
from app.schemas.chat import ChatMessage

logger = structlog.get_logger(__name__)


def build_upsert_statement(room_id: str, message: ChatMessage) -> Insert:
    """INSERT ... ON CONFLICT (room_id, message_id) DO UPDATE."""
    now = datetime.now(timezone.utc)
    stmt = pg_insert(ChatMessageRecord).values(
        room_id=room_id,
        message_id=message.id,
        content=message.content,
        author=message.author,
        role=message.role.value,
        created_at=now,
        updated_at=now,
    )
    return stmt.on_conflict_do_update(
        index_elements=[ChatMessageRecord.room_id, ChatMessageRecord.message_id],
        set_={
            "content": stmt.excluded.content,
            "author": stmt.excluded.author,
            "role": stmt.excluded.role,
            "updated_at": stmt.excluded.updated_at,
        },
    )


def build_load_statement(room_id: str) -> Select:
    return (
        select(ChatMessageRecord)
        .where(ChatMessageRecord.room_id == room_id)
        .order_by(ChatMessageRecord.seq.asc())
    )


class MessageStore:
    """Upsert and replay of chat messages in Postgres."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append_or_update(self, room_id: str, message: ChatMessage) -> None:
        """Idempotent upsert; committed before returning.

        Raises:
            PersistenceError: if the write did not commit.
        """
        try:
            async with self._session_factory() as db:
                await db.execute(build_upsert_statement(room_id, message))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "message_persist_failed",
                room_id=room_id,
                message_id=message.id,
                error=str(e),
            )
            raise PersistenceError(
                f"Failed to store message {message.id}", message_id=message.id
            ) from e

    async def load_all(self, room_id: str) -> list[ChatMessage]:
        """Return every message of a room in first-write order."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(build_load_statement(room_id))
                records = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("message_load_failed", room_id=room_id, error=str(e))
            raise PersistenceError(f"Failed to load messages for room {room_id}") from e

        return [
            ChatMessage(
                id=r.message_id, content=r.content, author=r.author, role=r.role
            )
            for r in records
        ]
