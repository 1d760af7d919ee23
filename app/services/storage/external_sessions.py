"""Durable external assistant sessions, one active row per room at most."""

from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import PersistenceError
from app.models.external_session import (
    STATUS_ACTIVE,
    STATUS_CLOSED,
    ExternalSession,
)

logger = structlog.get_logger(__name__)


class ExternalSessionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_active(self, room_id: str) -> ExternalSession | None:
        """Return the room's active session row, if any."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(ExternalSession)
                    .where(
                        ExternalSession.room_id == room_id,
                        ExternalSession.status == STATUS_ACTIVE,
                    )
                    .order_by(ExternalSession.created_at.desc())
                    .limit(1)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("external_session_load_failed", room_id=room_id, error=str(e))
            raise PersistenceError(f"Failed to load session for room {room_id}") from e

    async def create(
        self, ticket_id: str, room_id: str, owner_user_id: str
    ) -> ExternalSession:
        """Insert a new active session row."""
        row = ExternalSession(
            ticket_id=ticket_id,
            room_id=room_id,
            owner_user_id=owner_user_id,
            status=STATUS_ACTIVE,
            created_at=datetime.now(timezone.utc),
        )
        try:
            async with self._session_factory() as db:
                db.add(row)
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(
                "external_session_create_failed",
                room_id=room_id,
                ticket_id=ticket_id,
                error=str(e),
            )
            raise PersistenceError(f"Failed to store session for room {room_id}") from e
        return row

    async def mark_closed(self, room_id: str) -> int:
        """Close every active row of the room. Returns the number closed."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(ExternalSession)
                    .where(
                        ExternalSession.room_id == room_id,
                        ExternalSession.status == STATUS_ACTIVE,
                    )
                    .values(status=STATUS_CLOSED, closed_at=datetime.now(timezone.utc))
                )
                await db.commit()
                return result.rowcount
        except SQLAlchemyError as e:
            logger.error("external_session_close_failed", room_id=room_id, error=str(e))
            raise PersistenceError(f"Failed to close session for room {room_id}") from e
