"""Unit tests for MessageStore.

Tests:
  - upsert statement targets (room_id, message_id) and updates content
  - load statement filters by room and orders by seq
  - append_or_update commits once per call
  - driver errors surface as PersistenceError carrying the message id
  - load_all maps records back to ChatMessage in the order returned
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from app.core.exceptions import PersistenceError
from app.models.chat_message import ChatMessageRecord
from app.schemas.chat import ChatMessage, Role
from app.services.storage.messages import (
    MessageStore,
    build_load_statement,
    build_upsert_statement,
)


def _message(message_id: str = "m1", content: str = "hi") -> ChatMessage:
    return ChatMessage(id=message_id, content=content, author="Me", role=Role.USER)


def _session_factory(db: MagicMock) -> MagicMock:
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=db)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=ctx)


def _mock_db() -> MagicMock:
    db = MagicMock()
    db.execute = AsyncMock()
    db.commit = AsyncMock()
    return db


class TestStatements:
    """Tests for the generated SQL."""

    def test_upsert_on_room_and_message_id(self) -> None:
        sql = str(
            build_upsert_statement("r1", _message()).compile(
                dialect=postgresql.dialect()
            )
        )
        assert "INSERT INTO chat_messages" in sql
        assert "ON CONFLICT (room_id, message_id) DO UPDATE" in sql
        assert "content = excluded.content" in sql
        # seq is never touched on update, so position is kept.
        assert "seq =" not in sql

    def test_load_ordered_by_seq(self) -> None:
        sql = str(build_load_statement("r1").compile(dialect=postgresql.dialect()))
        assert "WHERE chat_messages.room_id = " in sql
        assert "ORDER BY chat_messages.seq ASC" in sql


class TestMessageStore:
    """Tests for MessageStore against a mocked session factory."""

    @pytest.mark.asyncio
    async def test_append_commits(self) -> None:
        db = _mock_db()
        store = MessageStore(_session_factory(db))  # type: ignore[arg-type]

        await store.append_or_update("r1", _message())

        db.execute.assert_awaited_once()
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_driver_error_becomes_persistence_error(self) -> None:
        db = _mock_db()
        db.execute = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("down")))
        store = MessageStore(_session_factory(db))  # type: ignore[arg-type]

        with pytest.raises(PersistenceError) as exc_info:
            await store.append_or_update("r1", _message("m7"))

        assert exc_info.value.message_id == "m7"
        assert exc_info.value.status_code == 503
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_load_all_maps_records(self) -> None:
        records = [
            ChatMessageRecord(
                seq=1, room_id="r1", message_id="m1", content="hi", author="Me", role="user"
            ),
            ChatMessageRecord(
                seq=2,
                room_id="r1",
                message_id="a1",
                content="hello",
                author="Assistant",
                role="assistant",
            ),
        ]
        result = MagicMock()
        result.scalars.return_value.all.return_value = records
        db = _mock_db()
        db.execute = AsyncMock(return_value=result)
        store = MessageStore(_session_factory(db))  # type: ignore[arg-type]

        messages = await store.load_all("r1")

        assert [m.id for m in messages] == ["m1", "a1"]
        assert messages[1].role is Role.ASSISTANT
        assert messages[1].author == "Assistant"
