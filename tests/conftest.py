"""Shared pytest fixtures for the room relay test suite.

Provides:
  - mock_redis: Mock RedisClient with in-memory hash storage
  - registry: SessionRegistry over mock_redis
  - message_store: in-memory MessageStore with switchable write failures
  - session_store: in-memory ExternalSessionStore
  - gateway: Mock AssistantGateway recording every call
  - make_room / room_manager: RoomSession and RoomManager wired to the mocks
  - build_app: FastAPI app with all routers and mocked state, no lifespan

All external services are mocked in every test: no Postgres, Redis or
network access is needed.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable

import pytest
from fastapi import FastAPI

from app.core.exceptions import (
    GatewayError,
    PersistenceError,
    RedisConnectionError,
    RelayError,
)
from app.models.external_session import (
    STATUS_ACTIVE,
    STATUS_CLOSED,
    ExternalSession,
)
from app.schemas.chat import ChatMessage
from app.services.registry import SessionRegistry
from app.services.room.manager import RoomManager
from app.services.room.session import RoomSession
from app.services.webhook.router import WebhookRouter

WEBHOOK_SECRET = "test-webhook-secret"


# ---------------------------------------------------------------------------
# Mock Redis Client
# ---------------------------------------------------------------------------


class MockRedisClient:
    """In-memory mock of RedisClient for testing."""

    def __init__(self) -> None:
        self._hashes: dict[str, dict[str, str]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("Redis unavailable (test)")

    async def hset(self, key: str, field: str, value: str) -> None:
        self._check()
        self._hashes.setdefault(key, {})[field] = value

    async def hget(self, key: str, field: str) -> str | None:
        self._check()
        return self._hashes.get(key, {}).get(field)

    async def hdel(self, key: str, field: str) -> int:
        self._check()
        return 1 if self._hashes.get(key, {}).pop(field, None) is not None else 0

    async def ping(self) -> bool:
        self._check()
        return True

    def fields(self, key: str) -> dict[str, str]:
        return dict(self._hashes.get(key, {}))


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------


class InMemoryMessageStore:
    """Mock MessageStore keeping first-write order per room.

    A message id mapped in ``blocked`` makes its next write wait for that
    event.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, dict[str, ChatMessage]] = {}
        self.fail_writes = False
        self.write_calls: list[tuple[str, str]] = []
        self.blocked: dict[str, asyncio.Event] = {}

    async def append_or_update(self, room_id: str, message: ChatMessage) -> None:
        self.write_calls.append((room_id, message.id))
        gate = self.blocked.pop(message.id, None)
        if gate is not None:
            await gate.wait()
        if self.fail_writes:
            raise PersistenceError(
                f"Failed to store message {message.id}", message_id=message.id
            )
        self._rooms.setdefault(room_id, {})[message.id] = message.model_copy()

    async def load_all(self, room_id: str) -> list[ChatMessage]:
        return list(self._rooms.get(room_id, {}).values())

    def messages(self, room_id: str) -> list[ChatMessage]:
        return list(self._rooms.get(room_id, {}).values())


class InMemoryExternalSessionStore:
    """Mock ExternalSessionStore backed by a list of ORM rows."""

    def __init__(self) -> None:
        self.rows: list[ExternalSession] = []

    async def get_active(self, room_id: str) -> ExternalSession | None:
        for row in reversed(self.rows):
            if row.room_id == room_id and row.status == STATUS_ACTIVE:
                return row
        return None

    async def create(
        self, ticket_id: str, room_id: str, owner_user_id: str
    ) -> ExternalSession:
        row = ExternalSession(
            ticket_id=ticket_id,
            room_id=room_id,
            owner_user_id=owner_user_id,
            status=STATUS_ACTIVE,
            created_at=datetime.now(timezone.utc),
        )
        self.rows.append(row)
        return row

    async def mark_closed(self, room_id: str) -> int:
        closed = 0
        for row in self.rows:
            if row.room_id == room_id and row.status == STATUS_ACTIVE:
                row.status = STATUS_CLOSED
                row.closed_at = datetime.now(timezone.utc)
                closed += 1
        return closed


# ---------------------------------------------------------------------------
# Mock Assistant Gateway
# ---------------------------------------------------------------------------


class MockAssistantGateway:
    """Mock AssistantGateway. Set *_error to make the matching call raise."""

    def __init__(self) -> None:
        self.initiate_calls: list[tuple[str, str]] = []
        self.send_calls: list[tuple[str, str]] = []
        self.close_calls: list[str] = []
        self.initiate_error: RelayError | None = None
        self.send_error: RelayError | None = None
        self.close_error: RelayError | None = None
        self.close_gate: asyncio.Event | None = None

    async def initiate(self, user_id: str, ticket_id: str) -> str:
        self.initiate_calls.append((user_id, ticket_id))
        if self.initiate_error is not None:
            raise self.initiate_error
        return ticket_id

    async def send(self, ticket_id: str, text: str) -> None:
        self.send_calls.append((ticket_id, text))
        if self.send_error is not None:
            raise self.send_error

    async def close(self, ticket_id: str) -> None:
        self.close_calls.append(ticket_id)
        if self.close_gate is not None:
            await self.close_gate.wait()
        if self.close_error is not None:
            raise self.close_error


# ---------------------------------------------------------------------------
# Mock transport
# ---------------------------------------------------------------------------


class MockTransport:
    """Collects frames pushed by a room. Set fail=True to break the pipe."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer gone")
        self.sent.append(data)

    def frames(self) -> list[dict[str, Any]]:
        return [json.loads(s) for s in self.sent]

    def frames_of(self, frame_type: str) -> list[dict[str, Any]]:
        return [f for f in self.frames() if f.get("type") == frame_type]


def add_frame(
    message_id: str,
    content: str,
    author: str = "Me",
    role: str = "user",
    frame_type: str = "add",
) -> str:
    return json.dumps(
        {
            "type": frame_type,
            "id": message_id,
            "content": content,
            "author": author,
            "role": role,
        }
    )


def gateway_failure(status_code: int = 500) -> GatewayError:
    return GatewayError(
        f"Assistant receive-message returned {status_code}",
        upstream_status=status_code,
    )


async def settle(rounds: int = 20) -> None:
    """Let every ready task run until it blocks."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_redis() -> MockRedisClient:
    """Mock Redis client fixture."""
    return MockRedisClient()


@pytest.fixture
def registry(mock_redis: MockRedisClient) -> SessionRegistry:
    return SessionRegistry(mock_redis, name="webhook-router")  # type: ignore[arg-type]


@pytest.fixture
def message_store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def session_store() -> InMemoryExternalSessionStore:
    return InMemoryExternalSessionStore()


@pytest.fixture
def gateway() -> MockAssistantGateway:
    return MockAssistantGateway()


@pytest.fixture
def make_room(
    message_store: InMemoryMessageStore,
    session_store: InMemoryExternalSessionStore,
    registry: SessionRegistry,
    gateway: MockAssistantGateway,
) -> Callable[..., RoomSession]:
    """Factory building a RoomSession on the shared mocks."""

    def _make(room_id: str = "r1", **kwargs: Any) -> RoomSession:
        return RoomSession(
            room_id=room_id,
            message_store=message_store,  # type: ignore[arg-type]
            session_store=session_store,  # type: ignore[arg-type]
            registry=registry,
            gateway=gateway,  # type: ignore[arg-type]
            **kwargs,
        )

    return _make


@pytest.fixture
def room_manager(
    message_store: InMemoryMessageStore,
    session_store: InMemoryExternalSessionStore,
    registry: SessionRegistry,
    gateway: MockAssistantGateway,
) -> RoomManager:
    return RoomManager(
        message_store=message_store,  # type: ignore[arg-type]
        session_store=session_store,  # type: ignore[arg-type]
        registry=registry,
        gateway=gateway,  # type: ignore[arg-type]
        assistant_author="Assistant",
    )


@pytest.fixture
def webhook_router(registry: SessionRegistry, room_manager: RoomManager) -> WebhookRouter:
    return WebhookRouter(registry=registry, rooms=room_manager, secret=WEBHOOK_SECRET)


@pytest.fixture
def build_app(
    mock_redis: MockRedisClient,
    room_manager: RoomManager,
    webhook_router: WebhookRouter,
) -> Callable[[], FastAPI]:
    """FastAPI app with every router mounted and mocks on app.state.

    The production lifespan is not used, so nothing connects to Postgres
    or Redis.
    """

    def _build() -> FastAPI:
        from app.api.deps import get_redis
        from app.api.internal import router as internal_router
        from app.api.v1.health import router as health_router
        from app.api.v1.rooms import router as rooms_router
        from app.api.v1.webhooks import router as webhooks_router
        from app.api.ws import router as ws_router
        from app.main import relay_error_handler

        app = FastAPI()
        app.add_exception_handler(RelayError, relay_error_handler)  # type: ignore[arg-type]
        app.include_router(health_router, prefix="/v1")
        app.include_router(webhooks_router, prefix="/v1")
        app.include_router(rooms_router, prefix="/v1")
        app.include_router(internal_router)
        app.include_router(ws_router)
        app.state.room_manager = room_manager
        app.state.webhook_router = webhook_router

        async def _mock_redis() -> MockRedisClient:
            return mock_redis

        app.dependency_overrides[get_redis] = _mock_redis
        return app

    return _build
