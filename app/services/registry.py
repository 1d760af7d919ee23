"""Session registry: ticket id to owning room.

A single Redis hash addressed by a well-known name holds one field per
ticket. Every room and every inbound webhook reaches the same hash, and
HSET/HGET/HDEL are atomic, so rooms can register concurrently.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from app.core.exceptions import RedisConnectionError
from app.db.redis import RedisClient

logger = structlog.get_logger(__name__)

REGISTRY_KEY_PREFIX = "session-registry:"


@dataclass(frozen=True)
class SessionRegistryEntry:
    ticket_id: str
    room_id: str
    created_at: datetime


class SessionRegistry:
    def __init__(self, redis: RedisClient, name: str = "webhook-router") -> None:
        self._redis = redis
        self._key = f"{REGISTRY_KEY_PREFIX}{name}"

    @property
    def key(self) -> str:
        return self._key

    async def register(self, ticket_id: str, room_id: str) -> None:
        """Upsert the entry for ``ticket_id``; last writer wins.

        Raises:
            RedisConnectionError: if Redis is unreachable.
        """
        value = json.dumps(
            {
                "room_id": room_id,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        await self._redis.hset(self._key, ticket_id, value)
        logger.info("session_registered", ticket_id=ticket_id, room_id=room_id)

    async def get_entry(self, ticket_id: str) -> SessionRegistryEntry | None:
        raw = await self._redis.hget(self._key, ticket_id)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            return SessionRegistryEntry(
                ticket_id=ticket_id,
                room_id=data["room_id"],
                created_at=datetime.fromisoformat(data["created_at"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            logger.warning("session_registry_entry_corrupt", ticket_id=ticket_id)
            return None

    async def lookup(self, ticket_id: str) -> str | None:
        """Return the owning room id, or None when the ticket is unknown."""
        entry = await self.get_entry(ticket_id)
        return entry.room_id if entry else None

    async def unregister(self, ticket_id: str) -> None:
        """Best-effort removal, used only when a session is explicitly closed."""
        try:
            removed = await self._redis.hdel(self._key, ticket_id)
        except RedisConnectionError as e:
            logger.warning("session_unregister_failed", ticket_id=ticket_id, error=str(e))
            return
        logger.info("session_unregistered", ticket_id=ticket_id, removed=removed)
