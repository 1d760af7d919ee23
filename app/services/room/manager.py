"""Lazily created room actors, one per room id."""

import time

import structlog

from app.services.gateway.client import AssistantGateway
from app.services.registry import SessionRegistry
from app.services.room.session import RoomSession
from app.services.storage.external_sessions import ExternalSessionStore
from app.services.storage.messages import MessageStore

logger = structlog.get_logger(__name__)


class RoomManager:
    """Owns every live RoomSession of this process.

    Rooms are created on first use and rebuilt from the message store after
    eviction, so evicting an idle room loses nothing durable.
    """

    def __init__(
        self,
        message_store: MessageStore,
        session_store: ExternalSessionStore,
        registry: SessionRegistry,
        gateway: AssistantGateway,
        assistant_author: str = "Assistant",
        close_on_disconnect: bool = False,
        max_pending_forwards: int = 50,
    ) -> None:
        self.message_store = message_store
        self.session_store = session_store
        self.registry = registry
        self.gateway = gateway
        self._assistant_author = assistant_author
        self._close_on_disconnect = close_on_disconnect
        self._max_pending_forwards = max_pending_forwards
        self._rooms: dict[str, RoomSession] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def get(self, room_id: str) -> RoomSession:
        """Return the room's actor, creating it if needed."""
        room = self._rooms.get(room_id)
        if room is None:
            room = RoomSession(
                room_id=room_id,
                message_store=self.message_store,
                session_store=self.session_store,
                registry=self.registry,
                gateway=self.gateway,
                assistant_author=self._assistant_author,
                close_on_disconnect=self._close_on_disconnect,
                max_pending_forwards=self._max_pending_forwards,
            )
            self._rooms[room_id] = room
            logger.debug("room_created", room_id=room_id)
        return room

    async def evict_idle(self, idle_seconds: float, now: float | None = None) -> list[str]:
        """Drop rooms with no connections and no work in flight."""
        now = time.monotonic() if now is None else now
        evicted: list[RoomSession] = []
        for room_id, room in list(self._rooms.items()):
            if room.is_idle(idle_seconds, now=now):
                del self._rooms[room_id]
                evicted.append(room)

        # Every evicted room is out of the map before the first await, so
        # get() never hands out an actor that is being shut down.
        for room in evicted:
            await room.aclose()
        if evicted:
            logger.info("rooms_evicted", count=len(evicted), remaining=len(self._rooms))
        return [room.room_id for room in evicted]

    async def aclose(self) -> None:
        rooms = list(self._rooms.values())
        self._rooms.clear()
        for room in rooms:
            await room.aclose()
