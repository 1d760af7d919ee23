"""Room session: the single live actor owning one room's state.

Every mutation of the message cache, the connection set and the external
session binding runs under the room's ``asyncio.Lock``. Neither store
writes nor assistant gateway calls hold that lock. Store writes are
serialized in broadcast order under a write lock, and user turns are
queued and sent in order under a forward lock. A slow database or a slow
assistant therefore never delays local broadcast.

Lock order, when more than one is held: forward, write, room.

External session lifecycle::

    absent -> initiating -> active -> closing -> absent

A new initiation waits for an in-flight close to finish.

The session for a room is resolved through one path only: the binding
held in memory, else the durable active row for this room, else a new
initiation with the room id as ticket.
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Coroutine

import structlog
from pydantic import ValidationError as FrameValidationError

from app.core.exceptions import (
    ConfigurationError,
    GatewayError,
    PersistenceError,
    RedisConnectionError,
)
from app.schemas.chat import (
    AddFrame,
    AllFrame,
    ChatMessage,
    ConnectionFrame,
    Role,
    UpdateFrame,
    dump_frame,
    parse_message_frame,
    to_message,
)
from app.services.gateway.client import AssistantGateway
from app.services.registry import SessionRegistry
from app.services.room.connection import ConnectionEntry, Transport
from app.services.storage.external_sessions import ExternalSessionStore
from app.services.storage.messages import MessageStore

logger = structlog.get_logger(__name__)

UNAVAILABLE_NOTICE = (
    "AI assistant is currently unavailable. You can still send messages "
    "and they will be processed when the service is restored."
)
APOLOGY_NOTICE = (
    "Sorry, I'm having trouble connecting to the AI assistant. Please try again."
)

_ASSISTANT_FAILURES = (GatewayError, ConfigurationError)


@dataclass
class ActiveSession:
    ticket_id: str
    owner_user_id: str


class RoomSession:
    """One room's messages, connections and external assistant session."""

    def __init__(
        self,
        room_id: str,
        message_store: MessageStore,
        session_store: ExternalSessionStore,
        registry: SessionRegistry,
        gateway: AssistantGateway,
        assistant_author: str = "Assistant",
        close_on_disconnect: bool = False,
        max_pending_forwards: int = 50,
    ) -> None:
        self.room_id = room_id
        self._store = message_store
        self._session_store = session_store
        self._registry = registry
        self._gateway = gateway
        self._assistant_author = assistant_author
        self._close_on_disconnect = close_on_disconnect
        self._max_pending = max_pending_forwards

        self._lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._forward_lock = asyncio.Lock()
        self._messages: dict[str, ChatMessage] = {}
        self._loaded = False
        self._connections: dict[str, ConnectionEntry] = {}
        self._session: ActiveSession | None = None
        self._initiation: asyncio.Task | None = None
        self._closing: asyncio.Task | None = None
        self._pending: deque[ChatMessage] = deque()
        self._background: set[asyncio.Task] = set()
        self.last_activity = time.monotonic()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        if self._session is not None:
            return "active"
        if self._initiation is not None and not self._initiation.done():
            return "initiating"
        if self._closing is not None and not self._closing.done():
            return "closing"
        return "absent"

    @property
    def ticket_id(self) -> str | None:
        return self._session.ticket_id if self._session else None

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def pending_forwards(self) -> int:
        return len(self._pending)

    def binding_of(self, connection_id: str) -> str | None:
        entry = self._connections.get(connection_id)
        return entry.ticket_id if entry else None

    def is_idle(self, idle_seconds: float, now: float | None = None) -> bool:
        """True when nothing is connected, queued or in flight and the room has been quiet.

        Queued user turns keep a room alive: they are still owed to the
        assistant once a session can be established.
        """
        now = time.monotonic() if now is None else now
        return (
            not self._connections
            and not self._background
            and not self._pending
            and self.state in ("absent", "active")
            and not self._lock.locked()
            and not self._write_lock.locked()
            and not self._forward_lock.locked()
            and now - self.last_activity >= idle_seconds
        )

    async def snapshot(self) -> list[ChatMessage]:
        """The replay set, in first-write order."""
        async with self._lock:
            await self._ensure_loaded()
            return list(self._messages.values())

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, transport: Transport) -> str:
        """Register a connection and send it the replay set.

        The connection is usable as soon as this returns. The external
        session is set up afterwards in the background.
        """
        connection_id = str(uuid.uuid4())
        async with self._lock:
            await self._ensure_loaded()
            entry = ConnectionEntry(connection_id=connection_id, transport=transport)
            self._connections[connection_id] = entry
            self._touch()
            delivered = await self._send(
                entry, dump_frame(AllFrame(messages=list(self._messages.values())))
            )
            if delivered:
                delivered = await self._send(
                    entry, dump_frame(ConnectionFrame(connection_id=connection_id))
                )

        if not delivered:
            # _send already dropped the connection.
            return connection_id
        logger.info(
            "room_connected",
            room_id=self.room_id,
            connection_id=connection_id,
            connections=len(self._connections),
        )
        self._spawn(self._setup_connection(connection_id))
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """Forget a connection. The external session survives unless eager closing is on."""
        async with self._lock:
            entry = self._connections.pop(connection_id, None)
            self._touch()
            last_left = not self._connections
            should_close = (
                self._close_on_disconnect and last_left and self._session is not None
            )

        if entry is None:
            return
        logger.info(
            "room_disconnected",
            room_id=self.room_id,
            connection_id=connection_id,
            connections=len(self._connections),
        )
        if should_close:
            await self.close_external_session(only_when_unused=True)

    async def _setup_connection(self, connection_id: str) -> None:
        try:
            ticket_id = await self.ensure_external_session(user_id=connection_id)
            if ticket_id is None:
                return
            async with self._lock:
                entry = self._connections.get(connection_id)
                if entry is not None:
                    entry.ticket_id = ticket_id
            await self._flush_pending()
        except Exception as e:
            logger.error(
                "room_connection_setup_failed",
                room_id=self.room_id,
                connection_id=connection_id,
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Inbound client frames
    # ------------------------------------------------------------------

    async def receive(self, connection_id: str, raw: str) -> None:
        """Handle one ``add``/``update`` frame from a client.

        The frame is broadcast verbatim to the other connections, then
        persisted. User turns are then forwarded to the assistant. Only the
        broadcast holds the room lock, so another sender's frames go out
        while this one is still being written.

        Raises:
            PersistenceError: if the message could not be stored. The
                in-memory change has been rolled back unless a later frame
                already replaced it.
        """
        try:
            frame = parse_message_frame(raw)
        except FrameValidationError as e:
            logger.warning(
                "room_frame_ignored",
                room_id=self.room_id,
                connection_id=connection_id,
                error=str(e),
            )
            return

        message = to_message(frame)
        async with self._lock:
            await self._ensure_loaded()
            previous = self._messages.get(message.id)
            self._messages[message.id] = message
            self._touch()
            await self._broadcast(raw, exclude=connection_id)

        # Queued on the write lock with no await after the broadcast, so
        # store order follows broadcast order.
        async with self._write_lock:
            try:
                await self._store.append_or_update(self.room_id, message)
            except PersistenceError:
                async with self._lock:
                    if self._messages.get(message.id) is message:
                        if previous is None:
                            del self._messages[message.id]
                        else:
                            self._messages[message.id] = previous
                raise

            if message.role != Role.USER:
                return
            async with self._lock:
                entry = self._connections.get(connection_id)
                if entry is not None and self._session is not None:
                    entry.ticket_id = self._session.ticket_id
                self._enqueue_forward(message)
                active = self._session is not None

        if not active:
            await self.ensure_external_session(user_id=connection_id)
        await self._flush_pending()

    def _enqueue_forward(self, message: ChatMessage) -> None:
        if len(self._pending) >= self._max_pending:
            dropped = self._pending.popleft()
            logger.warning(
                "room_forward_dropped",
                room_id=self.room_id,
                message_id=dropped.id,
                max_pending=self._max_pending,
            )
        self._pending.append(message)

    async def _flush_pending(self) -> None:
        """Send queued user turns in order while a session is active."""
        async with self._forward_lock:
            while True:
                async with self._lock:
                    if self._session is None or not self._pending:
                        return
                    message = self._pending.popleft()
                    ticket_id = self._session.ticket_id

                try:
                    await self._gateway.send(ticket_id, message.content)
                except _ASSISTANT_FAILURES as e:
                    logger.warning(
                        "room_forward_failed",
                        room_id=self.room_id,
                        ticket_id=ticket_id,
                        message_id=message.id,
                        error=str(e),
                    )
                    await self._post_notice(APOLOGY_NOTICE)

    # ------------------------------------------------------------------
    # External session
    # ------------------------------------------------------------------

    async def ensure_external_session(self, user_id: str) -> str | None:
        """Return the room's active ticket, initiating one if needed.

        Returns None when no session could be established; a notice has
        then been posted to the room.
        """
        async with self._lock:
            session = self._session
            if session is None:
                if self._initiation is None or self._initiation.done():
                    self._initiation = asyncio.create_task(self._initiate(user_id))
                initiation = self._initiation

        if session is not None:
            await self._reregister(session.ticket_id)
            return session.ticket_id
        # Shielded: a caller going away must not cancel the shared initiation.
        return await asyncio.shield(initiation)

    async def _reregister(self, ticket_id: str) -> None:
        try:
            await self._registry.register(ticket_id, self.room_id)
        except RedisConnectionError as e:
            logger.warning(
                "session_reregister_failed",
                room_id=self.room_id,
                ticket_id=ticket_id,
                error=str(e),
            )

    async def _initiate(self, user_id: str) -> str | None:
        closing = self._closing
        if closing is not None and not closing.done():
            await asyncio.wait({closing})
        try:
            row = await self._session_store.get_active(self.room_id)
            if row is not None:
                session = ActiveSession(
                    ticket_id=row.ticket_id, owner_user_id=row.owner_user_id
                )
                await self._reregister(session.ticket_id)
                logger.info(
                    "session_reused", room_id=self.room_id, ticket_id=session.ticket_id
                )
            else:
                ticket_id = await self._gateway.initiate(user_id, self.room_id)
                await self._registry.register(ticket_id, self.room_id)
                await self._session_store.create(ticket_id, self.room_id, user_id)
                session = ActiveSession(ticket_id=ticket_id, owner_user_id=user_id)
                logger.info(
                    "session_initiated", room_id=self.room_id, ticket_id=ticket_id
                )
        except (*_ASSISTANT_FAILURES, RedisConnectionError, PersistenceError) as e:
            logger.warning(
                "session_initiation_failed",
                room_id=self.room_id,
                user_id=user_id,
                error=str(e),
            )
            await self._post_notice(UNAVAILABLE_NOTICE)
            return None

        async with self._lock:
            self._session = session
            for entry in self._connections.values():
                if entry.ticket_id is None:
                    entry.ticket_id = session.ticket_id
        await self._flush_pending()
        return session.ticket_id

    async def close_external_session(self, only_when_unused: bool = False) -> None:
        """Close the active session: gateway, registry, then durable row.

        The room stays in ``closing`` until all three steps are done; an
        initiation requested meanwhile starts only afterwards. With
        ``only_when_unused`` the session is kept if a connection has
        joined since the caller decided to close.
        """
        async with self._lock:
            session = self._session
            if session is None:
                return
            if only_when_unused and self._connections:
                return
            self._session = None
            for entry in self._connections.values():
                entry.ticket_id = None
            self._closing = asyncio.create_task(self._finish_close(session))
            closing = self._closing

        await asyncio.shield(closing)

    async def _finish_close(self, session: ActiveSession) -> None:
        try:
            await self._gateway.close(session.ticket_id)
        except _ASSISTANT_FAILURES as e:
            logger.warning(
                "session_close_failed",
                room_id=self.room_id,
                ticket_id=session.ticket_id,
                error=str(e),
            )
        await self._registry.unregister(session.ticket_id)
        try:
            await self._session_store.mark_closed(self.room_id)
        except PersistenceError as e:
            logger.error("session_close_not_persisted", room_id=self.room_id, error=str(e))
        logger.info("session_closed", room_id=self.room_id, ticket_id=session.ticket_id)

    # ------------------------------------------------------------------
    # Room-originated messages
    # ------------------------------------------------------------------

    async def deliver_assistant_message(
        self, content: str, message_id: str | None = None
    ) -> ChatMessage:
        """Persist, then broadcast, an assistant-authored message.

        Redelivery of an existing id updates that message in place.
        """
        message = ChatMessage(
            id=message_id or f"assistant_{uuid.uuid4()}",
            content=content,
            author=self._assistant_author,
            role=Role.ASSISTANT,
        )
        async with self._lock:
            await self._ensure_loaded()
        # Stored before it enters memory, unlike client frames: there is no
        # sender to receive an error frame, so a failed write must leave
        # the room unchanged.
        async with self._write_lock:
            await self._store.append_or_update(self.room_id, message)
            async with self._lock:
                existed = message.id in self._messages
                self._messages[message.id] = message
                self._touch()
                frame_cls = UpdateFrame if existed else AddFrame
                await self._broadcast(dump_frame(frame_cls(**message.model_dump())))

        logger.info(
            "assistant_message_delivered",
            room_id=self.room_id,
            message_id=message.id,
            connections=len(self._connections),
        )
        return message

    async def _post_notice(self, text: str) -> None:
        try:
            await self.deliver_assistant_message(text)
        except PersistenceError as e:
            logger.error("room_notice_not_persisted", room_id=self.room_id, error=str(e))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _ensure_loaded(self) -> None:
        # Caller holds self._lock.
        if self._loaded:
            return
        for message in await self._store.load_all(self.room_id):
            self._messages[message.id] = message
        self._loaded = True
        logger.debug("room_loaded", room_id=self.room_id, messages=len(self._messages))

    async def _send(self, entry: ConnectionEntry, payload: str) -> bool:
        try:
            await entry.transport.send_text(payload)
            return True
        except Exception as e:
            self._connections.pop(entry.connection_id, None)
            logger.warning(
                "room_send_failed",
                room_id=self.room_id,
                connection_id=entry.connection_id,
                error=str(e),
            )
            return False

    async def _broadcast(self, payload: str, exclude: str | None = None) -> None:
        # Caller holds self._lock.
        targets = [
            entry
            for cid, entry in self._connections.items()
            if cid != exclude
        ]
        if targets:
            await asyncio.gather(*(self._send(entry, payload) for entry in targets))

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _touch(self) -> None:
        self.last_activity = time.monotonic()

    def _inflight(self) -> list[asyncio.Task]:
        tasks = list(self._background)
        for task in (self._initiation, self._closing):
            if task is not None and not task.done():
                tasks.append(task)
        return tasks

    async def wait_idle(self) -> None:
        """Wait for background setup tasks and any in-flight initiation or close."""
        while True:
            pending = self._inflight()
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel background work. Used on eviction and shutdown."""
        tasks = self._inflight()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
