"""Routes asynchronous assistant callbacks to the room that owns the ticket.

The router holds no state of its own: the owning room is resolved through
the session registry on every call, so callbacks still land after the room
actor has been evicted or the process restarted.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from app.core.security import verify_shared_secret
from app.services.registry import SessionRegistry
from app.services.room.manager import RoomManager
from app.services.webhook.extract import (
    extract_message_id,
    extract_text,
    parse_payload,
)

logger = structlog.get_logger(__name__)


class RouteOutcome(str, Enum):
    DELIVERED = "delivered"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    UNAUTHORIZED = "unauthorized"


@dataclass(frozen=True)
class RouteResult:
    outcome: RouteOutcome
    detail: str = ""
    room_id: str | None = None
    message_id: str | None = None


class WebhookRouter:
    def __init__(self, registry: SessionRegistry, rooms: RoomManager, secret: str) -> None:
        self._registry = registry
        self._rooms = rooms
        self._secret = secret

    async def route(self, authorization: str | None, body: Any) -> RouteResult:
        """Authenticate, resolve the ticket's room and deliver the message.

        A rejected call never mutates any room.
        """
        if not verify_shared_secret(authorization, self._secret):
            logger.warning("webhook_unauthorized", has_header=bool(authorization))
            return RouteResult(RouteOutcome.UNAUTHORIZED, "Unauthorized")

        payload = parse_payload(body)
        if payload is None:
            logger.warning("webhook_malformed_payload")
            return RouteResult(RouteOutcome.INVALID, "Malformed payload")
        if not payload.ticket_id:
            logger.warning("webhook_missing_ticket")
            return RouteResult(RouteOutcome.INVALID, "Missing ticket_id")

        room_id = await self._registry.lookup(payload.ticket_id)
        if room_id is None:
            logger.info("webhook_ticket_unknown", ticket_id=payload.ticket_id)
            return RouteResult(RouteOutcome.NOT_FOUND, "Session not found")

        return await self._deliver(room_id, body)

    async def deliver(self, room_id: str, body: Any) -> RouteResult:
        """Deliver into a known room, bypassing authentication and lookup.

        Only for trusted internal callers.
        """
        return await self._deliver(room_id, body)

    async def _deliver(self, room_id: str, body: Any) -> RouteResult:
        payload = parse_payload(body)
        if payload is None or payload.message is None:
            logger.warning("webhook_missing_message", room_id=room_id)
            return RouteResult(RouteOutcome.INVALID, "Missing message", room_id=room_id)

        text = extract_text(payload.message.content)
        if text is None:
            logger.warning("webhook_empty_content", room_id=room_id, ticket_id=payload.ticket_id)
            return RouteResult(RouteOutcome.INVALID, "No text content", room_id=room_id)

        room = self._rooms.get(room_id)
        message = await room.deliver_assistant_message(
            text, message_id=extract_message_id(payload)
        )
        logger.info(
            "webhook_delivered",
            room_id=room_id,
            ticket_id=payload.ticket_id,
            message_id=message.id,
        )
        return RouteResult(
            RouteOutcome.DELIVERED, room_id=room_id, message_id=message.id
        )
