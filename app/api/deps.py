"""Shared FastAPI dependencies.

The RoomManager and WebhookRouter are created once during the FastAPI
lifespan and stored on app.state. Routes retrieve them via Depends(),
never by direct import.
"""

from fastapi import Request, WebSocket

from app.db.redis import RedisClient, get_redis as _get_redis
from app.services.room.manager import RoomManager
from app.services.webhook.router import WebhookRouter


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

async def get_redis() -> RedisClient:
    """Return the singleton RedisClient wrapper."""
    return await _get_redis()


# ---------------------------------------------------------------------------
# Singletons retrieved from app.state (set during lifespan)
# ---------------------------------------------------------------------------

def get_room_manager(request: Request) -> RoomManager:
    return request.app.state.room_manager


def get_ws_room_manager(websocket: WebSocket) -> RoomManager:
    """WebSocket routes have no Request; read the same singleton from the socket."""
    return websocket.app.state.room_manager


def get_webhook_router(request: Request) -> WebhookRouter:
    return request.app.state.webhook_router
