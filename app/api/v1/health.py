"""Liveness endpoint."""

import structlog
from fastapi import APIRouter, Depends

from app.api.deps import get_redis, get_room_manager
from app.core.exceptions import RedisConnectionError
from app.db.redis import RedisClient
from app.schemas.webhook import HealthResponse
from app.services.room.manager import RoomManager

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health(
    redis: RedisClient = Depends(get_redis),
    rooms: RoomManager = Depends(get_room_manager),
) -> HealthResponse:
    """Report liveness. A Redis outage degrades webhook routing only."""
    try:
        await redis.ping()
        redis_status = "ok"
    except RedisConnectionError:
        redis_status = "unavailable"

    return HealthResponse(
        status="ok" if redis_status == "ok" else "degraded",
        checks={"redis": redis_status, "live_rooms": len(rooms)},
    )
