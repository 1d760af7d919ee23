"""Redis async client backing the session registry.

Provides helper methods wrapping raw Redis hash commands so callers never
need to handle redis.exceptions directly. All connection/command errors are
caught and re-raised as RedisConnectionError.
"""

import structlog
from redis.asyncio import Redis
from redis.asyncio import from_url as redis_from_url
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.exceptions import RedisConnectionError

logger = structlog.get_logger(__name__)

_client: Redis = redis_from_url(
    settings.redis_url,
    decode_responses=True,
    encoding="utf-8",
)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_redis() -> "RedisClient":
    """FastAPI dependency returning the singleton RedisClient wrapper."""
    return RedisClient(_client)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

async def close_redis() -> None:
    """Gracefully close the Redis connection pool."""
    logger.info("redis_shutdown")
    await _client.aclose()


# ---------------------------------------------------------------------------
# Helper wrapper
# ---------------------------------------------------------------------------

class RedisClient:
    """Thin wrapper over redis.asyncio.Redis with typed hash helpers.

    Every public method catches RedisError and re-raises as
    RedisConnectionError so callers get a structured error.
    """

    def __init__(self, client: Redis) -> None:
        self._r = client

    async def hset(self, key: str, field: str, value: str) -> None:
        """HSET one field of a hash, overwriting any previous value."""
        try:
            await self._r.hset(name=key, key=field, value=value)
        except RedisError as e:
            logger.error("redis_hset_failed", key=key, field=field, error=str(e))
            raise RedisConnectionError(f"Redis HSET failed: {e}") from e

    async def hget(self, key: str, field: str) -> str | None:
        """HGET one field. Returns None if the field does not exist."""
        try:
            return await self._r.hget(name=key, key=field)
        except RedisError as e:
            logger.error("redis_hget_failed", key=key, field=field, error=str(e))
            raise RedisConnectionError(f"Redis HGET failed: {e}") from e

    async def hdel(self, key: str, field: str) -> int:
        """HDEL one field. Returns the number of fields removed (0 or 1)."""
        try:
            return await self._r.hdel(key, field)
        except RedisError as e:
            logger.error("redis_hdel_failed", key=key, field=field, error=str(e))
            raise RedisConnectionError(f"Redis HDEL failed: {e}") from e

    async def ping(self) -> bool:
        """PING the server. Used by the health endpoint."""
        try:
            return bool(await self._r.ping())
        except RedisError as e:
            logger.error("redis_ping_failed", error=str(e))
            raise RedisConnectionError(f"Redis PING failed: {e}") from e
