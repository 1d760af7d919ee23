"""FastAPI application entrypoint.

HTTP routes prefixed /v1; room WebSockets at /parties/chat/{room_id};
trusted internal delivery under /internal. Auto-generated OpenAPI docs
at /docs.

The RoomManager (one actor per live room) and the WebhookRouter are
created once during the lifespan and stored on app.state for injection
via Depends(). Idle rooms are evicted periodically via APScheduler.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.internal import router as internal_router
from app.api.v1.health import router as health_router
from app.api.v1.rooms import router as rooms_router
from app.api.v1.webhooks import router as webhooks_router
from app.api.ws import router as ws_router
from app.core.config import settings
from app.core.exceptions import RelayError
from app.db.postgres import async_session_factory, close_postgres
from app.db.redis import close_redis, get_redis
from app.services.gateway.client import AssistantGateway
from app.services.registry import SessionRegistry
from app.services.room.manager import RoomManager
from app.services.storage.external_sessions import ExternalSessionStore
from app.services.storage.messages import MessageStore
from app.services.webhook.router import WebhookRouter


def _configure_logging() -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


_configure_logging()

logger = structlog.get_logger(__name__)


async def _evict_idle_rooms(app: FastAPI) -> None:
    """Drop idle room actors. Called by APScheduler."""
    try:
        manager: RoomManager = app.state.room_manager
        await manager.evict_idle(idle_seconds=settings.room_idle_minutes * 60)
    except Exception as e:
        logger.error("room_eviction_failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle.

    Wires the stores, registry and gateway into a single RoomManager and
    WebhookRouter on app.state, then starts the eviction scheduler.
    """
    # --- Startup ---
    logger.info("app_startup", env=settings.app_env)

    gateway = AssistantGateway.from_settings()
    if not gateway.is_configured:
        gateway.report_missing_credentials()
    if not settings.effective_webhook_secret:
        logger.warning("webhook_secret_missing")

    registry = SessionRegistry(await get_redis(), name=settings.registry_name)
    manager = RoomManager(
        message_store=MessageStore(async_session_factory),
        session_store=ExternalSessionStore(async_session_factory),
        registry=registry,
        gateway=gateway,
        assistant_author=settings.assistant_author,
        close_on_disconnect=settings.close_on_disconnect,
        max_pending_forwards=settings.max_pending_forwards,
    )
    app.state.room_manager = manager
    app.state.webhook_router = WebhookRouter(
        registry=registry,
        rooms=manager,
        secret=settings.effective_webhook_secret,
    )

    # Start APScheduler for idle room eviction
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _evict_idle_rooms,
        "interval",
        minutes=settings.room_eviction_interval_minutes,
        args=[app],
        id="idle_room_eviction",
    )
    scheduler.start()
    app.state.scheduler = scheduler

    logger.info("app_rooms_ready", registry=registry.key)
    yield

    # --- Shutdown ---
    logger.info("app_shutdown")

    scheduler.shutdown(wait=False)

    await manager.aclose()
    await close_redis()
    await close_postgres()


app = FastAPI(
    title="Room Relay",
    description="Real-time chat rooms with a webhook-driven AI responder.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS: permissive for development only
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if not settings.is_production else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """Structured error response for all relay exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


app.include_router(health_router, prefix="/v1")
app.include_router(webhooks_router, prefix="/v1")
app.include_router(rooms_router, prefix="/v1")
app.include_router(internal_router)
app.include_router(ws_router)
