"""Inbound assistant webhook."""

import json
from typing import Any, Awaitable

import structlog
from fastapi import APIRouter, Depends, Header, Request

from app.api.deps import get_webhook_router
from app.core.exceptions import (
    InvalidPayloadError,
    PersistenceError,
    RedisConnectionError,
    RelayError,
    TicketNotFoundError,
    UnauthorizedError,
)
from app.schemas.webhook import WebhookAck
from app.services.webhook.router import RouteOutcome, RouteResult, WebhookRouter

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def read_json_body(request: Request) -> Any:
    """Decode the request body. A body that is not JSON decodes to None."""
    raw = await request.body()
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("webhook_body_not_json", length=len(raw))
        return None


def raise_for_outcome(result: RouteResult) -> WebhookAck:
    """Translate a routing outcome into the HTTP contract."""
    if result.outcome is RouteOutcome.DELIVERED:
        return WebhookAck()
    if result.outcome is RouteOutcome.UNAUTHORIZED:
        raise UnauthorizedError()
    if result.outcome is RouteOutcome.NOT_FOUND:
        raise TicketNotFoundError(result.detail or "Session not found")
    raise InvalidPayloadError(result.detail or "Invalid webhook payload")


def _internal_error() -> RelayError:
    return RelayError(
        code="INTERNAL_ERROR", message="Webhook processing failed", status_code=500
    )


async def acknowledge(routing: Awaitable[RouteResult]) -> WebhookAck:
    """Await a routing call and answer with the webhook's HTTP contract.

    Registry and message store outages are internal failures here (500),
    like any other unexpected error.
    """
    try:
        result = await routing
    except (RedisConnectionError, PersistenceError) as e:
        logger.error("webhook_backend_unavailable", code=e.code, error=str(e))
        raise _internal_error() from e
    except RelayError:
        raise
    except Exception as e:
        logger.error("webhook_processing_failed", error=str(e))
        raise _internal_error() from e
    return raise_for_outcome(result)


@router.post("/assistant", response_model=WebhookAck)
async def assistant_webhook(
    request: Request,
    authorization: str | None = Header(default=None),
    webhook_router: WebhookRouter = Depends(get_webhook_router),
) -> WebhookAck:
    """Receive an assistant reply and deliver it into the owning room."""
    body = await read_json_body(request)
    return await acknowledge(webhook_router.route(authorization, body))
