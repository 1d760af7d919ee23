"""Trusted internal delivery into a specific room.

No bearer check is done here: this router is meant to be reachable only
from inside the deployment, and callers already know the room.
"""

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_webhook_router
from app.api.v1.webhooks import acknowledge, read_json_body
from app.schemas.webhook import WebhookAck
from app.services.webhook.router import WebhookRouter

router = APIRouter(prefix="/internal", tags=["internal"])


@router.post("/rooms/{room_id}/webhook", response_model=WebhookAck)
async def deliver_to_room(
    room_id: str,
    request: Request,
    webhook_router: WebhookRouter = Depends(get_webhook_router),
) -> WebhookAck:
    body = await read_json_body(request)
    return await acknowledge(webhook_router.deliver(room_id, body))
