"""Inbound assistant webhook and HTTP response schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.chat import ChatMessage


class ContentBlock(BaseModel):
    """One block of a structured assistant message."""

    model_config = ConfigDict(extra="allow")

    type: str
    text: str | None = None


class WebhookMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    content: str | list[ContentBlock] | None = None


class WebhookPayload(BaseModel):
    """Callback body sent by the assistant service."""

    model_config = ConfigDict(extra="allow")

    ticket_id: str | None = None
    message_id: str | None = None
    message: WebhookMessage | None = None


class WebhookAck(BaseModel):
    status: str = "ok"


class RoomMessagesResponse(BaseModel):
    """GET /v1/rooms/{room_id}/messages response body."""

    room_id: str
    messages: list[ChatMessage] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    checks: dict[str, Any] = Field(default_factory=dict)
