"""Text extraction from assistant webhook payloads."""

from typing import Any

from pydantic import ValidationError as PayloadValidationError

from app.schemas.webhook import ContentBlock, WebhookPayload


def parse_payload(body: Any) -> WebhookPayload | None:
    """Validate a decoded JSON body. Returns None when it is not a webhook object."""
    if not isinstance(body, dict):
        return None
    try:
        return WebhookPayload.model_validate(body)
    except PayloadValidationError:
        return None


def extract_text(content: str | list[ContentBlock] | None) -> str | None:
    """Plain string content as-is; block lists joined by single spaces.

    Only ``text`` blocks contribute. Returns None when nothing is left.
    """
    if content is None:
        return None
    if isinstance(content, str):
        return content if content.strip() else None

    parts = [
        block.text
        for block in content
        if block.type == "text" and block.text
    ]
    text = " ".join(parts)
    return text if text.strip() else None


def extract_message_id(payload: WebhookPayload) -> str | None:
    if payload.message_id:
        return payload.message_id
    if payload.message is not None and payload.message.id:
        return payload.message.id
    return None
