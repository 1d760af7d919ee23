"""Outbound client for the external assistant service.

Three calls: initiate-session, receive-message and close-session. The
assistant's answer never comes back on these responses; it arrives later
through the inbound webhook. Every call carries the shared API key as a
bearer token and has a per-request timeout.
"""

import json
import time
import uuid
from typing import Any

import httpx
import structlog

from app.core.config import settings
from app.core.exceptions import ConfigurationError, GatewayError

logger = structlog.get_logger(__name__)


def new_outbound_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{uuid.uuid4()}"


def parse_body(text: str) -> Any:
    """Decode a response body as JSON, else wrap it as ``{"message": text}``."""
    if not text:
        return {}
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"message": text}


class AssistantGateway:
    """httpx client for the assistant's webhook API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        agent_id: str,
        platform: str = "room-relay",
        timeout_seconds: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._agent_id = agent_id
        self._platform = platform
        self._timeout = timeout_seconds
        self._missing_key_reported = False

    @classmethod
    def from_settings(cls) -> "AssistantGateway":
        return cls(
            base_url=settings.assistant_base_url,
            api_key=settings.assistant_api_key,
            agent_id=settings.assistant_agent_id,
            platform=settings.assistant_platform,
            timeout_seconds=settings.assistant_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def report_missing_credentials(self) -> None:
        """Log the missing API key once for the lifetime of this client."""
        if self._missing_key_reported:
            return
        self._missing_key_reported = True
        logger.error("assistant_api_key_missing", base_url=self._base_url)

    async def initiate(self, user_id: str, ticket_id: str) -> str:
        """Open an external conversation correlated by ``ticket_id``.

        Returns the ticket id the conversation is bound to, which is always
        the one sent.
        """
        await self._call(
            "initiate-session",
            "POST",
            {
                "agent_template_id": self._agent_id,
                "ticket_id": ticket_id,
                "initialization_values": {
                    "userId": user_id,
                    "platform": self._platform,
                },
            },
        )
        logger.info("assistant_session_initiated", ticket_id=ticket_id, user_id=user_id)
        return ticket_id

    async def send(self, ticket_id: str, text: str) -> None:
        """Forward one user turn."""
        message_id = new_outbound_message_id()
        await self._call(
            "receive-message",
            "POST",
            {
                "ticket_id": ticket_id,
                "message_id": message_id,
                "message": {"type": "text", "content": text, "role": "user"},
            },
        )
        logger.debug("assistant_message_sent", ticket_id=ticket_id, message_id=message_id)

    async def close(self, ticket_id: str) -> None:
        await self._call(
            "close-session",
            "PUT",
            {"ticket_id": ticket_id, "reason": "user_request", "status": "COMPLETED"},
        )
        logger.info("assistant_session_closed", ticket_id=ticket_id)

    async def _call(self, endpoint: str, method: str, payload: dict[str, Any]) -> Any:
        """Send one request and decode its body.

        Raises:
            ConfigurationError: if no API key is configured.
            GatewayError: on transport failure or a non-2xx status.
        """
        if not self._api_key:
            self.report_missing_credentials()
            raise ConfigurationError("Assistant API key is not configured")

        url = f"{self._base_url}/{endpoint}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(method, url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(
                "assistant_request_failed",
                endpoint=endpoint,
                ticket_id=payload.get("ticket_id"),
                error=str(e),
            )
            raise GatewayError(f"Assistant {endpoint} request failed: {e}") from e

        if not response.is_success:
            logger.error(
                "assistant_request_rejected",
                endpoint=endpoint,
                ticket_id=payload.get("ticket_id"),
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise GatewayError(
                f"Assistant {endpoint} returned {response.status_code}",
                upstream_status=response.status_code,
            )

        return parse_body(response.text)
