"""Live connections held by a room."""

from dataclasses import dataclass
from typing import Protocol


class Transport(Protocol):
    """Anything a room can push text frames to, e.g. a Starlette WebSocket."""

    async def send_text(self, data: str) -> None: ...


@dataclass
class ConnectionEntry:
    connection_id: str
    transport: Transport
    # Ticket of the external session this connection's messages are forwarded to.
    ticket_id: str | None = None
