"""Room history endpoint."""

from fastapi import APIRouter, Depends

from app.api.deps import get_room_manager
from app.schemas.webhook import RoomMessagesResponse
from app.services.room.manager import RoomManager

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.get("/{room_id}/messages", response_model=RoomMessagesResponse)
async def list_messages(
    room_id: str,
    rooms: RoomManager = Depends(get_room_manager),
) -> RoomMessagesResponse:
    """Return the room's replay set in first-write order."""
    if room_id in rooms:
        messages = await rooms.get(room_id).snapshot()
    else:
        # Read-only: do not spin up an actor just to list history.
        messages = await rooms.message_store.load_all(room_id)
    return RoomMessagesResponse(room_id=room_id, messages=messages)
