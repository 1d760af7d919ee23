"""WebSocket endpoint for room participants."""

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from app.api.deps import get_ws_room_manager
from app.core.exceptions import PersistenceError
from app.schemas.chat import ErrorFrame, dump_frame
from app.services.room.manager import RoomManager

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["rooms"])


@router.websocket("/parties/chat/{room_id}")
async def room_socket(
    websocket: WebSocket,
    room_id: str,
    rooms: RoomManager = Depends(get_ws_room_manager),
) -> None:
    """Join a room: replay history, then relay frames until the client leaves."""
    await websocket.accept()
    room = rooms.get(room_id)
    try:
        connection_id = await room.connect(websocket)
    except PersistenceError as e:
        logger.error("room_join_failed", room_id=room_id, error=str(e))
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                await room.receive(connection_id, raw)
            except PersistenceError as e:
                await websocket.send_text(
                    dump_frame(ErrorFrame(code=e.code, message=e.message, id=e.message_id))
                )
    except WebSocketDisconnect:
        pass
    finally:
        await room.disconnect(connection_id)
