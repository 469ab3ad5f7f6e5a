"""
Rooms Router for SyncStream

HTTP companions to the WebSocket protocol: create a room under a fresh code,
read a room's record, and check a code before joining.
"""
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from syncstream.schemas.room import (
    RoomCreate,
    RoomCreateResponse,
    RoomInfoResponse,
    RoomValidateResponse,
)
from syncstream.services.room_lifecycle import RoomLifecycle
from syncstream.utils.logging_config import room_logger

router = APIRouter(prefix="/api/rooms", tags=["Rooms"])


def get_lifecycle(request: Request) -> RoomLifecycle:
    return request.app.state.lifecycle


@router.post("", response_model=RoomCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_room(payload: RoomCreate, request: Request):
    """Create a room with a generated code; the caller becomes its host."""
    lifecycle = get_lifecycle(request)
    room = await lifecycle.open_room(payload.user_id, payload.user_name)

    room_logger.info(
        "Room created via API",
        extra={"room_id": room.id, "host_id": payload.user_id}
    )
    return RoomCreateResponse(room_id=room.id, name=room.name, created_at=room.created_at)


@router.get("/{room_id}", response_model=RoomInfoResponse)
async def get_room(room_id: str, request: Request):
    """Room record with its current participant count."""
    info = await get_lifecycle(request).info(room_id.upper())
    return RoomInfoResponse(**info)


@router.get("/{room_id}/validate", response_model=RoomValidateResponse)
async def validate_room(room_id: str, request: Request):
    """Whether a code names a live room, and whether there is space left in it."""
    result = RoomValidateResponse(**await get_lifecycle(request).validate(room_id.upper()))
    if not result.valid:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=result.model_dump(by_alias=True),
        )
    return result
