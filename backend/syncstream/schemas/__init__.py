from syncstream.schemas.room import RoomCreate, RoomCreateResponse, RoomInfoResponse, RoomValidateResponse
from syncstream.schemas.events import InboundEvent, parse_event

__all__ = [
    "RoomCreate", "RoomCreateResponse", "RoomInfoResponse", "RoomValidateResponse",
    "InboundEvent", "parse_event"
]
