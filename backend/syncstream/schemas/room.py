from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from syncstream.config import settings
from syncstream.models.room import MediaType


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoomCreate(ApiModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    user_name: str = Field(..., min_length=1, max_length=settings.PARTICIPANT_NAME_MAX_LENGTH)


class RoomCreateResponse(ApiModel):
    room_id: str
    name: str
    created_at: int


class RoomInfoResponse(ApiModel):
    id: str
    name: str
    host_id: str
    created_at: int
    last_activity: int
    media_type: MediaType
    media_url: str
    is_playing: bool
    current_time: float
    last_sync: int
    participant_count: int


class RoomValidateResponse(ApiModel):
    valid: bool
    participant_count: int = 0
    is_full: bool = False
