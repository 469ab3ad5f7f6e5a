"""
WebSocket event payloads.

Inbound frames are JSON objects tagged by ``type``. They are validated here,
before reaching any room service, so handlers only ever see well-formed
events. Outbound frames are plain dicts built by the services.
"""
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from syncstream.config import settings
from syncstream.exceptions import (
    InvalidInputException,
    MissingFieldException,
    WebSocketInvalidMessageException,
)
from syncstream.models.room import MediaType


class InboundModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


class ParticipantPayload(InboundModel):
    id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=settings.PARTICIPANT_NAME_MAX_LENGTH)
    avatar: Optional[str] = Field(default=None, max_length=settings.PARTICIPANT_AVATAR_MAX_LENGTH)


class JoinRoomEvent(InboundModel):
    type: Literal["join_room"]
    room_id: str = Field(..., min_length=1, max_length=32)
    participant: ParticipantPayload
    create: bool = False

    @field_validator("room_id")
    @classmethod
    def normalize_room_id(cls, v: str) -> str:
        return v.upper()


class LeaveRoomEvent(InboundModel):
    type: Literal["leave_room"]


class ChangeMediaEvent(InboundModel):
    type: Literal["change_media"]
    media_type: MediaType
    media_url: str = Field(default="", max_length=settings.MEDIA_URL_MAX_LENGTH)


class _TimedEvent(InboundModel):
    time: float = Field(..., ge=0, allow_inf_nan=False)


class ReportPlayEvent(_TimedEvent):
    type: Literal["report_play"]


class ReportPauseEvent(_TimedEvent):
    type: Literal["report_pause"]


class ReportSeekEvent(_TimedEvent):
    type: Literal["report_seek"]


class RequestSyncEvent(InboundModel):
    type: Literal["request_sync"]


class ShareStateEvent(_TimedEvent):
    type: Literal["share_state"]
    playing: bool
    target_id: Optional[str] = Field(default=None, max_length=64)


class ChatMessageEvent(InboundModel):
    # Length rules live in ChatRelay so they surface as chat errors.
    model_config = ConfigDict(str_strip_whitespace=False)

    type: Literal["chat_message"]
    text: str


class TypingStartEvent(InboundModel):
    type: Literal["typing_start"]


class TypingStopEvent(InboundModel):
    type: Literal["typing_stop"]


class PingEvent(InboundModel):
    type: Literal["ping"]


InboundEvent = Annotated[
    Union[
        JoinRoomEvent,
        LeaveRoomEvent,
        ChangeMediaEvent,
        ReportPlayEvent,
        ReportPauseEvent,
        ReportSeekEvent,
        RequestSyncEvent,
        ShareStateEvent,
        ChatMessageEvent,
        TypingStartEvent,
        TypingStopEvent,
        PingEvent,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundEvent)

_UNKNOWN_EVENT_ERRORS = {"union_tag_invalid", "union_tag_not_found"}


def parse_event(frame: Any) -> InboundEvent:
    """
    Validate a decoded frame into its event model.

    Raises:
        WebSocketInvalidMessageException: not an object, or no known event type
        MissingFieldException: a required field is absent
        InvalidInputException: a field failed validation
    """
    if not isinstance(frame, dict):
        raise WebSocketInvalidMessageException("frame must be a JSON object")
    try:
        return _inbound_adapter.validate_python(frame)
    except ValidationError as exc:
        first = exc.errors()[0]
        if first["type"] in _UNKNOWN_EVENT_ERRORS:
            raise WebSocketInvalidMessageException(
                f"unknown event type: {frame.get('type', 'missing')}",
                {"validation_errors": [{"field": "type", "message": first["msg"], "type": first["type"]}]},
            ) from exc

        # loc[0] is the union tag; the rest is the path inside the event.
        field = ".".join(str(loc) for loc in first["loc"][1:])
        if first["type"] == "missing":
            raise MissingFieldException(field) from exc
        raise InvalidInputException(field, first["msg"]) from exc
