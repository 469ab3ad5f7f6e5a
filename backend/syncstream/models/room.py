from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class MediaType(str, Enum):
    """How a client should render the room's media. Opaque to the server."""

    NONE = ""
    YOUTUBE = "youtube"
    SPOTIFY = "spotify"
    URL = "url"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


def _as_bool(value: Optional[str]) -> bool:
    return value == "true"


def _as_int(value: Optional[str], default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _as_float(value: Optional[str], default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


class Room(CamelModel):
    id: str
    name: str
    host_id: str = ""
    created_at: int
    last_activity: int = 0
    media_type: MediaType = MediaType.NONE
    media_url: str = ""
    is_playing: bool = False
    current_time: float = 0.0
    last_sync: int = 0

    def to_redis(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "hostId": self.host_id,
            "createdAt": str(self.created_at),
            "lastActivity": str(self.last_activity or self.created_at),
            "mediaType": MediaType(self.media_type).value,
            "mediaUrl": self.media_url,
            "isPlaying": "true" if self.is_playing else "false",
            "currentTime": repr(float(self.current_time)),
            "lastSync": str(self.last_sync),
        }

    @classmethod
    def from_redis(cls, data: dict[str, str]) -> Optional["Room"]:
        """Decode a room hash; None for a missing or partial record."""
        if not data or not data.get("id"):
            return None
        created_at = _as_int(data.get("createdAt"))
        media_type = data.get("mediaType", "")
        if media_type not in {m.value for m in MediaType}:
            media_type = MediaType.NONE
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            host_id=data.get("hostId", ""),
            created_at=created_at,
            last_activity=_as_int(data.get("lastActivity"), created_at),
            media_type=media_type,
            media_url=data.get("mediaUrl", ""),
            is_playing=_as_bool(data.get("isPlaying")),
            current_time=_as_float(data.get("currentTime")),
            last_sync=_as_int(data.get("lastSync")),
        )


class Participant(CamelModel):
    id: str
    name: str
    avatar: str
    connection_id: str = ""
    joined_at: int
    is_host: bool = False

    def to_redis(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.avatar,
            "connectionId": self.connection_id,
            "joinedAt": str(self.joined_at),
            "isHost": "true" if self.is_host else "false",
        }

    @classmethod
    def from_redis(cls, data: dict[str, str]) -> Optional["Participant"]:
        if not data or not data.get("id"):
            return None
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            avatar=data.get("avatar", ""),
            connection_id=data.get("connectionId", ""),
            joined_at=_as_int(data.get("joinedAt")),
            is_host=_as_bool(data.get("isHost")),
        )

    def to_public(self) -> dict:
        """Wire form; the connection reference stays server-side."""
        return self.model_dump(by_alias=True, exclude={"connection_id"})


class PlaybackState(CamelModel):
    is_playing: bool
    current_time: float
    last_sync: int
    media_type: MediaType
    media_url: str

    @classmethod
    def from_room(cls, room: Room) -> "PlaybackState":
        return cls(
            is_playing=room.is_playing,
            current_time=room.current_time,
            last_sync=room.last_sync,
            media_type=room.media_type,
            media_url=room.media_url,
        )
