import uuid
from enum import Enum
from typing import Optional

from syncstream.models.room import CamelModel


class MessageKind(str, Enum):
    USER = "user"
    SYSTEM = "system"


class ChatMessage(CamelModel):
    id: str
    type: MessageKind
    text: str
    timestamp: int
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_avatar: Optional[str] = None

    @classmethod
    def user(cls, author_id: str, author_name: str, author_avatar: str, text: str, timestamp: int) -> "ChatMessage":
        return cls(
            id=str(uuid.uuid4()),
            type=MessageKind.USER,
            user_id=author_id,
            user_name=author_name,
            user_avatar=author_avatar,
            text=text,
            timestamp=timestamp,
        )

    @classmethod
    def system(cls, text: str, timestamp: int) -> "ChatMessage":
        return cls(id=str(uuid.uuid4()), type=MessageKind.SYSTEM, text=text, timestamp=timestamp)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
