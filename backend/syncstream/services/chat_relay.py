import json
from typing import Callable, List

from pydantic import ValidationError

from syncstream.config import settings
from syncstream.exceptions import EmptyMessageException, MessageTooLongException
from syncstream.models.chat import ChatMessage
from syncstream.models.room import Participant
from syncstream.services.broadcaster import Broadcaster
from syncstream.services.room_lifecycle import RoomLifecycle
from syncstream.services.room_store import RoomStore, messages_key
from syncstream.utils.clock import now_ms
from syncstream.utils.logging_config import chat_logger


class ChatRelay:
    """Per-room chat: validation, bounded history and fan-out."""

    def __init__(
        self,
        store: RoomStore,
        lifecycle: RoomLifecycle,
        broadcaster: Broadcaster,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.broadcaster = broadcaster
        self.clock = clock
        self.max_length = settings.CHAT_MESSAGE_MAX_LENGTH
        self.history_limit = settings.CHAT_HISTORY_LIMIT

    async def post_message(self, room_id: str, author: Participant, text: str) -> ChatMessage:
        """
        Store and relay a participant's message to the rest of the room.

        Raises:
            MessageTooLongException: more than CHAT_MESSAGE_MAX_LENGTH characters
            EmptyMessageException: nothing left after trimming
        """
        if len(text) > self.max_length:
            raise MessageTooLongException(self.max_length)
        text = text.strip()
        if not text:
            raise EmptyMessageException()

        message = ChatMessage.user(author.id, author.name, author.avatar, text, self.clock())
        await self._append(room_id, message)
        await self.lifecycle.touch(room_id)
        await self.broadcaster.send_to_room_except(
            room_id, author.connection_id, {"type": "chat_message", "message": message.to_wire()}
        )

        chat_logger.debug(
            "Chat message",
            extra={"room_id": room_id, "user_id": author.id, "message_length": len(text)}
        )
        return message

    async def system_message(self, room_id: str, text: str) -> ChatMessage:
        """Store a server notice and send it to everyone in the room."""
        message = ChatMessage.system(text, self.clock())
        await self._append(room_id, message)
        await self.broadcaster.send_to_room(room_id, {"type": "chat_message", "message": message.to_wire()})
        return message

    async def history(self, room_id: str, limit: int = None) -> List[ChatMessage]:
        """Most recent ``limit`` messages, oldest first."""
        limit = min(limit or settings.CHAT_HISTORY_WINDOW, self.history_limit)
        raw_messages = await self.store.list_range(messages_key(room_id), -limit, -1)
        messages = []
        for raw in raw_messages:
            try:
                messages.append(ChatMessage.model_validate_json(raw))
            except (ValidationError, json.JSONDecodeError) as e:
                chat_logger.warning(f"Skipping unreadable chat entry in room {room_id}: {e}")
        return messages

    async def _append(self, room_id: str, message: ChatMessage) -> None:
        key = messages_key(room_id)
        length = await self.store.list_append(key, message.to_json())
        if length > self.history_limit:
            await self.store.list_trim(key, -self.history_limit, -1)
        await self.store.expire(key, ttl=self.lifecycle.idle_timeout)
