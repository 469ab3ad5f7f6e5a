from syncstream.models.room import MediaType, Room, Participant, PlaybackState
from syncstream.models.chat import ChatMessage, MessageKind

__all__ = ["MediaType", "Room", "Participant", "PlaybackState", "ChatMessage", "MessageKind"]
