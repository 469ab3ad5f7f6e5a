from syncstream.services.room_store import RoomStore, get_room_store, close_room_store
from syncstream.services.room_codes import RoomCodeGenerator
from syncstream.services.room_lifecycle import RoomLifecycle
from syncstream.services.chat_relay import ChatRelay
from syncstream.services.membership import MembershipManager
from syncstream.services.playback_sync import PlaybackSyncEngine
from syncstream.services.dispatcher import ConnectionContext, ConnectionDispatcher

__all__ = [
    "RoomStore", "get_room_store", "close_room_store",
    "RoomCodeGenerator", "RoomLifecycle", "ChatRelay", "MembershipManager",
    "PlaybackSyncEngine", "ConnectionContext", "ConnectionDispatcher"
]
