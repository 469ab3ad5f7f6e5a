import os

# Settings are read at import time; keep every test on the in-memory store.
os.environ["REDIS_URL"] = "memory://"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from collections import defaultdict
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from syncstream.models.room import Participant
from syncstream.services.chat_relay import ChatRelay
from syncstream.services.dispatcher import ConnectionDispatcher
from syncstream.services.membership import MembershipManager
from syncstream.services.playback_sync import PlaybackSyncEngine
from syncstream.services.room_codes import RoomCodeGenerator
from syncstream.services.room_lifecycle import RoomLifecycle
from syncstream.services.room_store import RoomStore


class FakeClock:
    """Epoch-millisecond clock that advances 1 ms per reading."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingBroadcaster:
    """Broadcaster that records every frame delivered to each connection."""

    def __init__(self):
        self.rooms: Dict[str, Set[str]] = defaultdict(set)
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def add_to_room(self, room_id: str, connection_id: str) -> None:
        self.rooms[room_id].add(connection_id)

    def remove_from_room(self, room_id: str, connection_id: str) -> None:
        self.rooms[room_id].discard(connection_id)

    async def send_to(self, connection_id: str, message: Dict[str, Any]) -> None:
        self.sent.append((connection_id, message))

    async def send_to_room(self, room_id: str, message: Dict[str, Any]) -> None:
        for connection_id in sorted(self.rooms[room_id]):
            self.sent.append((connection_id, message))

    async def send_to_room_except(
        self, room_id: str, exclude_connection_id: str, message: Dict[str, Any]
    ) -> None:
        for connection_id in sorted(self.rooms[room_id]):
            if connection_id != exclude_connection_id:
                self.sent.append((connection_id, message))

    def frames(self, connection_id: str, msg_type: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            message for target, message in self.sent
            if target == connection_id and (msg_type is None or message.get("type") == msg_type)
        ]

    def of_type(self, msg_type: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(target, message) for target, message in self.sent if message.get("type") == msg_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return RoomStore(redis_url="memory://")


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def lifecycle(store, clock):
    return RoomLifecycle(store, codes=RoomCodeGenerator(), idle_timeout=3600, clock=clock)


@pytest.fixture
def chat(store, lifecycle, broadcaster, clock):
    return ChatRelay(store, lifecycle, broadcaster, clock=clock)


@pytest.fixture
def membership(store, lifecycle, chat, broadcaster, clock):
    return MembershipManager(store, lifecycle, chat, broadcaster, max_participants=50, clock=clock)


@pytest.fixture
def playback(store, lifecycle, membership, chat, broadcaster, clock):
    return PlaybackSyncEngine(store, lifecycle, membership, chat, broadcaster, clock=clock)


@pytest.fixture
def dispatcher(lifecycle, membership, playback, chat, broadcaster):
    return ConnectionDispatcher(lifecycle, membership, playback, chat, broadcaster, host_only_playback=False)


def make_participant(pid: str, name: str = None, connection_id: str = None, joined_at: int = 0) -> Participant:
    return Participant(
        id=pid,
        name=name or pid.capitalize(),
        avatar="🎬",
        connection_id=connection_id or f"conn-{pid}",
        joined_at=joined_at,
    )


async def join(membership, broadcaster, room_id: str, pid: str, name: str = None):
    """Join through the membership manager and subscribe the connection like the dispatcher does."""
    connection_id = f"conn-{pid}"
    result = await membership.join(room_id, pid, name or pid.capitalize(), connection_id=connection_id)
    broadcaster.add_to_room(room_id, connection_id)
    return result
