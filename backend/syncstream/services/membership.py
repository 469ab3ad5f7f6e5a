from dataclasses import dataclass, field
from typing import Callable, List, Optional

from syncstream.config import settings
from syncstream.exceptions import RoomFullException, RoomNotFoundException
from syncstream.models.room import Participant, Room
from syncstream.services.broadcaster import Broadcaster
from syncstream.services.chat_relay import ChatRelay
from syncstream.services.room_lifecycle import RoomLifecycle
from syncstream.services.room_store import RoomStore, participants_key, room_key, user_key
from syncstream.utils.clock import now_ms
from syncstream.utils.logging_config import room_logger


@dataclass
class JoinResult:
    room: Room
    participant: Participant
    participants: List[Participant] = field(default_factory=list)
    is_host: bool = False
    rejoined: bool = False


@dataclass
class LeaveResult:
    participant: Participant
    room_deleted: bool = False
    new_host: Optional[Participant] = None


class MembershipManager:
    """Join/leave, capacity and host succession for rooms."""

    def __init__(
        self,
        store: RoomStore,
        lifecycle: RoomLifecycle,
        chat: ChatRelay,
        broadcaster: Broadcaster,
        max_participants: int = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.chat = chat
        self.broadcaster = broadcaster
        self.max_participants = max_participants or settings.ROOM_MAX_PARTICIPANTS
        self.clock = clock

    async def join(
        self,
        room_id: str,
        participant_id: str,
        name: str,
        avatar: str = None,
        connection_id: str = "",
    ) -> JoinResult:
        """
        Add a participant to an existing room.

        The participant becomes host when the room designates them or when no
        current member holds host authority. Joining again under the same id
        (a reconnect) keeps the first join time and only swaps the
        connection reference.

        Raises:
            RoomNotFoundException: room does not exist
            RoomFullException: room is at capacity
        """
        room = await self.lifecycle.require(room_id)
        members = await self.store.set_members(participants_key(room_id))
        rejoined = participant_id in members

        if not rejoined and len(members) >= self.max_participants:
            room_logger.warning(
                "Room is full",
                extra={"room_id": room_id, "user_id": participant_id, "max_participants": self.max_participants}
            )
            raise RoomFullException(self.max_participants)

        host_present = bool(room.host_id) and room.host_id in members
        is_host = room.host_id == participant_id or not host_present
        if is_host and room.host_id != participant_id:
            if not await self._set_host(room_id, participant_id):
                raise RoomNotFoundException(room_id)
            room.host_id = participant_id

        joined_at = self.clock()
        if rejoined:
            previous = await self.get_participant(room_id, participant_id)
            if previous:
                joined_at = previous.joined_at

        participant = Participant(
            id=participant_id,
            name=name,
            avatar=avatar or settings.DEFAULT_AVATAR,
            connection_id=connection_id,
            joined_at=joined_at,
            is_host=is_host,
        )
        await self.store.set_hash(
            user_key(room_id, participant_id), participant.to_redis(), ttl=self.lifecycle.idle_timeout
        )
        await self.store.set_add(participants_key(room_id), participant_id)
        await self.lifecycle.touch(room_id)

        await self.broadcaster.send_to_room_except(
            room_id, connection_id, {"type": "participant_joined", "participant": participant.to_public()}
        )
        if not rejoined:
            await self.chat.system_message(room_id, f"{name} joined the room")

        room_logger.info(
            "User joined room",
            extra={"room_id": room_id, "user_id": participant_id, "username": name, "is_host": is_host, "rejoined": rejoined}
        )
        return JoinResult(
            room=await self.lifecycle.get(room_id) or room,
            participant=participant,
            participants=await self.list_participants(room_id),
            is_host=is_host,
            rejoined=rejoined,
        )

    async def leave(
        self, room_id: str, participant_id: str, connection_id: str = None
    ) -> Optional[LeaveResult]:
        """
        Remove a participant; deletes the room when it empties, re-elects the
        host when the host left.

        Safe to call repeatedly: returns None when the participant is already
        gone, or when ``connection_id`` no longer owns the participant record.
        """
        participant = await self.get_participant(room_id, participant_id)
        if participant is None:
            return None
        if connection_id and participant.connection_id and participant.connection_id != connection_id:
            room_logger.debug(
                "Ignoring leave from superseded connection",
                extra={"room_id": room_id, "user_id": participant_id}
            )
            return None

        if not await self.store.set_remove(participants_key(room_id), participant_id):
            return None
        await self.store.delete(user_key(room_id, participant_id))

        remaining = await self.store.set_size(participants_key(room_id))
        if remaining == 0:
            await self.lifecycle.delete(room_id)
            room_logger.info("User left room, room emptied", extra={"room_id": room_id, "user_id": participant_id})
            return LeaveResult(participant=participant, room_deleted=True)

        await self.broadcaster.send_to_room_except(
            room_id,
            participant.connection_id,
            {"type": "participant_left", "participantId": participant.id, "name": participant.name},
        )

        new_host = await self._reelect_host(room_id, participant)
        await self.chat.system_message(room_id, f"{participant.name} left the room")
        await self.lifecycle.touch(room_id)

        room_logger.info(
            "User left room",
            extra={"room_id": room_id, "user_id": participant_id, "username": participant.name, "remaining": remaining}
        )
        return LeaveResult(participant=participant, new_host=new_host)

    async def _reelect_host(self, room_id: str, departed: Participant) -> Optional[Participant]:
        """Hand host authority to the earliest remaining joiner if it is vacant."""
        room = await self.lifecycle.get(room_id)
        if room is None:
            return None
        participants = await self.list_participants(room_id)
        if not participants:
            return None
        if room.host_id != departed.id and any(p.id == room.host_id for p in participants):
            return None

        new_host = participants[0]
        if not await self._set_host(room_id, new_host.id):
            return None
        await self.store.set_hash(user_key(room_id, new_host.id), {"isHost": "true"})
        new_host.is_host = True

        await self.broadcaster.send_to_room_except(
            room_id,
            departed.connection_id,
            {"type": "host_changed", "hostId": new_host.id, "hostName": new_host.name},
        )
        room_logger.info(
            "Host changed",
            extra={"room_id": room_id, "previous_host": departed.id, "new_host": new_host.id}
        )
        return new_host

    async def _set_host(self, room_id: str, participant_id: str) -> bool:
        """Point hostId at a participant; False when the room record is gone."""
        # A bare field write on a deleted room would leave a record without an id.
        if not await self.lifecycle.exists(room_id):
            return False
        await self.store.set_hash(room_key(room_id), {"hostId": participant_id})
        return True

    async def get_participant(self, room_id: str, participant_id: str) -> Optional[Participant]:
        return Participant.from_redis(await self.store.get_hash(user_key(room_id, participant_id)))

    async def list_participants(self, room_id: str) -> List[Participant]:
        """Members ordered by join time; this order decides host succession."""
        room = await self.lifecycle.get(room_id)
        participants = []
        for participant_id in await self.store.set_members(participants_key(room_id)):
            participant = await self.get_participant(room_id, participant_id)
            if participant is None:
                continue
            if room is not None:
                participant.is_host = participant.id == room.host_id
            participants.append(participant)
        return sorted(participants, key=lambda p: (p.joined_at, p.id))

    async def is_host(self, room_id: str, participant_id: str) -> bool:
        room = await self.lifecycle.get(room_id)
        return room is not None and room.host_id == participant_id

    async def count(self, room_id: str) -> int:
        return await self.store.set_size(participants_key(room_id))
