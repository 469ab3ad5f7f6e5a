"""
Playback synchronisation.

Persists the room's playback tuple (isPlaying, currentTime, lastSync) and
media identifiers, and relays changes to the other participants. State is
last-write-wins: there is no clock-skew compensation and no arbitration
between concurrent senders. Each mutation is a single hash write, so the
stored tuple always comes from one call.

The sender of a change never receives its own echo; a client that got its
own event back would seek again and loop.
"""
from typing import Callable, Optional

from syncstream.exceptions import InvalidInputException, RoomNotFoundException
from syncstream.models.room import MediaType, Participant, PlaybackState
from syncstream.services.broadcaster import Broadcaster
from syncstream.services.chat_relay import ChatRelay
from syncstream.services.membership import MembershipManager
from syncstream.services.room_lifecycle import RoomLifecycle
from syncstream.services.room_store import RoomStore, room_key
from syncstream.utils.clock import now_ms
from syncstream.utils.logging_config import playback_logger


class PlaybackSyncEngine:
    def __init__(
        self,
        store: RoomStore,
        lifecycle: RoomLifecycle,
        membership: MembershipManager,
        chat: ChatRelay,
        broadcaster: Broadcaster,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.membership = membership
        self.chat = chat
        self.broadcaster = broadcaster
        self.clock = clock

    async def set_media(
        self, room_id: str, media_type: MediaType, media_url: str, initiator: Participant
    ) -> PlaybackState:
        """Load new media and rewind playback to a paused start."""
        media_type = MediaType(media_type)
        now = await self._write(room_id, {
            "mediaType": media_type.value,
            "mediaUrl": media_url or "",
            "isPlaying": "false",
            "currentTime": "0.0",
        })

        await self.broadcaster.send_to_room_except(room_id, initiator.connection_id, {
            "type": "media_changed",
            "mediaType": media_type.value,
            "mediaUrl": media_url or "",
            "changedBy": initiator.name,
            "timestamp": now,
        })
        await self.chat.system_message(room_id, f"{initiator.name} loaded new media")

        playback_logger.info(
            f"Media changed in room {room_id}: {media_type.value or 'none'}",
            extra={"room_id": room_id, "user_id": initiator.id}
        )
        return PlaybackState(
            is_playing=False, current_time=0.0, last_sync=now, media_type=media_type, media_url=media_url or ""
        )

    async def report_play(self, room_id: str, time: float, sender: Participant) -> None:
        await self._report(room_id, "play", sender, time, True)

    async def report_pause(self, room_id: str, time: float, sender: Participant) -> None:
        await self._report(room_id, "pause", sender, time, False)

    async def report_seek(self, room_id: str, time: float, sender: Participant) -> None:
        # A seek keeps the current play/pause flag.
        await self._report(room_id, "seek", sender, time, None)

    async def request_sync(self, room_id: str, requester: Optional[Participant] = None) -> PlaybackState:
        """
        Current persisted playback state. Read only.

        When a non-host asks, the host is also nudged so it can push a fresher
        position with share_state.
        """
        room = await self.lifecycle.require(room_id)
        if requester is not None and room.host_id and room.host_id != requester.id:
            host = await self.membership.get_participant(room_id, room.host_id)
            if host is not None and host.connection_id:
                await self.broadcaster.send_to(
                    host.connection_id, {"type": "sync_requested", "participantId": requester.id}
                )
        return PlaybackState.from_room(room)

    async def share_state(
        self,
        room_id: str,
        time: float,
        playing: bool,
        sender: Participant,
        target_id: Optional[str] = None,
    ) -> PlaybackState:
        """
        Persist a live position pushed by a client and deliver it as sync_state,
        to ``target_id`` only when given, otherwise to everyone but the sender.

        Raises:
            InvalidInputException: ``target_id`` is not a connected member; nothing is written
        """
        target = None
        if target_id:
            target = await self.membership.get_participant(room_id, target_id)
            if target is None or not target.connection_id:
                raise InvalidInputException("targetId", "not a participant of this room")

        await self._write(room_id, {
            "isPlaying": "true" if playing else "false",
            "currentTime": repr(float(time)),
        })
        state = PlaybackState.from_room(await self.lifecycle.require(room_id))
        frame = {"type": "sync_state", **state.to_wire()}

        if target is not None:
            await self.broadcaster.send_to(target.connection_id, frame)
        else:
            await self.broadcaster.send_to_room_except(room_id, sender.connection_id, frame)
        return state

    async def _report(
        self, room_id: str, action: str, sender: Participant, time: float, is_playing: Optional[bool]
    ) -> None:
        fields = {"currentTime": repr(float(time))}
        if is_playing is not None:
            fields["isPlaying"] = "true" if is_playing else "false"
        now = await self._write(room_id, fields)

        frame = {
            "type": "playback_state",
            "action": action,
            "currentTime": float(time),
            "lastSync": now,
            "changedBy": sender.name,
        }
        if is_playing is not None:
            frame["isPlaying"] = is_playing
        await self.broadcaster.send_to_room_except(room_id, sender.connection_id, frame)

        playback_logger.debug(
            f"Playback {action} at {time}s in room {room_id}",
            extra={"room_id": room_id, "user_id": sender.id}
        )

    async def _write(self, room_id: str, fields: dict) -> int:
        """Apply one playback mutation, stamped with lastSync, as a single hash write."""
        if not await self.lifecycle.exists(room_id):
            raise RoomNotFoundException(room_id)
        now = self.clock()
        await self.store.set_hash(room_key(room_id), {**fields, "lastSync": str(now)})
        await self.lifecycle.touch(room_id)
        return now
