import asyncio
import re
from typing import Callable, Optional

from syncstream.config import settings
from syncstream.exceptions import AppException, RoomNotFoundException
from syncstream.models.room import Room
from syncstream.services.room_codes import RoomCodeGenerator
from syncstream.services.room_store import (
    RoomStore,
    ROOM_PREFIX,
    room_key,
    participants_key,
    messages_key,
    user_key,
)
from syncstream.utils.clock import now_ms
from syncstream.utils.logging_config import room_logger


class RoomLifecycle:
    """Room records: creation, lookup, TTL refresh, deletion and idle sweeps."""

    def __init__(
        self,
        store: RoomStore,
        codes: RoomCodeGenerator = None,
        idle_timeout: int = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.codes = codes or RoomCodeGenerator()
        self.idle_timeout = idle_timeout or settings.ROOM_IDLE_TIMEOUT
        self.clock = clock
        self._room_key_pattern = re.compile(rf"^{re.escape(ROOM_PREFIX)}([^:]+)$")

    async def create(self, room_id: str, initial_host_id: str = "", name: str = "Watch Party") -> Room:
        """
        Write a fresh room with empty media state.

        Returns the existing record unchanged when the room is already live,
        which makes this safe for join-or-create flows.
        """
        existing = await self.get(room_id)
        if existing:
            return existing

        now = self.clock()
        room = Room(
            id=room_id,
            name=name,
            host_id=initial_host_id or "",
            created_at=now,
            last_activity=now,
            last_sync=now,
        )
        await self.store.set_hash(room_key(room_id), room.to_redis(), ttl=self.idle_timeout)

        room_logger.info(
            "Room created",
            extra={"room_id": room_id, "room_name": name, "host_id": room.host_id}
        )
        return room

    async def open_room(self, host_id: str, host_name: str) -> Room:
        """Create a room under a newly generated code with the caller as host."""
        room_id = await self.codes.generate_unique(self.exists)
        return await self.create(room_id, initial_host_id=host_id, name=f"{host_name}'s Room")

    async def get(self, room_id: str) -> Optional[Room]:
        return Room.from_redis(await self.store.get_hash(room_key(room_id)))

    async def require(self, room_id: str) -> Room:
        room = await self.get(room_id)
        if room is None:
            raise RoomNotFoundException(room_id)
        return room

    async def exists(self, room_id: str) -> bool:
        return await self.store.exists(room_key(room_id))

    async def touch(self, room_id: str) -> None:
        """Re-arm the shared TTL on every key of the room and record activity."""
        if not await self.exists(room_id):
            return
        await self.store.set_hash(
            room_key(room_id), {"lastActivity": str(self.clock())}, ttl=self.idle_timeout
        )
        members = await self.store.set_members(participants_key(room_id))
        await self.store.expire(
            participants_key(room_id),
            messages_key(room_id),
            *(user_key(room_id, pid) for pid in members),
            ttl=self.idle_timeout,
        )

    async def delete(self, room_id: str) -> None:
        """Remove the room record, participant records, membership set and chat history."""
        members = await self.store.set_members(participants_key(room_id))
        await self.store.delete(
            *(user_key(room_id, pid) for pid in members),
            room_key(room_id),
            participants_key(room_id),
            messages_key(room_id),
        )
        room_logger.info(f"Room deleted: {room_id}", extra={"room_id": room_id})

    async def participant_count(self, room_id: str) -> int:
        return await self.store.set_size(participants_key(room_id))

    async def info(self, room_id: str) -> dict:
        """Room record plus its live participant count (get-room-info)."""
        room = await self.require(room_id)
        return {**room.model_dump(), "participant_count": await self.participant_count(room_id)}

    async def validate(self, room_id: str) -> dict:
        """Existence and capacity check used before joining (validate-room)."""
        if not await self.exists(room_id):
            return {"valid": False, "participant_count": 0, "is_full": False}
        count = await self.participant_count(room_id)
        return {
            "valid": True,
            "participant_count": count,
            "is_full": count >= settings.ROOM_MAX_PARTICIPANTS,
        }

    async def sweep_idle_rooms(self, now: int = None) -> list[str]:
        """
        Delete rooms that have no members and no activity within the idle timeout.

        Safety net for leave paths that never completed; TTL expiry normally
        gets there first.
        """
        now = now if now is not None else self.clock()
        deleted = []
        for key in await self.store.scan(f"{ROOM_PREFIX}*"):
            match = self._room_key_pattern.match(key)
            if not match:
                continue
            room_id = match.group(1)
            room = await self.get(room_id)
            if room is None:
                continue
            if await self.participant_count(room_id) > 0:
                continue
            if now - room.last_activity > self.idle_timeout * 1000:
                await self.delete(room_id)
                deleted.append(room_id)

        if deleted:
            room_logger.info(f"Cleaned up {len(deleted)} idle rooms", extra={"room_ids": deleted})
        return deleted

    async def run_cleanup_loop(self, interval: int = None):
        """Sweep idle rooms forever (background task)."""
        interval = interval or settings.ROOM_CLEANUP_INTERVAL
        while True:
            try:
                await self.sweep_idle_rooms()
            except AppException as e:
                room_logger.warning("Idle room sweep failed", extra={"error_code": e.code.value, "details": e.details})
            except Exception as e:
                room_logger.exception(f"Error in cleanup task: {e}")

            await asyncio.sleep(interval)
