"""
Room Store

Data-access layer for room state. Holds no business rules: room records are
hashes, membership is a set, chat history is a list, and every key can carry
a TTL.

Backends:
- Redis (redis.asyncio, connection pool)
- In-memory fallback, used when REDIS_URL is ``memory://`` or when Redis is
  unreachable at startup and REDIS_FALLBACK_ENABLED is set

A Redis failure during an operation is not papered over: the operation is
abandoned and StoreUnavailableException is raised, leaving the room as it was
last persisted.
"""

import fnmatch
import time
from typing import Optional, Dict, Any, List, Set

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError

from syncstream.config import settings
from syncstream.exceptions import StoreUnavailableException
from syncstream.utils.logging_config import store_logger as logger


# Redis key layout
ROOM_PREFIX = "room:"
PARTICIPANTS_SUFFIX = ":participants"
MESSAGES_SUFFIX = ":messages"
USER_PREFIX = "user:"


def room_key(room_id: str) -> str:
    return f"{ROOM_PREFIX}{room_id}"


def participants_key(room_id: str) -> str:
    return f"{ROOM_PREFIX}{room_id}{PARTICIPANTS_SUFFIX}"


def messages_key(room_id: str) -> str:
    return f"{ROOM_PREFIX}{room_id}{MESSAGES_SUFFIX}"


def user_key(room_id: str, participant_id: str) -> str:
    return f"{USER_PREFIX}{room_id}:{participant_id}"


class RoomStore:
    """
    Redis-backed key/value, set and list storage with per-key TTL.

    Uses an in-memory store when Redis is not configured or not reachable.
    """

    def __init__(self, redis_url: str = None, fallback_enabled: bool = None):
        self.redis_url = redis_url or settings.REDIS_URL
        self.fallback_enabled = (
            settings.REDIS_FALLBACK_ENABLED if fallback_enabled is None else fallback_enabled
        )
        self._redis: Optional["Redis"] = None
        self._pool: Optional["ConnectionPool"] = None
        self._use_fallback = self.redis_url.startswith("memory://")
        # key -> {"value": str | set | list | dict, "expires_at": float | None}
        self._fallback_store: Dict[str, Dict[str, Any]] = {}

    @property
    def using_fallback(self) -> bool:
        return self._use_fallback

    async def get_redis(self) -> Optional["Redis"]:
        """Get or create Redis connection."""
        if self._use_fallback:
            return None

        if self._redis is None:
            try:
                self._pool = ConnectionPool.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True
                )
                self._redis = Redis(connection_pool=self._pool)

                # Test connection
                await self._redis.ping()
                logger.info("Room store connected to Redis")

            except (RedisError, OSError) as e:
                self._redis = None
                self._pool = None
                if not self.fallback_enabled:
                    logger.error(f"Redis connection failed: {e}")
                    raise StoreUnavailableException("connect", str(e)) from e
                logger.warning(
                    f"Redis connection failed, using in-memory fallback: {e}"
                )
                self._use_fallback = True

        return self._redis

    async def close(self):
        """Close Redis connections."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        if self._pool:
            await self._pool.disconnect()
            self._pool = None
        logger.info("Room store closed")

    # ==================== Fallback Helpers ====================

    def _get_entry(self, key: str) -> Optional[Dict[str, Any]]:
        """Live entry for key, dropping it if its TTL has passed."""
        entry = self._fallback_store.get(key)
        if entry is None:
            return None
        expires_at = entry.get("expires_at")
        if expires_at is not None and expires_at <= time.time():
            del self._fallback_store[key]
            return None
        return entry

    def _get_value(self, key: str, default_factory):
        """Get or create the container stored at key, keeping its TTL."""
        entry = self._get_entry(key)
        if entry is None:
            entry = {"value": default_factory(), "expires_at": None}
            self._fallback_store[key] = entry
        return entry["value"]

    def _drop_if_empty(self, key: str):
        entry = self._fallback_store.get(key)
        if entry is not None and not entry["value"]:
            del self._fallback_store[key]

    def _cleanup_fallback(self):
        """Remove expired entries from fallback storage."""
        now = time.time()
        expired_keys = [
            k for k, v in self._fallback_store.items()
            if v.get("expires_at") is not None and v["expires_at"] <= now
        ]
        for k in expired_keys:
            del self._fallback_store[k]

    @staticmethod
    def _failed(operation: str, error: Exception) -> StoreUnavailableException:
        logger.warning(f"Redis {operation} failed: {error}")
        return StoreUnavailableException(operation, str(error))

    # ==================== Key / Value (hash) ====================

    async def get_hash(self, key: str) -> Dict[str, str]:
        """All fields of a hash; empty dict when missing."""
        redis = await self.get_redis()
        if redis:
            try:
                return await redis.hgetall(key)
            except RedisError as e:
                raise self._failed("get_hash", e) from e

        entry = self._get_entry(key)
        return dict(entry["value"]) if entry else {}

    async def set_hash(self, key: str, mapping: Dict[str, str], ttl: int = None) -> bool:
        """Write several fields in one atomic step, optionally re-arming the TTL."""
        redis = await self.get_redis()
        if redis:
            try:
                pipe = redis.pipeline(transaction=True)
                pipe.hset(key, mapping=mapping)
                if ttl:
                    pipe.expire(key, ttl)
                await pipe.execute()
                return True
            except RedisError as e:
                raise self._failed("set_hash", e) from e

        self._get_value(key, dict).update(mapping)
        if ttl:
            self._fallback_store[key]["expires_at"] = time.time() + ttl
        return True

    async def delete(self, *keys: str) -> int:
        """Delete keys; returns how many existed."""
        if not keys:
            return 0
        redis = await self.get_redis()
        if redis:
            try:
                return await redis.delete(*keys)
            except RedisError as e:
                raise self._failed("delete", e) from e

        deleted = 0
        for key in keys:
            if self._get_entry(key) is not None:
                del self._fallback_store[key]
                deleted += 1
        return deleted

    async def exists(self, key: str) -> bool:
        redis = await self.get_redis()
        if redis:
            try:
                return bool(await redis.exists(key))
            except RedisError as e:
                raise self._failed("exists", e) from e

        return self._get_entry(key) is not None

    async def expire(self, *keys: str, ttl: int) -> None:
        """(Re)arm the same TTL on every given key that exists."""
        if not keys:
            return
        redis = await self.get_redis()
        if redis:
            try:
                pipe = redis.pipeline(transaction=False)
                for key in keys:
                    pipe.expire(key, ttl)
                await pipe.execute()
                return
            except RedisError as e:
                raise self._failed("expire", e) from e

        expires_at = time.time() + ttl
        for key in keys:
            entry = self._get_entry(key)
            if entry is not None:
                entry["expires_at"] = expires_at

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -1 without expiry, -2 when missing."""
        redis = await self.get_redis()
        if redis:
            try:
                return await redis.ttl(key)
            except RedisError as e:
                raise self._failed("ttl", e) from e

        entry = self._get_entry(key)
        if entry is None:
            return -2
        if entry["expires_at"] is None:
            return -1
        return max(0, int(entry["expires_at"] - time.time()))

    # ==================== Sets ====================

    async def set_add(self, key: str, member: str) -> bool:
        """Add member; True if it was not already present."""
        redis = await self.get_redis()
        if redis:
            try:
                return bool(await redis.sadd(key, member))
            except RedisError as e:
                raise self._failed("set_add", e) from e

        members: Set[str] = self._get_value(key, set)
        if member in members:
            return False
        members.add(member)
        return True

    async def set_remove(self, key: str, member: str) -> bool:
        """Remove member; True if it was present."""
        redis = await self.get_redis()
        if redis:
            try:
                return bool(await redis.srem(key, member))
            except RedisError as e:
                raise self._failed("set_remove", e) from e

        entry = self._get_entry(key)
        if entry is None or member not in entry["value"]:
            return False
        entry["value"].discard(member)
        self._drop_if_empty(key)
        return True

    async def set_members(self, key: str) -> Set[str]:
        redis = await self.get_redis()
        if redis:
            try:
                return set(await redis.smembers(key))
            except RedisError as e:
                raise self._failed("set_members", e) from e

        entry = self._get_entry(key)
        return set(entry["value"]) if entry else set()

    async def set_size(self, key: str) -> int:
        redis = await self.get_redis()
        if redis:
            try:
                return await redis.scard(key)
            except RedisError as e:
                raise self._failed("set_size", e) from e

        entry = self._get_entry(key)
        return len(entry["value"]) if entry else 0

    # ==================== Lists ====================

    async def list_append(self, key: str, value: str) -> int:
        """Append to the tail; returns the new length."""
        redis = await self.get_redis()
        if redis:
            try:
                return await redis.rpush(key, value)
            except RedisError as e:
                raise self._failed("list_append", e) from e

        items: List[str] = self._get_value(key, list)
        items.append(value)
        return len(items)

    async def list_range(self, key: str, start: int, stop: int) -> List[str]:
        """Inclusive range with Redis LRANGE index semantics."""
        redis = await self.get_redis()
        if redis:
            try:
                return await redis.lrange(key, start, stop)
            except RedisError as e:
                raise self._failed("list_range", e) from e

        entry = self._get_entry(key)
        if entry is None:
            return []
        items = entry["value"]
        start, stop = self._normalize_range(len(items), start, stop)
        return list(items[start:stop])

    async def list_trim(self, key: str, start: int, stop: int) -> None:
        """Keep only the inclusive range, with Redis LTRIM semantics."""
        redis = await self.get_redis()
        if redis:
            try:
                await redis.ltrim(key, start, stop)
                return
            except RedisError as e:
                raise self._failed("list_trim", e) from e

        entry = self._get_entry(key)
        if entry is None:
            return
        items = entry["value"]
        start, stop = self._normalize_range(len(items), start, stop)
        entry["value"] = items[start:stop]
        self._drop_if_empty(key)

    @staticmethod
    def _normalize_range(length: int, start: int, stop: int) -> tuple[int, int]:
        """Convert inclusive Redis indexes to a Python slice."""
        if start < 0:
            start = max(0, length + start)
        if stop < 0:
            stop = length + stop
        stop = min(stop, length - 1)
        if start > stop:
            return 0, 0
        return start, stop + 1

    # ==================== Scan ====================

    async def scan(self, pattern: str) -> List[str]:
        """All live keys matching a glob pattern."""
        redis = await self.get_redis()
        if redis:
            try:
                return [key async for key in redis.scan_iter(match=pattern, count=100)]
            except RedisError as e:
                raise self._failed("scan", e) from e

        self._cleanup_fallback()
        return [k for k in self._fallback_store if fnmatch.fnmatchcase(k, pattern)]

    # ==================== Health Check ====================

    async def health_check(self) -> Dict[str, Any]:
        """Check backing store connectivity."""
        is_redis_connected = False
        try:
            redis = await self.get_redis()
        except StoreUnavailableException:
            redis = None

        if redis:
            try:
                await redis.ping()
                is_redis_connected = True
            except RedisError:
                is_redis_connected = False

        return {
            "redis_connected": is_redis_connected,
            "using_fallback": self._use_fallback,
            "fallback_entries": len(self._fallback_store)
        }


# Global singleton instance
_room_store: Optional[RoomStore] = None


def get_room_store() -> RoomStore:
    """Get global room store instance."""
    global _room_store
    if _room_store is None:
        _room_store = RoomStore()
    return _room_store


async def close_room_store():
    """Close room store."""
    global _room_store
    if _room_store:
        await _room_store.close()
        _room_store = None
